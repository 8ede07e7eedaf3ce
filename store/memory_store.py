"""
In-process measurement store.

Used in development and tests. Entries are immutable, so replacing a
dict value is the whole write and readers can never see a torn entry.
"""

from typing import AsyncIterator, Optional

from latest.models import LatestEntry, MeasurementKey
from store.base import MeasurementStore


class InMemoryMeasurementStore(MeasurementStore):
    """Dictionary-backed store without a conditional write."""

    def __init__(self) -> None:
        self._entries: dict[MeasurementKey, LatestEntry] = {}

    async def get(self, key: MeasurementKey) -> Optional[LatestEntry]:
        return self._entries.get(key)

    async def put(self, key: MeasurementKey, entry: LatestEntry) -> None:
        self._entries[key] = entry

    async def scan_all(self) -> AsyncIterator[tuple[MeasurementKey, LatestEntry]]:
        # Copy first so the scan is a point-in-time view
        for key, entry in list(self._entries.items()):
            yield key, entry

    async def health_check(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._entries)
