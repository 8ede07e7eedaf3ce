"""
Latest-value index.

Maintains one LatestEntry per (location_id, parameter) key on top of a
MeasurementStore. A record replaces the held entry iff its
(timestamp, ingested_at) pair is strictly greater; otherwise the write
is ignored as stale.

The compare-and-replace is atomic per key. Stores with a conditional
write do it server side; for the others the index serializes
read-compare-write per key with an asyncio.Lock. Different keys never
share a lock, and readers never take one.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import TYPE_CHECKING, AsyncIterator, Optional

from latest.models import LatestEntry, MeasurementKey, MeasurementRecord, UpdateOutcome
from telemetry.service import TelemetryService, get_telemetry_service

if TYPE_CHECKING:
    from store.base import MeasurementStore

logger = logging.getLogger(__name__)


class LatestValueIndex:
    """
    Owned, injectable registry of the current latest entry per key.

    Attributes:
        store: The measurement store holding the entries
        applied_count: Records that became the latest for their key
        ignored_stale_count: Records rejected as stale
    """

    def __init__(
        self,
        store: "MeasurementStore",
        telemetry: Optional[TelemetryService] = None,
    ):
        self.store = store
        self.telemetry = telemetry or get_telemetry_service()
        self.applied_count = 0
        self.ignored_stale_count = 0
        self._locks: dict[MeasurementKey, asyncio.Lock] = {}

    def _lock_for(self, key: MeasurementKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def submit(self, record: MeasurementRecord) -> UpdateOutcome:
        """
        Offer a record as the new latest value for its key.

        Returns:
            APPLIED if the record replaced the held entry (or created it),
            IGNORED_STALE otherwise. The replaced entry is discarded.

        Raises:
            AppException: store_unavailable if the store failed; the
                record is then not applied.
        """
        entry = LatestEntry.from_record(record)
        key = entry.key

        if self.store.supports_conditional_write:
            applied = await self.store.put_if_newer(key, entry)
        else:
            async with self._lock_for(key):
                current = await self.store.get(key)
                applied = entry.supersedes(current)
                if applied:
                    await self.store.put(key, entry)

        if applied:
            self.applied_count += 1
            return UpdateOutcome.APPLIED

        self.ignored_stale_count += 1
        logger.debug(
            f"Ignored stale record for {key}",
            extra={"extra_data": {
                "location_id": key.location_id,
                "parameter": key.parameter,
                "timestamp": entry.timestamp.isoformat(),
                "ingested_at": entry.ingested_at.isoformat(),
            }}
        )
        if self.telemetry:
            self.telemetry.increment("latest.ignored_stale", tags={"parameter": key.parameter})
        return UpdateOutcome.IGNORED_STALE

    async def get(self, key: MeasurementKey) -> Optional[LatestEntry]:
        """Current entry for one key, or None."""
        return await self.store.get(key)

    async def snapshot(self) -> AsyncIterator[LatestEntry]:
        """
        Yield every current entry.

        Each call starts a fresh, finite pass over the store. Entries are
        immutable, so each one is internally consistent; writes committed
        after the pass started may or may not be seen.
        """
        async with aclosing(self.store.scan_all()) as pairs:
            async for _key, entry in pairs:
                yield entry
