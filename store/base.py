"""
Measurement store abstraction.

The store is a durable keyed capability: one serialized LatestEntry per
MeasurementKey. It holds no business logic. Atomic compare-and-swap is
the index's concern; a store may offer a conditional-write primitive
the index can delegate to, but is not required to.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from latest.models import LatestEntry, MeasurementKey


class MeasurementStore(ABC):
    """
    Abstract base class for measurement store implementations.

    All methods are async. Operational failures are raised as
    ``store_unavailable`` AppExceptions.
    """

    supports_conditional_write: bool = False
    """True when put_if_newer is an atomic compare-and-swap."""

    @abstractmethod
    async def get(self, key: MeasurementKey) -> Optional[LatestEntry]:
        """
        Retrieve the entry held for a key.

        Returns:
            The entry, or None if the key has never been written.
        """

    @abstractmethod
    async def put(self, key: MeasurementKey, entry: LatestEntry) -> None:
        """
        Store the entry for a key unconditionally.

        The write is durable once this returns.
        """

    @abstractmethod
    def scan_all(self) -> AsyncIterator[tuple[MeasurementKey, LatestEntry]]:
        """
        Iterate over every (key, entry) pair.

        Each yielded entry is read as a whole; entries of different keys
        may reflect different instants.
        """

    async def put_if_newer(self, key: MeasurementKey, entry: LatestEntry) -> bool:
        """
        Atomically store ``entry`` iff its (timestamp, ingested_at) pair is
        strictly greater than the stored one.

        Returns:
            True if the entry was written.

        Raises:
            NotImplementedError: If the store has no conditional write.
        """
        raise NotImplementedError(f"{type(self).__name__} has no conditional write")

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check connectivity of the store.

        Returns:
            True if the store is reachable. Never raises.
        """
