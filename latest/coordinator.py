"""
Query coordinator: the public entry point of the latest-values engine.

A query reads one snapshot of the index, groups it into per-location
summaries, filters them and returns every match with the total count.
This read path never paginates. A query either returns the complete
filtered result or fails with a single error.
"""

import asyncio
import logging
import time
from contextlib import aclosing, nullcontext
from typing import Any, Iterable, Mapping, Optional, Union

from errors.exceptions import AppException, store_unavailable
from latest.filters import LatestFilters, filter_summaries, parse_filters
from latest.index import LatestValueIndex
from latest.models import LatestEntry, LocationSummary, QueryResult
from telemetry.service import TelemetryService, get_telemetry_service

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0


def group_by_location(entries: Iterable[LatestEntry]) -> list[LocationSummary]:
    """Build one LocationSummary per location id present in ``entries``."""
    grouped: dict[str, list[LatestEntry]] = {}
    for entry in entries:
        grouped.setdefault(entry.location_id, []).append(entry)
    return [LocationSummary.from_entries(location_id, items) for location_id, items in grouped.items()]


class QueryCoordinator:
    """
    Answers latest-value queries against a LatestValueIndex.

    Attributes:
        index: The index to read snapshots from
        timeout_seconds: Time allowed for reading a snapshot; exceeding
            it fails the query as store_unavailable
    """

    def __init__(
        self,
        index: LatestValueIndex,
        telemetry: Optional[TelemetryService] = None,
        timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
    ):
        self.index = index
        self.telemetry = telemetry or get_telemetry_service()
        self.timeout_seconds = timeout_seconds

    async def _read_snapshot(self) -> list[LatestEntry]:
        # Closes the store scan even when wait_for cancels the read
        async with aclosing(self.index.snapshot()) as entries:
            return [entry async for entry in entries]

    async def _load_entries(self) -> list[LatestEntry]:
        try:
            return await asyncio.wait_for(self._read_snapshot(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error(
                f"Snapshot read timed out after {self.timeout_seconds}s",
                extra={"extra_data": {"timeout_seconds": self.timeout_seconds}}
            )
            raise store_unavailable(
                message="Measurement store did not answer in time",
                details={"timeout_seconds": self.timeout_seconds}
            ) from e
        except AppException:
            raise
        except Exception as e:
            logger.error(
                f"Snapshot read failed: {e}",
                extra={"extra_data": {"error": str(e)}},
                exc_info=True,
            )
            raise store_unavailable(details={"error": str(e)}) from e

    async def query(
        self, filters: Union[Mapping[str, Any], LatestFilters, None] = None
    ) -> QueryResult:
        """
        Return every location matching ``filters`` with its surviving
        measurements, ordered by location id, and the total match count.

        Raises:
            AppException: invalid_filter for a malformed filter value,
                store_unavailable if the snapshot could not be read.
        """
        parsed = parse_filters(filters)
        applied_filters = parsed.model_dump(exclude_defaults=True)
        start_time = time.perf_counter()

        span = self.telemetry.create_span("latest.query") if self.telemetry else nullcontext()
        with span:
            entries = await self._load_entries()

        summaries = group_by_location(entries)
        results = sorted(filter_summaries(summaries, parsed), key=lambda s: s.location_id)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if self.telemetry:
            self.telemetry.record_metric("latest.query_duration_ms", duration_ms)
            self.telemetry.increment("latest.queries")

        logger.info(
            f"Latest query matched {len(results)} of {len(summaries)} locations",
            extra={"extra_data": {
                "filters": applied_filters,
                "entries_scanned": len(entries),
                "found": len(results),
                "duration_ms": round(duration_ms, 2),
            }}
        )

        return QueryResult(results=results, total_count=len(results))
