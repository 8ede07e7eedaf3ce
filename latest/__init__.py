"""
Latest-value aggregation engine.

- models: records, latest entries, location summaries
- index: one latest entry per (location, parameter) key
- filters: filter parsing and evaluation
- coordinator: the public query entry point
"""

from latest.coordinator import QueryCoordinator, group_by_location
from latest.filters import LatestFilters, apply_filters, parse_filters
from latest.index import LatestValueIndex
from latest.models import (
    RECOGNIZED_PARAMETERS,
    Coordinates,
    LatestEntry,
    LocationSummary,
    MeasurementKey,
    MeasurementRecord,
    QueryResult,
    UpdateOutcome,
)

__all__ = [
    "RECOGNIZED_PARAMETERS",
    "Coordinates",
    "LatestEntry",
    "LatestFilters",
    "LatestValueIndex",
    "LocationSummary",
    "MeasurementKey",
    "MeasurementRecord",
    "QueryCoordinator",
    "QueryResult",
    "UpdateOutcome",
    "apply_filters",
    "group_by_location",
    "parse_filters",
]
