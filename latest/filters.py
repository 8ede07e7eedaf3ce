"""
Filter engine for latest-value queries.

Filters are parsed once into an immutable LatestFilters and then
evaluated as pure predicates. Location-level filters (country,
location, has_geo) apply to a LocationSummary, entry-level filters
(parameter, value_from, value_to) to each of its measurements. All
given filters are combined with AND.
"""

import math
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from errors.exceptions import invalid_filter
from latest.models import RECOGNIZED_PARAMETERS, LatestEntry, LocationSummary


class LatestFilters(BaseModel):
    """
    Parsed filter configuration. Every filter is optional; unknown keys
    are ignored.

    ``has_geo`` only ever restricts: it is True for ``true`` and a
    no-op for ``false``, absence, or any other value.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    country: Optional[str] = None
    location: Optional[str] = None
    parameter: Optional[str] = None
    has_geo: bool = False
    value_from: Optional[float] = None
    value_to: Optional[float] = None

    @field_validator("country", "location", "parameter", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if not isinstance(v, str):
            raise ValueError("must be a string")
        return v.strip() or None

    @field_validator("has_geo", mode="before")
    @classmethod
    def _has_geo(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() == "true"
        return v is True

    @field_validator("value_from", "value_to", mode="before")
    @classmethod
    def _number(cls, v: Any) -> Optional[float]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        if isinstance(v, bool):
            raise ValueError("must be a number")
        try:
            number = float(v)
        except (TypeError, ValueError):
            raise ValueError("must be a number") from None
        if not math.isfinite(number):
            raise ValueError("must be a finite number")
        return number


def parse_filters(raw: Union[Mapping[str, Any], LatestFilters, None]) -> LatestFilters:
    """
    Build LatestFilters from a raw mapping such as request query parameters.

    Raises:
        AppException: invalid_filter naming the first offending key.
    """
    if raw is None:
        return LatestFilters()
    if isinstance(raw, LatestFilters):
        return raw
    try:
        return LatestFilters.model_validate(dict(raw))
    except ValidationError as e:
        error = e.errors()[0]
        key = str(error["loc"][0]) if error.get("loc") else "filters"
        reason = error.get("msg", "invalid value").removeprefix("Value error, ")
        raise invalid_filter(
            key,
            message=f"Invalid value for filter '{key}': {reason}",
            value=error.get("input"),
        ) from e


def matches_location(summary: LocationSummary, filters: LatestFilters) -> bool:
    """Evaluate the location-level filters against a summary."""
    if filters.country is not None:
        if summary.country is None or summary.country.casefold() != filters.country.casefold():
            return False
    if filters.location is not None:
        if summary.location.casefold() != filters.location.casefold():
            return False
    if filters.has_geo and summary.coordinates is None:
        return False
    return True


def matches_entry(entry: LatestEntry, filters: LatestFilters) -> bool:
    """Evaluate the entry-level filters against one measurement."""
    if filters.parameter is not None:
        if filters.parameter not in RECOGNIZED_PARAMETERS or entry.parameter != filters.parameter:
            return False
    if filters.value_from is not None and entry.value < filters.value_from:
        return False
    if filters.value_to is not None and entry.value > filters.value_to:
        return False
    return True


def apply_filters(summary: LocationSummary, filters: LatestFilters) -> Optional[LocationSummary]:
    """
    Filter one location.

    Returns:
        None if the location is excluded, otherwise a summary whose
        measurements are only the surviving entries. The input summary
        is never modified.
    """
    if not matches_location(summary, filters):
        return None
    survivors = tuple(m for m in summary.measurements if matches_entry(m, filters))
    if not survivors:
        return None
    if len(survivors) == len(summary.measurements):
        return summary
    return summary.model_copy(update={"measurements": survivors})


def filter_summaries(
    summaries: Iterable[LocationSummary], filters: LatestFilters
) -> Iterator[LocationSummary]:
    """Yield the filtered form of every summary that matches."""
    for summary in summaries:
        filtered = apply_filters(summary, filters)
        if filtered is not None:
            yield filtered
