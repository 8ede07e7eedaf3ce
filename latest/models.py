"""
Data model of the latest-values engine.

A MeasurementRecord is one reported observation. For every
(location_id, parameter) key the index holds at most one LatestEntry:
the record with the greatest (timestamp, ingested_at) pair seen so far.
LocationSummary is a read-time view grouping the entries of a location.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Parameters a query may filter on
RECOGNIZED_PARAMETERS = frozenset({"pm25", "pm10", "so2", "no2", "o3", "co", "bc"})


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2015-07-24T11:30:00.000Z``."""
    return _as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class UpdateOutcome(str, Enum):
    """Result of submitting a record to the index."""
    APPLIED = "applied"
    IGNORED_STALE = "ignored_stale"


@dataclass(frozen=True)
class MeasurementKey:
    """Identifies one time series: a parameter measured at a location."""
    location_id: str
    parameter: str

    def __str__(self) -> str:
        return f"{self.location_id}/{self.parameter}"


class Coordinates(BaseModel):
    """Geographic position of a monitoring location."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def to_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


class MeasurementRecord(BaseModel):
    """
    One observation reported for a (location, parameter) series.

    ``timestamp`` is when the source says the value was measured;
    ``ingested_at`` is when this system accepted it. Both are kept
    because the winner for a key is decided on the pair, report time
    first and ingestion order on ties. Naive datetimes are read as UTC.
    """

    model_config = ConfigDict(frozen=True)

    location_id: str
    parameter: str
    value: float
    unit: str
    timestamp: datetime
    ingested_at: datetime
    location: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    @field_validator("location_id", "parameter")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must be non-empty")
        return v

    @field_validator("value")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("value must be finite")
        return v

    @field_validator("timestamp", "ingested_at")
    @classmethod
    def _tz_aware(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def key(self) -> MeasurementKey:
        return MeasurementKey(self.location_id, self.parameter)

    @property
    def ordering(self) -> tuple[datetime, datetime]:
        """The pair compared lexicographically to pick the latest record."""
        return (self.timestamp, self.ingested_at)

    @property
    def location_name(self) -> str:
        return self.location or self.location_id

    def supersedes(self, current: Optional["MeasurementRecord"]) -> bool:
        """True if this record must replace ``current`` as the latest for its key."""
        if current is None:
            return True
        return self.ordering > current.ordering


class LatestEntry(MeasurementRecord):
    """The record currently held as latest for its key."""

    @classmethod
    def from_record(cls, record: MeasurementRecord) -> "LatestEntry":
        if isinstance(record, LatestEntry):
            return record
        return cls(**dict(record))

    def to_measurement(self) -> dict[str, Any]:
        """Wire form of one measurement inside a location result."""
        return {
            "parameter": self.parameter,
            "value": self.value,
            "lastUpdated": format_timestamp(self.timestamp),
            "unit": self.unit,
        }


class LocationSummary(BaseModel):
    """
    All latest entries of one location, derived on every read.

    ``measurements`` holds at most one entry per parameter, ordered by
    parameter name.
    """

    model_config = ConfigDict(frozen=True)

    location_id: str
    location: str
    city: Optional[str] = None
    country: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    measurements: tuple[LatestEntry, ...] = ()

    @classmethod
    def from_entries(cls, location_id: str, entries: list[LatestEntry]) -> "LocationSummary":
        """
        Build the summary of one location.

        Name, city and country come from the most recent entry;
        coordinates from the most recent entry that has any.
        """
        if not entries:
            raise ValueError(f"location {location_id!r} has no entries")

        by_recency = sorted(entries, key=lambda e: e.ordering, reverse=True)
        newest = by_recency[0]
        coordinates = next((e.coordinates for e in by_recency if e.coordinates is not None), None)

        latest_per_parameter: dict[str, LatestEntry] = {}
        for entry in by_recency:
            latest_per_parameter.setdefault(entry.parameter, entry)

        return cls(
            location_id=location_id,
            location=newest.location_name,
            city=newest.city,
            country=newest.country,
            coordinates=coordinates,
            measurements=tuple(latest_per_parameter[p] for p in sorted(latest_per_parameter)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire form of a location result; coordinates omitted when unknown."""
        result: dict[str, Any] = {
            "location": self.location,
            "city": self.city,
            "country": self.country,
        }
        if self.coordinates is not None:
            result["coordinates"] = self.coordinates.to_dict()
        result["measurements"] = [m.to_measurement() for m in self.measurements]
        return result


class QueryResult(BaseModel):
    """Complete, unpaginated answer to a latest-values query."""

    results: list[LocationSummary] = Field(default_factory=list)
    total_count: int = 0
