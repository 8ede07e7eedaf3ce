"""
Measurement ingestion service.

The in-process caller of the latest-value index: it validates raw
measurement payloads, rejects malformed ones before they reach the
index, stamps the ingestion time and submits the resulting record.
"""

import logging
import math
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel, field_validator, model_validator

from errors.exceptions import AppException
from latest.index import LatestValueIndex
from latest.models import Coordinates, MeasurementRecord, UpdateOutcome
from telemetry.service import TelemetryService, get_telemetry_service

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MeasurementUpdate(BaseModel):
    """
    Pydantic model for one reported measurement.

    Attributes:
        location_id: Stable identifier of the monitoring location
        parameter: Measured parameter, stored lower-cased (e.g. "pm25")
        value: Measured value
        unit: Unit of the value (e.g. "µg/m³")
        timestamp: When the source says the value was measured
        location: Display name of the location, defaults to location_id
        city: Optional city
        country: Optional ISO 3166-1 alpha-2 country code
        latitude: Optional latitude, required together with longitude
        longitude: Optional longitude, required together with latitude
    """

    location_id: str
    parameter: str
    value: float
    unit: str
    timestamp: datetime
    location: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator("location_id")
    @classmethod
    def validate_location_id(cls, v: str) -> str:
        """Validate location_id is not empty and has a reasonable length."""
        if not v or not v.strip():
            raise ValueError("location_id cannot be empty")
        if len(v) > 200:
            raise ValueError("location_id cannot exceed 200 characters")
        return v.strip()

    @field_validator("parameter")
    @classmethod
    def validate_parameter(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("parameter cannot be empty")
        return v.strip().lower()

    @field_validator("unit")
    @classmethod
    def validate_unit(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("unit cannot be empty")
        return v.strip()

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("value must be a finite number")
        return v

    @field_validator("location", "city")
    @classmethod
    def validate_optional_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: Optional[str]) -> Optional[str]:
        """Validate country is a two-letter code, stored upper-cased."""
        if v is None or not v.strip():
            return None
        v = v.strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError("country must be a two-letter ISO country code")
        return v

    @field_validator("latitude")
    @classmethod
    def validate_latitude(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not -90 <= v <= 90:
            raise ValueError("Latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    @classmethod
    def validate_longitude(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not -180 <= v <= 180:
            raise ValueError("Longitude must be between -180 and 180")
        return v

    @model_validator(mode="after")
    def validate_coordinates_pair(self) -> "MeasurementUpdate":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self

    def to_record(self, ingested_at: datetime) -> MeasurementRecord:
        coordinates = None
        if self.latitude is not None and self.longitude is not None:
            coordinates = Coordinates(latitude=self.latitude, longitude=self.longitude)
        return MeasurementRecord(
            location_id=self.location_id,
            parameter=self.parameter,
            value=self.value,
            unit=self.unit,
            timestamp=self.timestamp,
            ingested_at=ingested_at,
            location=self.location,
            city=self.city,
            country=self.country,
            coordinates=coordinates,
        )


class SubmissionResult(BaseModel):
    """
    Result of submitting a single measurement.

    Attributes:
        success: False only when the store failed
        location_id: Location of the measurement
        parameter: Parameter of the measurement
        outcome: applied / ignored_stale, None on failure
        message: Optional message with details
    """

    success: bool
    location_id: str
    parameter: str
    outcome: Optional[UpdateOutcome] = None
    message: Optional[str] = None


class BatchSubmissionResult(BaseModel):
    """Aggregate result of a batch submission."""

    total: int
    applied: int
    ignored_stale: int
    failed: int
    results: List[SubmissionResult]


class MeasurementIngestionService:
    """
    Submits validated measurements to the latest-value index.

    Ingestion times come from a clock that is forced to be strictly
    increasing, so two records with the same report timestamp are
    always ordered by the order in which they were submitted.
    """

    def __init__(
        self,
        index: LatestValueIndex,
        telemetry: Optional[TelemetryService] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.index = index
        self.telemetry = telemetry or get_telemetry_service()
        self._clock = clock
        self._last_ingested_at: Optional[datetime] = None

    def _next_ingested_at(self) -> datetime:
        now = self._clock()
        if self._last_ingested_at is not None and now <= self._last_ingested_at:
            now = self._last_ingested_at + timedelta(microseconds=1)
        self._last_ingested_at = now
        return now

    async def submit(self, update: MeasurementUpdate) -> SubmissionResult:
        """
        Submit one measurement.

        A stale measurement is a successful submission with outcome
        ``ignored_stale``.

        Raises:
            AppException: store_unavailable if the store failed.
        """
        start_time = time.perf_counter()
        record = update.to_record(self._next_ingested_at())
        outcome = await self.index.submit(record)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if self.telemetry:
            self.telemetry.record_metric(
                "ingestion.submit_duration_ms",
                duration_ms,
                tags={"outcome": outcome.value}
            )

        logger.debug(
            f"Measurement {record.key} {outcome.value}",
            extra={"extra_data": {
                "location_id": record.location_id,
                "parameter": record.parameter,
                "outcome": outcome.value,
                "duration_ms": duration_ms,
            }}
        )

        return SubmissionResult(
            success=True,
            location_id=record.location_id,
            parameter=record.parameter,
            outcome=outcome,
        )

    async def submit_batch(self, updates: List[MeasurementUpdate]) -> BatchSubmissionResult:
        """
        Submit measurements in order, continuing past store failures.

        Returns:
            BatchSubmissionResult with per-outcome counts and individual results
        """
        results: List[SubmissionResult] = []
        applied = ignored_stale = failed = 0

        for update in updates:
            try:
                result = await self.submit(update)
            except AppException as e:
                results.append(SubmissionResult(
                    success=False,
                    location_id=update.location_id,
                    parameter=update.parameter,
                    message=e.message,
                ))
                failed += 1
                continue

            results.append(result)
            if result.outcome == UpdateOutcome.APPLIED:
                applied += 1
            else:
                ignored_stale += 1

        logger.info(
            f"Batch ingestion complete: {applied} applied, {ignored_stale} stale, {failed} failed",
            extra={"extra_data": {
                "total": len(updates),
                "applied": applied,
                "ignored_stale": ignored_stale,
                "failed": failed,
            }}
        )

        return BatchSubmissionResult(
            total=len(updates),
            applied=applied,
            ignored_stale=ignored_stale,
            failed=failed,
            results=results,
        )
