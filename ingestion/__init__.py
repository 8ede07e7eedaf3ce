"""
Measurement ingestion: validates raw measurements and submits them to
the latest-value index.
"""

from ingestion.service import (
    BatchSubmissionResult,
    MeasurementIngestionService,
    MeasurementUpdate,
    SubmissionResult,
)

__all__ = [
    "BatchSubmissionResult",
    "MeasurementIngestionService",
    "MeasurementUpdate",
    "SubmissionResult",
]
