"""
Error code catalog for the latest-values service.

Every failure surfaced by the query path maps to one of these codes.
Stale writes are not errors and have no code here.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Error codes returned in the ``error_code`` field of error bodies."""

    # The caller sent a filter value that cannot be interpreted
    INVALID_FILTER = "INVALID_FILTER"

    # The measurement store failed or did not answer within the query timeout
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"

    # Anything else; details stay in the logs
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_CODE_STATUS_MAP: dict[ErrorCode, int] = {
    ErrorCode.INVALID_FILTER: 400,
    ErrorCode.STORE_UNAVAILABLE: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


def get_default_status_code(error_code: ErrorCode) -> int:
    """HTTP status for ``error_code``; unknown codes answer 500."""
    return ERROR_CODE_STATUS_MAP.get(error_code, 500)
