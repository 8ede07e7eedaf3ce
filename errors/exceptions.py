"""
Exception classes for the latest-values service.

AppException carries a standardized error code, a message, the HTTP
status the transport should answer with, and optional details. The
engine raises it only through the factory functions below.
"""

from typing import Any, Optional

from errors.codes import ErrorCode, get_default_status_code


class AppException(Exception):
    """
    An error with a code from the catalog and a JSON-safe payload.

    Example:
        raise AppException(
            error_code=ErrorCode.INVALID_FILTER,
            message="Invalid value for filter 'value_from': must be a number",
            details={"filter": "value_from", "value": "abc"}
        )
    """

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None
    ):
        """
        Args:
            error_code: Code from the ErrorCode catalog
            message: Human-readable message, safe to return to clients
            status_code: HTTP status, defaults to the code's catalog status
            details: Optional JSON-serializable context
        """
        self.error_code = error_code
        self.message = message
        self.status_code = status_code or get_default_status_code(error_code)
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"error_code": self.error_code.value, "message": self.message}
        if self.details is not None:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return (
            f"AppException(error_code={self.error_code.value!r}, "
            f"message={self.message!r}, status_code={self.status_code}, "
            f"details={self.details!r})"
        )


def invalid_filter(
    key: str,
    message: Optional[str] = None,
    value: Any = None
) -> AppException:
    """
    A query filter value could not be interpreted.

    Args:
        key: The offending filter key, always reported in the details
        message: Optional message, defaults to one naming the key
        value: The rejected raw value, echoed back as a string
    """
    details: dict[str, Any] = {"filter": key}
    if value is not None:
        details["value"] = str(value)
    return AppException(
        error_code=ErrorCode.INVALID_FILTER,
        message=message or f"Invalid value for filter '{key}'",
        details=details
    )


def store_unavailable(
    message: str = "Measurement store unavailable",
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """The measurement store failed or did not answer in time."""
    return AppException(
        error_code=ErrorCode.STORE_UNAVAILABLE,
        message=message,
        details=details
    )
