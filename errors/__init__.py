"""
Error handling module for the latest-values service.

This module provides:
- ErrorCode enum for the error taxonomy (invalid_filter, store_unavailable)
- AppException and its factory functions
- Exception handlers for FastAPI integration
"""

from errors.codes import ErrorCode
from errors.exceptions import (
    AppException,
    invalid_filter,
    store_unavailable,
)
from errors.handlers import (
    ErrorResponse,
    handle_app_exception,
    handle_unexpected_exception,
    register_exception_handlers,
)

__all__ = [
    "ErrorCode",
    "AppException",
    "ErrorResponse",
    "handle_app_exception",
    "handle_unexpected_exception",
    "invalid_filter",
    "register_exception_handlers",
    "store_unavailable",
]
