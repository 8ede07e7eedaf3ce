"""
Exception handlers for the latest-values service.

Converts AppException (invalid_filter, store_unavailable) and any
unexpected exception into one structured JSON error body:
error_code, message, details and request_id. A failed query never
produces a partial result, only one of these bodies.
"""

import logging
import traceback
import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from errors.codes import ErrorCode
from errors.exceptions import AppException

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


class ErrorResponse(BaseModel):
    """Body of every error response."""
    error_code: str
    message: str
    details: Optional[dict[str, Any]] = None
    request_id: str


def get_request_id(request: Request) -> str:
    """Request id set by RequestIDMiddleware, or a fresh uuid4 outside it."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return str(uuid.uuid4())


def _error_response(
    request: Request,
    status_code: int,
    error_code: ErrorCode,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    body = ErrorResponse(
        error_code=error_code.value,
        message=message,
        details=details,
        request_id=get_request_id(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    """
    Answer a known application error with its own status code.

    invalid_filter is the caller's fault and is logged as a warning.
    store_unavailable means the measurement store failed; it is logged
    as an error and answered with 500 so the caller may retry with
    backoff.
    """
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        f"Application error: {exc.error_code.value}",
        extra={"extra_data": {
            "error_code": exc.error_code.value,
            "error_message": exc.message,
            "status_code": exc.status_code,
            "details": exc.details,
            "path": request.url.path,
            "method": request.method,
        }}
    )
    return _error_response(request, exc.status_code, exc.error_code, exc.message, exc.details)


async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    """
    Answer any other exception with a generic INTERNAL_ERROR body.

    The stack trace goes to the log only; neither the exception message
    nor any detail reaches the client.
    """
    logger.error(
        "Unexpected error occurred",
        extra={"extra_data": {
            "error_code": ErrorCode.INTERNAL_ERROR.value,
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "stack_trace": traceback.format_exc(),
        }},
        exc_info=True,
    )
    return _error_response(request, 500, ErrorCode.INTERNAL_ERROR, GENERIC_ERROR_MESSAGE)


def register_exception_handlers(app) -> None:
    """Install both handlers on a FastAPI application."""
    app.add_exception_handler(AppException, handle_app_exception)
    app.add_exception_handler(Exception, handle_unexpected_exception)
