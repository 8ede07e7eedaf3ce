"""
Middleware components for the latest-values service.

Request correlation: every request gets an id that is echoed in the
X-Request-ID response header, in error bodies and in every log line.
"""

from middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware, request_id_var

__all__ = [
    "REQUEST_ID_HEADER",
    "RequestIDMiddleware",
    "request_id_var",
]
