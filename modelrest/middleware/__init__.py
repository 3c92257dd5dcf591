"""
ModelRest — Middleware Package
===============================

Middleware chain (outermost first):
    Request → [Request ID] → [Access Log] → [GZip] → [Error Response] → generated endpoint

The request id is assigned before the access log reads it, so every access
record and every error body carries the same id as the ``X-Request-ID``
response header. Errors that no exception handler claims are answered by
the innermost middleware, inside the other two.
"""

from modelrest.middleware.errors import ErrorResponseMiddleware, unexpected_error_response
from modelrest.middleware.logging import RequestLoggingMiddleware
from modelrest.middleware.request_id import RequestIDMiddleware, request_id_var

__all__ = [
    "ErrorResponseMiddleware",
    "RequestIDMiddleware",
    "RequestLoggingMiddleware",
    "request_id_var",
    "unexpected_error_response",
]
