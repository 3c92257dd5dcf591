"""
ModelRest — Error Response Middleware
======================================

What:  Answers errors that no registered exception handler claimed.
How:   Wraps ``call_next``; an exception escaping the router becomes a JSON
       error response. An error carrying an integer ``status_code`` keeps
       that status, anything else is a 500 with a generic message.
Who:   Added by ``modelrest.main.create_app`` as the innermost middleware,
       so the response still passes through the access log and receives the
       ``X-Request-ID`` header.
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from modelrest.middleware.request_id import request_id_var

logger = logging.getLogger("modelrest.errors")


def unexpected_error_response(exc: Exception) -> JSONResponse:
    rid = request_id_var.get("")
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and not isinstance(status, bool) and 400 <= status < 600:
        logger.warning("[%s] %s (%d): %s", rid, type(exc).__name__, status, exc)
        return JSONResponse(
            status_code=status,
            content={
                "error": type(exc).__name__,
                "message": str(exc),
                "request_id": rid,
            },
        )

    logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred.",
            "request_id": rid,
        },
    )


class ErrorResponseMiddleware(BaseHTTPMiddleware):
    """Converts unhandled exceptions into JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return unexpected_error_response(exc)
