"""
ModelRest — Request ID Middleware
==================================

What:  Assigns an identifier to each request and echoes it in the response.
How:   Reuses the client's ``X-Request-ID`` header or generates a short UUID,
       stores it in a ContextVar (read by the access log and the exception
       handlers) and in ``request.state``.
Who:   Added by ``modelrest.main.create_app``; runs before the access log.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Sets ``request_id_var`` and the ``X-Request-ID`` response header."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())[:8]
        request_id_var.set(rid)
        request.state.request_id = rid
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
