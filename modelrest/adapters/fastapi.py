"""
ModelRest — FastAPI Adapter
============================

What:  Registers generated handlers as FastAPI routes.
How:   ``/persons/:id`` becomes ``/persons/{id}``; the endpoint reads path
       params, query params and the JSON body into a ``NormalizedRequest``,
       awaits the handler and returns a ``JSONResponse``.
Who:   Default adapter of ``RestApiGenerator``. Works with ``FastAPI`` and
       ``APIRouter`` since both expose ``add_api_route``.

Error flow:
    The endpoint does not catch anything raised by the handler. FastAPI passes
    the exception to the handlers registered by
    ``modelrest.main.register_exception_handlers``, which map ``status_code``
    to the HTTP status.
"""

import logging
import re
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.requests import Request

from modelrest.adapters import Handler, NormalizedRequest
from modelrest.exceptions import ValidationError

logger = logging.getLogger(__name__)

_PARAM_SEGMENT = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


def to_path_template(route: str) -> str:
    """Converts ``:name`` segments into FastAPI ``{name}`` path parameters."""
    return _PARAM_SEGMENT.sub(r"{\1}", route)


async def read_json_body(request: Request) -> Any:
    """
    Decodes the request body as JSON.

    Returns None for an empty body. A body that is not valid JSON is a
    client error (400), not a server error.
    """
    raw = await request.body()
    if not raw or not raw.strip():
        return None
    try:
        return await request.json()
    except ValueError as e:
        raise ValidationError(
            message="Request body is not valid JSON",
            context={"error": str(e)},
        )


def fastapi_adapter(app: Any, method: str, route: str, handler: Handler) -> None:
    """
    Registers ``handler`` for ``method`` and ``route`` on a FastAPI app or router.

    Args:
        app:     FastAPI application or APIRouter
        method:  HTTP method (any case)
        route:   Route template using ``:name`` parameters
        handler: Coroutine function taking a NormalizedRequest
    """
    method = method.upper()

    async def endpoint(request: Request) -> JSONResponse:
        normalized = NormalizedRequest(
            params=dict(request.path_params),
            query=dict(request.query_params),
            body=await read_json_body(request),
            headers=dict(request.headers),
        )
        payload = await handler(normalized)
        return JSONResponse(content=jsonable_encoder(payload))

    app.add_api_route(
        to_path_template(route),
        endpoint,
        methods=[method],
        name=f"{method} {route}",
    )
    logger.debug("Mounted %s %s", method, route)
