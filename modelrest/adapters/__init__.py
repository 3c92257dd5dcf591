"""
ModelRest — Adapter Contract
=============================

What:  The boundary between the generated handlers and a web framework.
How:   An adapter is any callable ``adapter(app, method, route, handler)``.
       It registers ``route`` (a template such as ``/persons/:id``) for
       ``method`` on ``app``. When a request arrives it builds a
       ``NormalizedRequest``, awaits ``handler(request)`` and sends the
       returned payload as a JSON body. Errors raised by the handler are
       left to the framework's exception handlers.

Available adapters:
    - fastapi.py: FastAPI / APIRouter (default)
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

Handler = Callable[["NormalizedRequest"], Awaitable[Any]]
Adapter = Callable[[Any, str, str, Handler], None]


@dataclass(frozen=True)
class NormalizedRequest:
    """
    Framework-independent view of an incoming request.

    Attributes:
        params:  Path parameters by name (``id``, ``relatedId``), as strings
        query:   Query-string parameters (last value wins for repeated keys)
        body:    Decoded JSON body, or None when the request has no body
        headers: Request headers, available to per-request session resolvers
    """

    params: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def eager(self) -> Any:
        return self.query.get("eager")

