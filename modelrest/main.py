"""
ModelRest — FastAPI Application Factory
========================================

What:  Assembles a FastAPI application serving the endpoints of one
       ``RestApiGenerator``.
How:   ``create_app(generator)`` wires logging, middleware, exception
       handlers and the generated routes; the lifespan disposes the engine
       on shutdown.
Who:   Application entry points and the test suite.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware Chain:                                  │
    │  ┌────────┐ ┌──────────┐ ┌──────┐ ┌────────────┐    │
    │  │ Req ID │→│Access Log│→│ GZip │→│ErrorResp.  │    │
    │  └────────┘ └──────────┘ └──────┘ └────────────┘    │
    │                                                     │
    │  Routes: one per EndpointDefinition of the generator│
    │                                                     │
    │  Exception Handlers:                                │
    │  ┌──────────────────────────────────────────────┐   │
    │  │ ModelRestError→status_code │ other→500        │   │
    │  └──────────────────────────────────────────────┘   │
    └─────────────────────────────────────────────────────┘

Usage:
    engine = create_engine_from_settings(settings)
    generator = RestApiGenerator(create_session_factory(engine)).add_model(Person)
    app = create_app(generator, engine=engine, settings=settings)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from modelrest import __version__
from modelrest.config import Settings
from modelrest.database import dispose_engine
from modelrest.exceptions import ConfigurationError, ModelRestError
from modelrest.generator import RestApiGenerator
from modelrest.middleware import (
    ErrorResponseMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    request_id_var,
    unexpected_error_response,
)

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configures the root logger from ``settings.log_level``.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    settings = settings or Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    if not settings.db_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Maps exceptions raised by generated handlers to JSON error responses.

    Handler hierarchy:
        ModelRestError subclasses  → their ``status_code`` (400, 404, 409, 500)
        Exception with int status  → that status (ErrorResponseMiddleware)
        Exception (fallback)       → 500 Internal Server Error (ErrorResponseMiddleware)

    Response bodies never contain stack traces or SQL; those are logged.
    """

    @app.exception_handler(ModelRestError)
    async def handle_modelrest_error(request: Request, exc: ModelRestError):
        rid = request_id_var.get("")
        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        else:
            logger.warning("[%s] %s: %s", rid, type(exc).__name__, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error_code,
                "message": exc.message,
                "details": exc.context,
                "request_id": rid,
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Last resort for errors raised outside ErrorResponseMiddleware."""
        return unexpected_error_response(exc)


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    generator: RestApiGenerator,
    engine: Optional[AsyncEngine] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Creates a FastAPI application serving ``generator``'s endpoints.

    Args:
        generator: Configured generator; its routes are mounted immediately
        engine:    Engine disposed on shutdown, when the app owns it
        settings:  Logging configuration; defaults to ``Settings()``

    Raises:
        ConfigurationError: the generator has no models
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(settings)
        logger.info("ModelRest %s serving %d routes", __version__, len(endpoints))
        yield
        if engine is not None:
            await dispose_engine(engine)
        logger.info("Shutdown complete.")

    app = FastAPI(
        title="ModelRest API",
        description="REST endpoints generated from SQLAlchemy models.",
        version=__version__,
        lifespan=lifespan,
    )

    # Last added runs first: RequestID → Logging → GZip → ErrorResponse
    app.add_middleware(ErrorResponseMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    endpoints = generator.generate(app)
    if not endpoints:
        raise ConfigurationError(message="The generator produced no endpoints; add a model first")
    return app
