"""
ModelRest — Database Engine & Session Factory
==============================================

What:  Helpers creating the async SQLAlchemy engine and session factory the
       generated handlers open one session from per request.
How:   ``create_engine_from_settings`` builds an ``AsyncEngine`` from
       ``Settings``; ``create_session_factory`` wraps it in an
       ``async_sessionmaker`` with ``expire_on_commit=False`` so instances
       returned by a handler stay readable after the transaction commits.
Who:   Used by applications wiring ``RestApiGenerator`` and by the test suite.

Connection Pooling:
    SQLite (aiosqlite) uses SQLAlchemy's default pool for file databases;
    server databases additionally honor ``db_pool_pre_ping``.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from modelrest.config import Settings

logger = logging.getLogger(__name__)


def create_engine_from_settings(settings: Optional[Settings] = None) -> AsyncEngine:
    """Creates an async engine for ``settings.database_url``."""
    settings = settings or Settings()
    kwargs = {"echo": settings.db_echo}
    if not settings.database_url.startswith("sqlite"):
        kwargs["pool_pre_ping"] = settings.db_pool_pre_ping
    logger.info("Creating database engine for %s", _redact(settings.database_url))
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """
    Session factory used by the request translator.

    expire_on_commit=False: handlers serialize instances after the commit of
    their transaction, which must not trigger a lazy reload.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def dispose_engine(engine: AsyncEngine) -> None:
    """Closes all pooled connections. Called on application shutdown."""
    await engine.dispose()


def _redact(url: str) -> str:
    # user:password@host → user:***@host
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"
