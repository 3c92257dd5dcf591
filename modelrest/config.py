"""
ModelRest — Configuration
==========================

What:  Environment settings and the immutable generator configuration.
How:   ``Settings`` reads ``MODELREST_*`` environment variables (or a .env file)
       with pydantic-settings. ``GeneratorConfig`` is a frozen pydantic model
       holding every option the route generator and request translator read:
       prefix, pluralizer, exclusions, session factory, per-request session
       resolver, adapter and route log sink.
Who:   ``Settings`` is read by ``modelrest.main`` and ``modelrest.database``;
       ``GeneratorConfig`` is produced by ``RestApiGenerator.config()`` and
       passed by reference to ``build_endpoint_table`` and ``RequestTranslator``.
"""

import logging
import re
from typing import Any, Callable, Optional, Pattern, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from modelrest.adapters.fastapi import fastapi_adapter

_route_logger = logging.getLogger("modelrest.routes")


class Settings(BaseSettings):
    """
    Settings loaded from environment variables.

    All settings have defaults suitable for local development against SQLite.
    """

    # ── Database ──────────────────────────────────────────────────────────
    # Format: <dialect>+<async driver>://user:password@host:port/dbname
    database_url: str = Field(
        default="sqlite+aiosqlite:///./modelrest.db",
        description="Async SQLAlchemy connection URL",
    )
    db_echo: bool = Field(default=False)
    db_pool_pre_ping: bool = Field(default=True)

    # ── Routing ───────────────────────────────────────────────────────────
    route_prefix: str = Field(default="/")

    # ── Logging ───────────────────────────────────────────────────────────
    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    model_config = SettingsConfigDict(
        env_prefix="MODELREST_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


def append_s(word: str) -> str:
    """Default pluralizer: ``person`` → ``persons``."""
    return word + "s"


def normalize_prefix(prefix: str) -> str:
    """``api/v1`` → ``/api/v1/``; ``/`` stays ``/``."""
    if not prefix.startswith("/"):
        prefix = "/" + prefix
    if not prefix.endswith("/"):
        prefix = prefix + "/"
    return prefix


class ExclusionRule(BaseModel):
    """
    Suppresses one auto-generated endpoint.

    ``method`` is compared case-insensitively. ``route`` is either an exact
    route template (``/persons/:id``) or a compiled regular expression that
    is searched in the route template.
    """

    model_config = ConfigDict(frozen=True)

    method: str
    route: Union[str, Pattern[str]]

    def matches(self, method: str, route: str) -> bool:
        if self.method.lower() != method.lower():
            return False
        if isinstance(self.route, str):
            return self.route == route
        return self.route.search(route) is not None


class GeneratorConfig(BaseModel):
    """
    Immutable options of one generator run.

    Attributes:
        route_prefix:      Prepended to every collection route (normalized to
                           start and end with ``/``)
        pluralizer:        Turns the camel-cased table name into the collection
                           path segment
        exclusions:        Rules suppressing individual endpoints
        session_factory:   Default ``async_sessionmaker`` used per request
        session_resolver:  Optional ``(NormalizedRequest) -> async_sessionmaker``
                           choosing the connection for one request
        adapter:           Framework adapter registering handlers
        route_log:         Sink receiving one line per generated route
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    route_prefix: str = "/"
    pluralizer: Callable[[str], str] = append_s
    exclusions: Tuple[ExclusionRule, ...] = ()
    session_factory: Any = None
    session_resolver: Optional[Callable[[Any], Any]] = None
    adapter: Callable[..., Any] = fastapi_adapter
    route_log: Callable[[str], Any] = _route_logger.debug

    @field_validator("route_prefix")
    @classmethod
    def validate_route_prefix(cls, v: str) -> str:
        if re.search(r"\s", v):
            raise ValueError(f"Route prefix '{v}' must not contain whitespace")
        return normalize_prefix(v)

    def is_excluded(self, method: str, route: str) -> bool:
        """A route is excluded when ANY rule matches; rule order is irrelevant."""
        return any(rule.matches(method, route) for rule in self.exclusions)
