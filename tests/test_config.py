"""
ModelRest — Settings, Database & Adapter Helper Tests
======================================================

What we test:
    ✅ MODELREST_* environment variables and log level validation
    ✅ Engine creation from settings and URL redaction
    ✅ Route template conversion for FastAPI
    ✅ Exception status codes and context
"""

import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from modelrest.adapters import NormalizedRequest
from modelrest.adapters.fastapi import to_path_template
from modelrest.config import ExclusionRule, Settings, normalize_prefix
from modelrest.database import _redact, create_engine_from_settings, dispose_engine
from modelrest.exceptions import NotFoundError, RelationKindError, ValidationError
from modelrest.main import setup_logging


class TestSettings:
    """Tests for Settings and logging setup."""

    def test_env_prefix(self, monkeypatch):
        """MODELREST_* environment variables populate Settings."""
        monkeypatch.setenv("MODELREST_ROUTE_PREFIX", "/api")
        monkeypatch.setenv("MODELREST_LOG_LEVEL", "debug")
        settings = Settings()
        assert settings.route_prefix == "/api"
        assert settings.log_level == "DEBUG"

    def test_invalid_log_level(self):
        """An unknown log level fails validation."""
        with pytest.raises(PydanticValidationError):
            Settings(log_level="LOUD")

    def test_setup_logging_applies_level(self):
        """setup_logging sets the root logger level."""
        setup_logging(Settings(log_level="ERROR"))
        assert logging.getLogger().level == logging.ERROR

    @pytest.mark.parametrize(
        "prefix, expected",
        [("/", "/"), ("api", "/api/"), ("/api/v1", "/api/v1/"), ("/api/", "/api/")],
    )
    def test_normalize_prefix(self, prefix, expected):
        """Prefixes gain leading and trailing slashes."""
        assert normalize_prefix(prefix) == expected


class TestExclusionRule:
    """Tests for a single exclusion rule."""

    def test_exact_match_only(self):
        """A string route matches only the identical route."""
        rule = ExclusionRule(method="GET", route="/persons")
        assert rule.matches("get", "/persons")
        assert not rule.matches("GET", "/persons/:id")


class TestDatabase:
    """Tests for engine helpers."""

    @pytest.mark.asyncio
    async def test_engine_from_settings(self, tmp_path):
        """The engine is built from database_url."""
        settings = Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'x.db'}")
        engine = create_engine_from_settings(settings)
        assert engine.dialect.name == "sqlite"
        await dispose_engine(engine)

    def test_redact_hides_password(self):
        """Logged URLs hide the password."""
        url = "postgresql+asyncpg://app:secret@db:5432/modelrest"
        assert _redact(url) == "postgresql+asyncpg://app:***@db:5432/modelrest"
        assert _redact("sqlite+aiosqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"


class TestAdapterHelpers:
    """Tests for FastAPI adapter helpers."""

    def test_path_template(self):
        """:name segments become {name} path parameters."""
        assert to_path_template("/persons/:id/movies/:relatedId") == "/persons/{id}/movies/{relatedId}"

    def test_normalized_request_eager(self):
        """NormalizedRequest exposes the eager query parameter."""
        assert NormalizedRequest(query={"eager": "pets"}).eager == "pets"
        assert NormalizedRequest().eager is None


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_status_codes(self):
        """Exceptions carry their HTTP status."""
        assert ValidationError("bad", field="age").status_code == 400
        assert NotFoundError("Person", 5).status_code == 404

    def test_not_found_context(self):
        """NotFoundError names the resource and id."""
        error = NotFoundError("Person", 5)
        assert error.context == {"resource": "Person", "resource_id": "5"}
        assert "5" in error.message

    def test_relation_kind_error_names_relation(self):
        """RelationKindError names the model and relation."""
        error = RelationKindError("Person", "parent", "ambiguous")
        assert error.context == {"model": "Person", "relation": "parent"}
        assert error.status_code == 500
