"""
ModelRest — REST API Generator
===============================

What:  Fluent builder that collects models and options, then mounts the
       generated endpoints on an application.
How:   Configuration methods return the generator for chaining. ``config()``
       and ``registry()`` freeze what was collected into the immutable
       ``GeneratorConfig`` and ``ModelRegistry``; ``generate(app)`` builds the
       endpoint table, asks the ``RequestTranslator`` for one handler per
       endpoint and hands each to the adapter.
Who:   Application code, typically before ``modelrest.main.create_app``.

Usage:
    generator = (
        RestApiGenerator(session_factory)
        .route_prefix("/api/v1")
        .add_model(Person, lambda find: find.allow_eager("[parent, pets, movies]"))
        .add_model(Movie)
        .exclude("DELETE", re.compile(r"/movies"))
    )
    generator.generate(app)
"""

import logging
from typing import Any, Callable, List, Optional, Pattern, Union

from pydantic import ValidationError as PydanticValidationError

from modelrest.config import ExclusionRule, GeneratorConfig, Settings, append_s
from modelrest.descriptors import ModelRegistry, RegistryBuilder
from modelrest.exceptions import ConfigurationError
from modelrest.find import FindQuery
from modelrest.routing import EndpointDefinition, build_endpoint_table
from modelrest.translator import RequestTranslator

logger = logging.getLogger(__name__)


class RestApiGenerator:
    """
    Collects models and options for one generated API.

    Args:
        session_factory: Default ``async_sessionmaker`` opened per request
        settings:        Optional Settings supplying the default route prefix
    """

    def __init__(self, session_factory: Any = None, settings: Optional[Settings] = None):
        self._session_factory = session_factory
        self._registry = RegistryBuilder()
        self._route_prefix = settings.route_prefix if settings else "/"
        self._pluralizer: Callable[[str], str] = append_s
        self._exclusions: List[ExclusionRule] = []
        self._session_resolver: Optional[Callable[[Any], Any]] = None
        self._adapter: Optional[Callable[..., Any]] = None
        self._route_log: Optional[Callable[[str], Any]] = None

    # ── Configuration ─────────────────────────────────────────────────────

    def logger(self, sink: Callable[[str], Any]) -> "RestApiGenerator":
        """Receives one line per generated route, e.g. ``print``."""
        self._route_log = sink
        return self

    def add_model(
        self,
        model_class: Any,
        modify: Optional[Callable[[FindQuery], Any]] = None,
    ) -> "RestApiGenerator":
        """Registers ``model_class``; ``modify`` may adjust its FindQuery."""
        self._registry.add_model(model_class, modify)
        return self

    def route_prefix(self, prefix: str) -> "RestApiGenerator":
        self._route_prefix = prefix
        return self

    def pluralizer(self, fn: Callable[[str], str]) -> "RestApiGenerator":
        self._pluralizer = fn
        return self

    def exclude(self, method: str, route: Union[str, Pattern[str]]) -> "RestApiGenerator":
        """Suppresses the endpoint ``method route``; ``route`` may be a compiled regex."""
        self._exclusions.append(ExclusionRule(method=method, route=route))
        return self

    def session_resolver(self, fn: Callable[[Any], Any]) -> "RestApiGenerator":
        """``fn(NormalizedRequest)`` returns the session factory for that request."""
        self._session_resolver = fn
        return self

    def adapter(self, fn: Callable[..., Any]) -> "RestApiGenerator":
        self._adapter = fn
        return self

    # ── Frozen Views ──────────────────────────────────────────────────────

    def config(self) -> GeneratorConfig:
        options = {
            "route_prefix": self._route_prefix,
            "pluralizer": self._pluralizer,
            "exclusions": tuple(self._exclusions),
            "session_factory": self._session_factory,
            "session_resolver": self._session_resolver,
        }
        if self._adapter is not None:
            options["adapter"] = self._adapter
        if self._route_log is not None:
            options["route_log"] = self._route_log
        try:
            return GeneratorConfig(**options)
        except PydanticValidationError as e:
            raise ConfigurationError(
                message="Invalid generator configuration",
                context={"errors": [error["msg"] for error in e.errors()]},
            )

    def registry(self) -> ModelRegistry:
        return self._registry.build()

    def endpoints(self) -> List[EndpointDefinition]:
        return build_endpoint_table(self.registry(), self.config())

    # ── Generation ────────────────────────────────────────────────────────

    def generate(self, app: Any) -> List[EndpointDefinition]:
        """
        Mounts every endpoint on ``app`` through the configured adapter.

        Returns:
            The mounted endpoints in generation order.
        """
        registry = self.registry()
        config = self.config()
        translator = RequestTranslator(registry, config)
        endpoints = build_endpoint_table(registry, config)

        section = None
        for endpoint in endpoints:
            if (endpoint.model, endpoint.relation) != section:
                self._log_section(config, endpoint, section)
                section = (endpoint.model, endpoint.relation)
            config.route_log(f"{'  ' * endpoint.depth}{endpoint.method} {endpoint.path}")
            config.adapter(app, endpoint.method, endpoint.path, translator.build(endpoint))

        logger.info(
            "Generated %d endpoints for %d models", len(endpoints), len(registry.models)
        )
        return endpoints

    @staticmethod
    def _log_section(config: GeneratorConfig, endpoint: EndpointDefinition, previous: Any) -> None:
        # Person:
        #   POST /persons
        #   pets:
        #     POST /persons/:id/pets
        if previous is None or previous[0] is not endpoint.model:
            config.route_log(f"{endpoint.model.name}:")
        if endpoint.relation is not None:
            config.route_log(f"  {endpoint.relation.name}:")
