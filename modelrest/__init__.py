"""
ModelRest — REST Route Generator for SQLAlchemy Models
=======================================================

What: Generates a conventional REST API for registered ORM models and their
      relations, and mounts it on a web application (FastAPI by default).

Architecture Note:

    ┌─────────────────────────────────────┐
    │     RestApiGenerator (generator)    │  ← models + options
    ├─────────────────────────────────────┤
    │    Route Table Builder (routing)    │  ← pure endpoint enumeration
    ├─────────────────────────────────────┤
    │  Request Translator (translator)    │  ← one handler per endpoint
    ├─────────────────────────────────────┤
    │  Reconciler │ FindQuery │ ModelQuery│  ← relation PUT, filters, SQL
    ├─────────────────────────────────────┤
    │     Adapter (adapters.fastapi)      │  ← framework binding
    └─────────────────────────────────────┘
"""

import logging

__version__ = "1.0.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

from modelrest.adapters import NormalizedRequest  # noqa: E402
from modelrest.config import ExclusionRule, GeneratorConfig, Settings  # noqa: E402
from modelrest.descriptors import RelationKind  # noqa: E402
from modelrest.exceptions import (  # noqa: E402
    ConfigurationError,
    ConflictError,
    ModelRestError,
    NotFoundError,
    RelationKindError,
    ValidationError,
)
from modelrest.find import FindQuery  # noqa: E402
from modelrest.generator import RestApiGenerator  # noqa: E402
from modelrest.reconciler import ReconciliationPlan, ids_equal, reconcile  # noqa: E402
from modelrest.routing import EndpointDefinition, build_endpoint_table  # noqa: E402

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "EndpointDefinition",
    "ExclusionRule",
    "FindQuery",
    "GeneratorConfig",
    "ModelRestError",
    "NormalizedRequest",
    "NotFoundError",
    "ReconciliationPlan",
    "RelationKind",
    "RelationKindError",
    "RestApiGenerator",
    "Settings",
    "ValidationError",
    "build_endpoint_table",
    "ids_equal",
    "reconcile",
]
