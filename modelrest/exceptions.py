"""
ModelRest — Exception Hierarchy
================================

What:  Application-specific exceptions raised by the generator, the request
       translator and the persistence layer.
How:   Every exception carries a user-facing message, an optional context dict
       and a class-level ``status_code``. The exception handlers registered in
       ``modelrest.main`` turn ``status_code`` into the HTTP status of the
       response.
Who:   Raised by the persistence layer, the query builder and the translator;
       caught by the global handlers.

Exception Hierarchy:
    ModelRestError (base)            → 500
    ├── ValidationError              → 400 Bad Request
    ├── NotFoundError                → 404 Not Found
    ├── ConflictError                → 409 Conflict
    └── ConfigurationError           → 500 (raised at registration time)
        └── RelationKindError        → relation cannot be classified
"""

from typing import Any, Dict, Optional


class ModelRestError(Exception):
    """
    Base exception for all ModelRest errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, returned as ``details``)
    """

    status_code: int = 500
    error_code: str = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(ModelRestError):
    """
    Raised when request input cannot be applied to a model.

    When:    Unknown payload keys, values that do not coerce to the column type,
             malformed filter or eager expressions, eager paths outside the
             allow-list.
    HTTP:    400 Bad Request
    """

    status_code = 400
    error_code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(ModelRestError):
    """
    Raised when a row looked up by primary key does not exist.

    When:    GET/PUT/PATCH on /<collection>/:id for a missing id, or any
             relation endpoint whose owner id is missing.
    HTTP:    404 Not Found
    """

    status_code = 404
    error_code = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id is not None:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id is not None:
            ctx["resource_id"] = str(resource_id)
        super().__init__(message=message, context=ctx)


class ConflictError(ModelRestError):
    """
    Raised when a write would give a singular relation a second row.

    When:    POST to a has-one relation whose owner already has a related row.
    HTTP:    409 Conflict
    """

    status_code = 409
    error_code = "conflict"

    def __init__(
        self,
        message: str = "The request conflicts with existing data",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConfigurationError(ModelRestError):
    """
    Raised when a model or generator option cannot be used.

    When:    Composite primary keys, unknown relation names, invalid route
             prefixes. Raised during configuration, before any request.
    """

    error_code = "configuration_error"

    def __init__(
        self,
        message: str = "Invalid generator configuration",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RelationKindError(ConfigurationError):
    """
    Raised when a relationship does not map onto a known relation kind.

    A to-one relationship with a collection, or a many-to-many relationship
    declared with ``uselist=False``, leaves the number of related rows
    ambiguous. The generator refuses the model instead of guessing which
    endpoints apply.
    """

    def __init__(self, model: str, relation: str, detail: str):
        super().__init__(
            message=f"Cannot classify relation '{model}.{relation}': {detail}",
            context={"model": model, "relation": relation},
        )
