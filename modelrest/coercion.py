"""
ModelRest — Wire Value Coercion
================================

What:  Converts string values from path and query parameters (and JSON
       bodies) into the Python type of the target column.
How:   ``column.type.python_type`` picks a pydantic ``TypeAdapter``; lax
       validation turns ``"5"`` into ``5``, ``"2020-01-01"`` into a date and
       so on. Values that are not strings pass through untouched so JSON
       numbers and booleans keep their type.
"""

from functools import lru_cache
from typing import Any, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from modelrest.exceptions import ValidationError

# Column types whose values are structured documents, not scalars
_PASSTHROUGH_TYPES = (str, dict, list, bytes)


@lru_cache(maxsize=None)
def _adapter_for(python_type: type) -> TypeAdapter:
    return TypeAdapter(python_type)


def python_type_of(column: Any) -> Optional[type]:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def coerce_value(column: Any, value: Any, field: str) -> Any:
    """
    Coerces ``value`` to the Python type of ``column``.

    Raises:
        ValidationError: the string cannot be read as the column type
    """
    if value is None or not isinstance(value, str):
        return value
    python_type = python_type_of(column)
    if python_type is None or python_type in _PASSTHROUGH_TYPES:
        return value
    try:
        return _adapter_for(python_type).validate_python(value)
    except PydanticValidationError as e:
        raise ValidationError(
            message=f"Invalid value '{value}' for '{field}'",
            field=field,
            context={"expected": python_type.__name__, "errors": e.error_count()},
        )
