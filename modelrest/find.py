"""
ModelRest — Find Query (filter, sort, range, eager)
====================================================

What:  Turns query-string parameters into criteria on a ``ModelQuery``.
How:   Every key that is not a reserved word is a filter of the form
       ``<property>`` or ``<property>:<operator>``. Properties may walk
       relations with dots (``pets.name:lt=P80``), which becomes an EXISTS
       subquery through ``any()``/``has()``.
Who:   One FindQuery per model table, created during registration. The
       request translator calls ``build(request.query, base_query)`` for the
       collection GET/PATCH/DELETE and relation GET endpoints.

Query-string syntax:
    firstName=Jennifer            equality
    age:gte=20                    eq, lt, lte, gt, gte
    lastName:like=Lawr%           like, likeLower
    id:in=1,2,3                   comma separated list
    pid:isNull / pid:notNull      value ignored
    orderBy=age / orderByDesc=age own columns only
    rangeStart=0&rangeEnd=9       inclusive; result becomes {total, results}
    eager=[parent, pets.owner]    eager expression, checked against allow-list

Eager expressions:
    name                single relation
    a.b                 nested path
    [a, b.c, d.[e, f]]  several paths
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy import func
from sqlalchemy import inspect as sa_inspect

from modelrest.coercion import coerce_value
from modelrest.exceptions import ValidationError

logger = logging.getLogger(__name__)

EagerTree = Dict[str, "EagerTree"]

RESERVED_PARAMS = frozenset({"eager", "orderBy", "orderByDesc", "rangeStart", "rangeEnd"})

_TOKEN = re.compile(r"\s*(?:([A-Za-z_][A-Za-z0-9_]*)|(\S))")


# ══════════════════════════════════════════════════════════════════════════
# Eager Expressions
# ══════════════════════════════════════════════════════════════════════════

class _EagerParser:
    """Recursive-descent parser: list := '[' item (',' item)* ']' | item."""

    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = self._tokenize(expression)
        self.pos = 0

    def _tokenize(self, expression: str) -> List[str]:
        tokens = []
        for match in _TOKEN.finditer(expression):
            name, symbol = match.groups()
            if symbol is not None and symbol not in "[],.":
                self._fail(f"unexpected character '{symbol}'")
            tokens.append(name or symbol)
        return tokens

    def _fail(self, detail: str):
        raise ValidationError(
            message=f"Invalid eager expression '{self.expression}': {detail}",
            field="eager",
        )

    def _peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> Optional[str]:
        token = self._peek()
        self.pos += 1
        return token

    def parse(self) -> EagerTree:
        tree = self._list()
        if self._peek() is not None:
            self._fail(f"unexpected '{self._peek()}'")
        return tree

    def _list(self) -> EagerTree:
        if self._peek() != "[":
            return self._item()
        self.pos += 1
        tree: EagerTree = {}
        if self._peek() == "]":
            self.pos += 1
            return tree
        while True:
            merge_trees(tree, self._item())
            token = self._next()
            if token == "]":
                return tree
            if token != ",":
                self._fail("expected ',' or ']'")

    def _item(self) -> EagerTree:
        name = self._next()
        if name is None or name in "[],.":
            self._fail("expected a relation name")
        children: EagerTree = {}
        if self._peek() == ".":
            self.pos += 1
            children = self._list()
        return {name: children}


def merge_trees(target: EagerTree, source: EagerTree) -> EagerTree:
    for name, children in source.items():
        merge_trees(target.setdefault(name, {}), children)
    return target


def parse_eager(expression: Union[None, str, EagerTree, List[str]]) -> EagerTree:
    """Parses an eager expression (or a list of them) into a nested dict."""
    if expression is None:
        return {}
    if isinstance(expression, dict):
        return expression
    if isinstance(expression, (list, tuple)):
        tree: EagerTree = {}
        for item in expression:
            merge_trees(tree, parse_eager(item))
        return tree
    if not expression.strip():
        return {}
    return _EagerParser(expression).parse()


def eager_paths(tree: EagerTree, prefix: str = "") -> List[str]:
    """``{"a": {"b": {}}, "c": {}}`` → ``["a.b", "c"]``."""
    paths = []
    for name, children in tree.items():
        path = f"{prefix}{name}"
        paths.extend(eager_paths(children, path + ".") if children else [path])
    return paths


def is_subtree(requested: EagerTree, allowed: EagerTree) -> bool:
    return all(
        name in allowed and is_subtree(children, allowed[name])
        for name, children in requested.items()
    )


# ══════════════════════════════════════════════════════════════════════════
# Find Query
# ══════════════════════════════════════════════════════════════════════════

class FindQuery:
    """
    Query-string interpreter for one model.

    The eager allow-list defaults to every direct relation of the model and
    can be replaced during registration:

        generator.add_model(Person, lambda find: find.allow_eager("[parent, pets.owner]"))
    """

    def __init__(self, model_class: Any):
        self.model_class = model_class
        self._allowed: EagerTree = {
            name: {} for name in sa_inspect(model_class).relationships.keys()
        }

    def allow_eager(self, expression: Union[str, List[str], EagerTree]) -> "FindQuery":
        self._allowed = parse_eager(expression)
        return self

    @property
    def allowed_eager(self) -> List[str]:
        """Permitted eager-load paths, e.g. ``["parent", "pets.owner"]``."""
        return eager_paths(self._allowed)

    def build(self, params: Mapping[str, Any], query: Any) -> Any:
        """
        Applies filters, ordering, range and eager loading to ``query``.

        Args:
            params: Query-string parameters of the request
            query:  ModelQuery (or RelatedQuery) over this model

        Returns:
            The same query object, for chaining.

        Raises:
            ValidationError: unknown property or operator, bad range, or an
                             eager path outside the allow-list
        """
        for key, value in params.items():
            if key in RESERVED_PARAMS:
                continue
            path, _, operator = key.partition(":")
            query.filter(self._criterion(self.model_class, path.split("."), operator or "eq", value, key))

        if params.get("orderBy"):
            query.order_by(self._own_column(params["orderBy"], "orderBy"))
        if params.get("orderByDesc"):
            query.order_by(self._own_column(params["orderByDesc"], "orderByDesc").desc())

        if "rangeStart" in params or "rangeEnd" in params:
            query.range(
                self._int_param(params, "rangeStart"),
                self._int_param(params, "rangeEnd"),
            )

        return query.allow_eager(self._allowed).eager(params.get("eager"))

    # ── Criteria ──────────────────────────────────────────────────────────

    def _criterion(self, model_class: Any, parts: List[str], operator: str, value: Any, key: str):
        mapper = sa_inspect(model_class)
        name = parts[0]

        if len(parts) == 1:
            if name not in mapper.columns:
                raise ValidationError(message=f"Unknown property '{key}'", field=key)
            return self._compare(getattr(model_class, name), mapper.columns[name], operator, value, key)

        if name not in mapper.relationships:
            raise ValidationError(message=f"Unknown relation in '{key}'", field=key)
        prop = mapper.relationships[name]
        inner = self._criterion(prop.mapper.class_, parts[1:], operator, value, key)
        attribute = getattr(model_class, name)
        return attribute.any(inner) if prop.uselist else attribute.has(inner)

    def _compare(self, attribute: Any, column: Any, operator: str, value: Any, key: str):
        if operator == "isNull":
            return attribute.is_(None)
        if operator == "notNull":
            return attribute.isnot(None)
        if operator == "like":
            return attribute.like(value)
        if operator == "likeLower":
            return func.lower(attribute).like(str(value).lower())
        if operator == "in":
            items = value.split(",") if isinstance(value, str) else list(value)
            return attribute.in_([coerce_value(column, item.strip() if isinstance(item, str) else item, key) for item in items])

        coerced = coerce_value(column, value, key)
        if operator == "eq":
            return attribute == coerced
        if operator == "lt":
            return attribute < coerced
        if operator == "lte":
            return attribute <= coerced
        if operator == "gt":
            return attribute > coerced
        if operator == "gte":
            return attribute >= coerced
        raise ValidationError(message=f"Unknown filter operator '{operator}'", field=key)

    def _own_column(self, name: str, key: str):
        if name not in sa_inspect(self.model_class).columns:
            raise ValidationError(message=f"Cannot order by '{name}'", field=key)
        return getattr(self.model_class, name)

    @staticmethod
    def _int_param(params: Mapping[str, Any], key: str) -> Optional[int]:
        if key not in params:
            return None
        try:
            number = int(params[key])
        except (TypeError, ValueError):
            raise ValidationError(message=f"'{key}' must be an integer", field=key)
        if number < 0:
            raise ValidationError(message=f"'{key}' must not be negative", field=key)
        return number
