"""
ModelRest — Persistence Layer
==============================

What:  Query objects over an ``AsyncSession`` that the request translator
       composes into one pipeline per request.
How:   ``ModelQuery`` accumulates criteria, ordering, range and eager-load
       options for one ORM class and exposes awaitable terminal operations
       (``first``, ``all``, ``fetch``, ``insert``, ``update``, ``patch``,
       ``delete``). ``RelatedQuery`` is a ``ModelQuery`` over the related
       class of one relation, restricted to one owner instance, adding
       ``relate`` and relation-aware ``insert``/``delete``.
Who:   Built per request by ``RequestTranslator`` around the session resolved
       for that request.

Write Strategy:
    Bulk writes first resolve the primary keys matching the criteria, then
    issue one UPDATE/DELETE keyed on ``id IN (...)``. A write carrying a
    range is rejected; ordering has no effect on the matched set. This keeps criteria
    that span a join table (many-to-many) out of UPDATE/DELETE statements,
    which several backends reject. Deleted instances are evicted from the
    identity map so that a server-assigned id reused by a later insert in
    the same transaction cannot collide with a stale instance.

Read Strategy:
    Every SELECT runs with ``populate_existing`` so a re-fetch after a Core
    UPDATE returns the written values, not the identity map's cached ones.
    Eager paths are loaded with ``selectinload``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import delete, false, func, insert, select, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, with_parent
from sqlalchemy.orm.attributes import set_committed_value

from modelrest.coercion import coerce_value
from modelrest.descriptors import RelationDescriptor, RelationKind
from modelrest.exceptions import ConflictError, NotFoundError, ValidationError
from modelrest.find import EagerTree, is_subtree, parse_eager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Runs the enclosed persistence calls as one transaction.

    Commits when the block completes; any exception rolls back every
    statement issued inside the block and propagates unchanged.
    """
    async with session.begin():
        yield session


def _key_of(mapper: Any, column: Any) -> str:
    return mapper.get_property_by_column(column).key


class ModelQuery:
    """
    Query builder for one ORM class bound to one session.

    Builder methods return ``self``; terminal methods are coroutines.

    Example:
        person = await (
            ModelQuery(session, Person)
            .allow_eager("[parent, pets]")
            .eager("pets")
            .where("id", "5")
            .first()
        )
    """

    def __init__(self, session: AsyncSession, model_class: Any):
        self.session = session
        self.model_class = model_class
        self.mapper = sa_inspect(model_class)
        self.eager_tree: EagerTree = {}
        self._criteria: List[Any] = []
        self._order: List[Any] = []
        self._range: Optional[Tuple[Optional[int], Optional[int]]] = None
        self._allowed_eager: Optional[EagerTree] = None

    # ── Introspection ─────────────────────────────────────────────────────

    @property
    def id_attribute(self) -> str:
        return _key_of(self.mapper, self.mapper.primary_key[0])

    @property
    def id_column(self) -> Any:
        return getattr(self.model_class, self.id_attribute)

    def _column(self, key: str) -> Any:
        if key not in self.mapper.columns:
            raise ValidationError(
                message=f"Unknown property '{key}' for {self.model_class.__name__}",
                field=key,
            )
        return self.mapper.columns[key]

    # ── Builder Methods ───────────────────────────────────────────────────

    def where(self, key: str, value: Any) -> "ModelQuery":
        column = self._column(key)
        self._criteria.append(getattr(self.model_class, key) == coerce_value(column, value, key))
        return self

    def where_in(self, key: str, values: List[Any]) -> "ModelQuery":
        column = self._column(key)
        coerced = [coerce_value(column, value, key) for value in values]
        self._criteria.append(getattr(self.model_class, key).in_(coerced))
        return self

    def filter(self, *criteria: Any) -> "ModelQuery":
        self._criteria.extend(criteria)
        return self

    def order_by(self, *clauses: Any) -> "ModelQuery":
        self._order.extend(clauses)
        return self

    def range(self, start: Optional[int], end: Optional[int]) -> "ModelQuery":
        self._range = (start, end)
        return self

    def allow_eager(self, expression: Any) -> "ModelQuery":
        self._allowed_eager = parse_eager(expression)
        return self

    def eager(self, expression: Any) -> "ModelQuery":
        """
        Requests eager loading of ``expression``.

        Raises:
            ValidationError: a path names no relation, or falls outside the
                             allow-list set with ``allow_eager``
        """
        tree = parse_eager(expression)
        self._check_relations(self.model_class, tree, expression)
        if self._allowed_eager is not None and not is_subtree(tree, self._allowed_eager):
            raise ValidationError(
                message=f"Eager expression '{expression}' is not allowed",
                field="eager",
                context={"model": self.model_class.__name__},
            )
        self.eager_tree = tree
        return self

    def _check_relations(self, model_class: Any, tree: EagerTree, expression: Any) -> None:
        relationships = sa_inspect(model_class).relationships
        for name, children in tree.items():
            if name not in relationships:
                raise ValidationError(
                    message=f"Unknown relation '{name}' in eager expression '{expression}'",
                    field="eager",
                )
            self._check_relations(relationships[name].mapper.class_, children, expression)

    # ── Statement Building ────────────────────────────────────────────────

    def _load_options(self, model_class: Any, tree: EagerTree, parent: Any = None) -> List[Any]:
        options = []
        relationships = sa_inspect(model_class).relationships
        for name, children in tree.items():
            attribute = getattr(model_class, name)
            option = selectinload(attribute) if parent is None else parent.selectinload(attribute)
            if children:
                options.extend(
                    self._load_options(relationships[name].mapper.class_, children, option)
                )
            else:
                options.append(option)
        return options

    def _select(self):
        stmt = select(self.model_class).where(*self._criteria)
        if self._order:
            stmt = stmt.order_by(*self._order)
        options = self._load_options(self.model_class, self.eager_tree)
        if options:
            stmt = stmt.options(*options)
        return stmt.execution_options(populate_existing=True)

    def _ranged(self, stmt):
        if self._range is None:
            return stmt
        start, end = self._range
        if start:
            stmt = stmt.offset(start)
        if end is not None:
            stmt = stmt.limit(max(end - (start or 0) + 1, 0))
        return stmt

    async def _matching_ids(self) -> List[Any]:
        if self._range is not None:
            raise ValidationError(
                message="rangeStart/rangeEnd select a page of a read and cannot limit a write",
                field="rangeStart" if self._range[0] is not None else "rangeEnd",
            )
        stmt = select(self.id_column).where(*self._criteria).distinct()
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ── Reads ─────────────────────────────────────────────────────────────

    async def first(self) -> Optional[Any]:
        result = await self.session.execute(self._select().limit(1))
        return result.scalars().first()

    async def all(self) -> List[Any]:
        result = await self.session.execute(self._ranged(self._select()))
        return list(result.scalars().all())

    async def count(self) -> int:
        subquery = select(self.id_column).where(*self._criteria).subquery()
        result = await self.session.execute(select(func.count()).select_from(subquery))
        return result.scalar_one()

    async def fetch(self) -> Any:
        """All rows, or ``{"total", "results"}`` when a range was requested."""
        if self._range is None:
            return await self.all()
        return {"total": await self.count(), "results": await self.all()}

    # ── Writes ────────────────────────────────────────────────────────────

    def _values(self, payload: Any, full: bool = False) -> Dict[str, Any]:
        """
        Validates a JSON payload against the model's columns.

        ``full`` additionally requires every non-nullable column without a
        default (primary key excluded), which is what a full update replaces.
        """
        if not isinstance(payload, Mapping):
            raise ValidationError(
                message=f"Expected a JSON object for {self.model_class.__name__}",
                context={"received": type(payload).__name__},
            )
        values = {key: coerce_value(self._column(key), value, key) for key, value in payload.items()}

        if full:
            missing = [
                key
                for key, column in self.mapper.columns.items()
                if key not in values
                and not column.primary_key
                and not column.nullable
                and column.default is None
                and column.server_default is None
            ]
            if missing:
                raise ValidationError(
                    message=f"Missing required properties: {', '.join(missing)}",
                    context={"missing": missing},
                )
        return values

    async def insert(self, payload: Any) -> Any:
        instance = self.model_class(**self._values(payload))
        self.session.add(instance)
        await self.session.flush()
        logger.debug("Inserted %s %s", self.model_class.__name__, getattr(instance, self.id_attribute))
        return instance

    async def update(self, payload: Any) -> int:
        return await self._write(self._values(payload, full=True))

    async def patch(self, payload: Any) -> int:
        return await self._write(self._values(payload))

    async def _write(self, values: Dict[str, Any]) -> int:
        ids = await self._matching_ids()
        if not ids:
            return 0
        if not values:
            return len(ids)
        stmt = (
            update(self.model_class)
            .where(self.id_column.in_(ids))
            .values({getattr(self.model_class, key): value for key, value in values.items()})
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def delete(self) -> int:
        ids = await self._matching_ids()
        if not ids:
            return 0
        await self._unlink(ids)
        stmt = (
            delete(self.model_class)
            .where(self.id_column.in_(ids))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        self._evict(ids)
        logger.debug("Deleted %d %s rows", result.rowcount, self.model_class.__name__)
        return result.rowcount

    async def _unlink(self, ids: List[Any]) -> None:
        """Hook removing references to rows about to be deleted."""

    def _evict(self, ids: List[Any]) -> None:
        doomed = set(ids)
        for instance in list(self.session.identity_map.values()):
            if not isinstance(instance, self.model_class):
                continue
            identity = sa_inspect(instance).identity
            if identity and identity[0] in doomed:
                self.session.expunge(instance)


class RelatedQuery(ModelQuery):
    """
    Query over the rows related to one owner instance through one relation.

    Linking by relation kind:
        HAS_MANY / HAS_ONE   foreign key on the related row ← owner key
        BELONGS_TO_ONE       foreign key on the owner       ← related key
        MANY_TO_MANY         one join-table row per (owner, related) pair
    """

    def __init__(self, session: AsyncSession, owner: Any, relation: RelationDescriptor):
        super().__init__(session, relation.related_class)
        self.owner = owner
        self.relation = relation
        self.prop = relation.prop
        self.owner_mapper = sa_inspect(relation.owner_class)
        if relation.kind is RelationKind.BELONGS_TO_ONE and self._owner_key_missing():
            self._criteria.append(false())
        else:
            self._criteria.append(with_parent(owner, relation.attribute))

    def _owner_key_missing(self) -> bool:
        """True when the owner's foreign key to the related row is NULL."""
        return any(
            getattr(self.owner, _key_of(self.owner_mapper, local)) is None
            for local, _ in self.prop.local_remote_pairs
        )

    async def insert(self, payload: Any) -> Any:
        kind = self.relation.kind

        if kind in (RelationKind.HAS_MANY, RelationKind.HAS_ONE):
            values = self._values(payload)
            if kind is RelationKind.HAS_ONE and await self.first() is not None:
                raise ConflictError(
                    message=f"{self.relation.owner_class.__name__} already has a related '{self.relation.name}'",
                    context={"relation": self.relation.name},
                )
            for local, remote in self.prop.local_remote_pairs:
                values[_key_of(self.mapper, remote)] = getattr(self.owner, _key_of(self.owner_mapper, local))
            instance = self.model_class(**values)
            self.session.add(instance)
            await self.session.flush()
            return instance

        instance = await super().insert(payload)
        await self._link(instance)
        return instance

    async def relate(self, related_id: Any) -> Any:
        """
        Links the existing related row ``related_id`` to the owner.

        Raises:
            NotFoundError: no related row has that id
        """
        related = await ModelQuery(self.session, self.model_class).where(self.id_attribute, related_id).first()
        if related is None:
            raise NotFoundError(resource=self.model_class.__name__, resource_id=related_id)
        await self._link(related)
        return related

    async def _link(self, related: Any) -> None:
        kind = self.relation.kind

        if kind is RelationKind.MANY_TO_MANY:
            row = {}
            for owner_column, join_column in self.prop.synchronize_pairs:
                row[join_column] = getattr(self.owner, _key_of(self.owner_mapper, owner_column))
            for related_column, join_column in self.prop.secondary_synchronize_pairs:
                row[join_column] = getattr(related, _key_of(self.mapper, related_column))
            await self.session.execute(insert(self.prop.secondary).values(row))

        elif kind is RelationKind.BELONGS_TO_ONE:
            for local, remote in self.prop.local_remote_pairs:
                setattr(self.owner, _key_of(self.owner_mapper, local), getattr(related, _key_of(self.mapper, remote)))

        else:
            for local, remote in self.prop.local_remote_pairs:
                setattr(related, _key_of(self.mapper, remote), getattr(self.owner, _key_of(self.owner_mapper, local)))

        await self.session.flush()

    async def _unlink(self, ids: List[Any]) -> None:
        kind = self.relation.kind

        if kind is RelationKind.MANY_TO_MANY:
            for related_column, join_column in self.prop.secondary_synchronize_pairs:
                values = await self._column_values(related_column, ids)
                await self.session.execute(
                    delete(self.prop.secondary).where(join_column.in_(values))
                )

        elif kind is RelationKind.BELONGS_TO_ONE:
            for local, remote in self.prop.local_remote_pairs:
                local_key = _key_of(self.owner_mapper, local)
                values = await self._column_values(remote, ids)
                await self.session.execute(
                    update(self.relation.owner_class)
                    .where(getattr(self.relation.owner_class, local_key).in_(values))
                    .values({getattr(self.relation.owner_class, local_key): None})
                    .execution_options(synchronize_session=False)
                )
                set_committed_value(self.owner, local_key, None)

    async def _column_values(self, column: Any, ids: List[Any]) -> List[Any]:
        """Values of ``column`` for the related rows ``ids``."""
        if column is self.mapper.primary_key[0]:
            return list(ids)
        attribute = getattr(self.model_class, _key_of(self.mapper, column))
        result = await self.session.execute(select(attribute).where(self.id_column.in_(ids)))
        return list(result.scalars().all())


# ══════════════════════════════════════════════════════════════════════════
# Serialization
# ══════════════════════════════════════════════════════════════════════════

def serialize(instance: Any, tree: Optional[EagerTree] = None) -> Optional[Dict[str, Any]]:
    """
    Converts an ORM instance into a plain dict.

    Contains every column attribute, plus the relations named in ``tree``
    (which must have been loaded eagerly).
    """
    if instance is None:
        return None
    mapper = sa_inspect(instance).mapper
    data = {attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs}
    for name, children in (tree or {}).items():
        value = getattr(instance, name)
        if isinstance(value, (list, tuple, set)):
            data[name] = [serialize(item, children) for item in value]
        else:
            data[name] = serialize(value, children)
    return data


def serialize_result(result: Any, tree: Optional[EagerTree] = None) -> Any:
    """Serializes what ``ModelQuery.fetch``/``first``/``all`` returned."""
    if isinstance(result, list):
        return [serialize(item, tree) for item in result]
    if isinstance(result, dict) and "results" in result:
        return {"total": result["total"], "results": serialize_result(result["results"], tree)}
    return serialize(result, tree)
