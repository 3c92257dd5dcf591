"""
ModelRest — Model & Relation Descriptors
=========================================

What:  Immutable descriptions of the ORM models the generator exposes.
How:   ``describe_model`` reads a SQLAlchemy mapper once and records the table
       name, the primary key attribute and one ``RelationDescriptor`` per
       relationship, classified into a ``RelationKind`` tag. The route table
       builder and the request translator switch on that tag; nothing
       inspects relationship objects at request time.
Who:   ``RegistryBuilder`` (fed by ``RestApiGenerator.add_model``) produces the
       ``ModelRegistry`` shared read-only by every generated handler.

Relation kinds:
    BELONGS_TO_ONE   many-to-one, foreign key on the owner       (singular)
    HAS_ONE          one-to-one, foreign key on the related row  (singular)
    HAS_MANY         one-to-many, foreign key on the related rows
    MANY_TO_MANY     join table between owner and related rows
"""

import enum
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import RelationshipDirection, configure_mappers

from modelrest.exceptions import ConfigurationError, RelationKindError
from modelrest.find import FindQuery

logger = logging.getLogger(__name__)


class RelationKind(str, enum.Enum):
    BELONGS_TO_ONE = "belongs_to_one"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    MANY_TO_MANY = "many_to_many"

    @property
    def is_singular(self) -> bool:
        """Exactly one related row is possible."""
        return self in (RelationKind.BELONGS_TO_ONE, RelationKind.HAS_ONE)


@dataclass(frozen=True)
class RelationDescriptor:
    """
    A named link from an owner model to a related model.

    Attributes:
        name:          Relationship attribute name, used as the path segment
        kind:          Tag deciding which relation endpoints exist
        owner_table:   Table name of the owner model
        related_table: Table name of the related model
        owner_class:   Owner ORM class
        related_class: Related ORM class
        prop:          The SQLAlchemy RelationshipProperty (join columns)
    """

    name: str
    kind: RelationKind
    owner_table: str
    related_table: str
    owner_class: Any
    related_class: Any
    prop: Any

    @property
    def attribute(self) -> Any:
        return getattr(self.owner_class, self.name)


@dataclass(frozen=True)
class ModelDescriptor:
    """
    A resource type: one ORM class, its table name and its relations.

    ``table_name`` is the unique registry key; it names the routes and
    locates the model's ``FindQuery``.
    """

    table_name: str
    model_class: Any
    id_attribute: str
    relations: Tuple[RelationDescriptor, ...]

    @property
    def name(self) -> str:
        return self.model_class.__name__

    @property
    def id_column(self) -> Any:
        return getattr(self.model_class, self.id_attribute)

    def relation(self, name: str) -> RelationDescriptor:
        for relation in self.relations:
            if relation.name == name:
                return relation
        raise ConfigurationError(
            message=f"Model '{self.name}' has no relation '{name}'",
            context={"model": self.name, "relation": name},
        )


def table_name_of(model_class: Any) -> str:
    return sa_inspect(model_class).local_table.name


def id_attribute_of(model_class: Any) -> str:
    """Attribute key of the single-column primary key."""
    mapper = sa_inspect(model_class)
    if len(mapper.primary_key) != 1:
        raise ConfigurationError(
            message=f"Model '{model_class.__name__}' must have exactly one primary key column",
            context={"model": model_class.__name__},
        )
    return mapper.get_property_by_column(mapper.primary_key[0]).key


def relation_kind(model_class: Any, name: str, prop: Any) -> RelationKind:
    """Classifies one relationship; ambiguous ones raise RelationKindError."""
    direction = prop.direction
    if direction is RelationshipDirection.MANYTOONE:
        if prop.uselist:
            raise RelationKindError(
                model_class.__name__, name, "many-to-one relationship declared with a collection"
            )
        return RelationKind.BELONGS_TO_ONE
    if direction is RelationshipDirection.ONETOMANY:
        return RelationKind.HAS_MANY if prop.uselist else RelationKind.HAS_ONE
    if direction is RelationshipDirection.MANYTOMANY:
        if not prop.uselist:
            raise RelationKindError(
                model_class.__name__, name, "many-to-many relationship declared with uselist=False"
            )
        return RelationKind.MANY_TO_MANY
    raise RelationKindError(model_class.__name__, name, f"unknown direction {direction!r}")


def describe_model(model_class: Any) -> ModelDescriptor:
    """
    Builds the descriptor of a mapped SQLAlchemy class.

    Relations keep the mapper's declaration order, which fixes the order of
    relation endpoints in the route table.
    """
    configure_mappers()
    mapper = sa_inspect(model_class)
    owner_table = table_name_of(model_class)

    relations = tuple(
        RelationDescriptor(
            name=name,
            kind=relation_kind(model_class, name, prop),
            owner_table=owner_table,
            related_table=table_name_of(prop.mapper.class_),
            owner_class=model_class,
            related_class=prop.mapper.class_,
            prop=prop,
        )
        for name, prop in mapper.relationships.items()
    )

    return ModelDescriptor(
        table_name=owner_table,
        model_class=model_class,
        id_attribute=id_attribute_of(model_class),
        relations=relations,
    )


@dataclass(frozen=True)
class ModelRegistry:
    """
    Read-only registry shared by every generated handler.

    Attributes:
        models:        Registered models by table name, in registration order
        find_queries:  Query builders by table name; covers registered models
                       and every model reachable through their relations
    """

    models: Mapping[str, ModelDescriptor]
    find_queries: Mapping[str, FindQuery]

    def find_query(self, table_name: str) -> FindQuery:
        try:
            return self.find_queries[table_name]
        except KeyError:
            raise ConfigurationError(
                message=f"No query builder registered for table '{table_name}'",
                context={"table": table_name},
            )


class RegistryBuilder:
    """
    Collects models during configuration and freezes them into a ModelRegistry.

    Example:
        registry = (
            RegistryBuilder()
            .add_model(Person, lambda find: find.allow_eager("[parent, pets]"))
            .add_model(Movie)
            .build()
        )
    """

    def __init__(self) -> None:
        self._models: Dict[str, ModelDescriptor] = {}
        self._find_queries: Dict[str, FindQuery] = {}

    def add_model(
        self,
        model_class: Any,
        modify: Optional[Callable[[FindQuery], Any]] = None,
    ) -> "RegistryBuilder":
        descriptor = describe_model(model_class)
        self._models[descriptor.table_name] = descriptor

        # A model registered after being seen as a relation target gets its
        # own builder so ``modify`` never touches a shared default.
        self._find_queries[descriptor.table_name] = FindQuery(model_class)
        if modify:
            modify(self._find_queries[descriptor.table_name])

        for relation in descriptor.relations:
            if relation.related_table not in self._find_queries:
                self._find_queries[relation.related_table] = FindQuery(relation.related_class)

        logger.debug(
            "Registered model %s (%d relations)", descriptor.name, len(descriptor.relations)
        )
        return self

    def build(self) -> ModelRegistry:
        return ModelRegistry(
            models=MappingProxyType(dict(self._models)),
            find_queries=MappingProxyType(dict(self._find_queries)),
        )
