"""
ModelRest — Route Table Builder
================================

What:  Derives the endpoint table for every registered model and relation.
How:   ``build_endpoint_table`` is a pure function of the model registry and
       the generator configuration: it walks models in registration order and
       emits ``EndpointDefinition``s in a fixed order, skipping excluded ones.
Who:   Called once by ``RestApiGenerator.generate``; each definition is then
       turned into a handler by ``RequestTranslator`` and mounted through the
       adapter.

Endpoint table (per model, then per relation):
    POST   /<collection>                        create
    GET    /<collection>                        list (find query)
    PATCH  /<collection>                        bulk patch → {total}
    DELETE /<collection>                        bulk delete → {total}
    GET    /<collection>/:id                    read
    PUT    /<collection>/:id                    full update
    PATCH  /<collection>/:id                    partial update
    DELETE /<collection>/:id                    delete → {}
    POST   /<collection>/:id/<relation>         create related
    GET    /<collection>/:id/<relation>         list related (object for singular kinds)
    DELETE /<collection>/:id/<relation>         delete related → {}
    PUT    /<collection>/:id/<relation>         replace related set (not for singular kinds)
    POST   /<collection>/:id/<relation>/:relatedId   relate (many-to-many only)
"""

import enum
import re
from dataclasses import dataclass
from typing import List, Optional

from modelrest.config import GeneratorConfig
from modelrest.descriptors import ModelDescriptor, ModelRegistry, RelationDescriptor, RelationKind

_WORD = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")


def camel_case(name: str) -> str:
    """``Person_Movie`` → ``personMovie``; ``HTTPRequest`` → ``httpRequest``."""
    words = _WORD.findall(name)
    if not words:
        return ""
    return words[0].lower() + "".join(word[:1].upper() + word[1:].lower() for word in words[1:])


class EndpointAction(str, enum.Enum):
    CREATE = "create"
    LIST = "list"
    PATCH_ALL = "patch_all"
    DELETE_ALL = "delete_all"
    GET = "get"
    UPDATE = "update"
    PATCH = "patch"
    DELETE = "delete"
    RELATION_CREATE = "relation_create"
    RELATION_LIST = "relation_list"
    RELATION_DELETE = "relation_delete"
    RELATION_REPLACE = "relation_replace"
    RELATION_RELATE = "relation_relate"


@dataclass(frozen=True)
class EndpointDefinition:
    """
    One generated endpoint.

    ``action`` selects the handler builder of the request translator;
    ``relation`` is set for relation endpoints only.
    """

    method: str
    path: str
    action: EndpointAction
    model: ModelDescriptor
    relation: Optional[RelationDescriptor] = None

    @property
    def depth(self) -> int:
        return 2 if self.relation else 1


def route_for_model(model: ModelDescriptor, config: GeneratorConfig) -> str:
    return config.route_prefix + config.pluralizer(camel_case(model.table_name))


def route_for_relation(model: ModelDescriptor, relation: RelationDescriptor, config: GeneratorConfig) -> str:
    return f"{route_for_model(model, config)}/:id/{relation.name}"


def _model_endpoints(model: ModelDescriptor, config: GeneratorConfig) -> List[EndpointDefinition]:
    collection = route_for_model(model, config)
    item = collection + "/:id"
    candidates = [
        ("POST", collection, EndpointAction.CREATE),
        ("GET", collection, EndpointAction.LIST),
        ("PATCH", collection, EndpointAction.PATCH_ALL),
        ("DELETE", collection, EndpointAction.DELETE_ALL),
        ("GET", item, EndpointAction.GET),
        ("PUT", item, EndpointAction.UPDATE),
        ("PATCH", item, EndpointAction.PATCH),
        ("DELETE", item, EndpointAction.DELETE),
    ]
    return [
        EndpointDefinition(method, path, action, model)
        for method, path, action in candidates
        if not config.is_excluded(method, path)
    ]


def _relation_endpoints(
    model: ModelDescriptor, relation: RelationDescriptor, config: GeneratorConfig
) -> List[EndpointDefinition]:
    route = route_for_relation(model, relation, config)
    candidates = [
        ("POST", route, EndpointAction.RELATION_CREATE),
        ("GET", route, EndpointAction.RELATION_LIST),
        ("DELETE", route, EndpointAction.RELATION_DELETE),
    ]
    if not relation.kind.is_singular:
        candidates.append(("PUT", route, EndpointAction.RELATION_REPLACE))
    if relation.kind is RelationKind.MANY_TO_MANY:
        candidates.append(("POST", route + "/:relatedId", EndpointAction.RELATION_RELATE))
    return [
        EndpointDefinition(method, path, action, model, relation)
        for method, path, action in candidates
        if not config.is_excluded(method, path)
    ]


def build_endpoint_table(registry: ModelRegistry, config: GeneratorConfig) -> List[EndpointDefinition]:
    """
    Enumerates every endpoint for the registered models.

    The result depends only on the registry and the configuration; exclusion
    rules are consulted as a set, so the order in which they were added does
    not matter.
    """
    endpoints: List[EndpointDefinition] = []
    for model in registry.models.values():
        endpoints.extend(_model_endpoints(model, config))
        for relation in model.relations:
            endpoints.extend(_relation_endpoints(model, relation, config))
    return endpoints
