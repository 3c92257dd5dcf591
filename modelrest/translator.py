"""
ModelRest — Request Translator
===============================

What:  Builds the handler of each generated endpoint.
How:   ``RequestTranslator.build(endpoint)`` returns a coroutine function
       ``handler(NormalizedRequest) -> payload``. Every handler opens one
       session (from the per-request resolver when configured, else the
       default factory), runs a sequential pipeline of persistence calls and
       returns a JSON-ready payload. Failures propagate to the adapter.
Who:   Used by ``RestApiGenerator.generate`` for every EndpointDefinition.

Transactions:
    create, item delete, relation create, relation delete, relation replace
    and relate run inside ``transaction(session)``: all statements commit
    together or none do. Updates and bulk writes are single statements
    committed after they succeed.

Re-fetch after write:
    PUT/PATCH re-read the row by id with the requested eager relations; a
    row that cannot be re-read is a 404 even when the UPDATE matched. The
    eager expression is validated before the write is issued.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from modelrest.adapters import NormalizedRequest
from modelrest.config import GeneratorConfig
from modelrest.descriptors import ModelDescriptor, ModelRegistry, RelationDescriptor
from modelrest.exceptions import ConfigurationError, NotFoundError, ValidationError
from modelrest.persistence import ModelQuery, RelatedQuery, serialize, serialize_result, transaction
from modelrest.reconciler import apply_plan, reconcile
from modelrest.routing import EndpointAction, EndpointDefinition

logger = logging.getLogger(__name__)

Handler = Callable[[NormalizedRequest], Awaitable[Any]]


class RequestTranslator:
    """
    Maps normalized requests onto persistence operations.

    Holds references to the read-only registry and configuration only; no
    state is shared between requests.
    """

    def __init__(self, registry: ModelRegistry, config: GeneratorConfig):
        self.registry = registry
        self.config = config
        self._builders: Dict[EndpointAction, Callable[[EndpointDefinition], Handler]] = {
            EndpointAction.CREATE: self._create,
            EndpointAction.LIST: self._list,
            EndpointAction.PATCH_ALL: self._patch_all,
            EndpointAction.DELETE_ALL: self._delete_all,
            EndpointAction.GET: self._get,
            EndpointAction.UPDATE: self._update,
            EndpointAction.PATCH: self._patch,
            EndpointAction.DELETE: self._delete,
            EndpointAction.RELATION_CREATE: self._relation_create,
            EndpointAction.RELATION_LIST: self._relation_list,
            EndpointAction.RELATION_DELETE: self._relation_delete,
            EndpointAction.RELATION_REPLACE: self._relation_replace,
            EndpointAction.RELATION_RELATE: self._relation_relate,
        }

    def build(self, endpoint: EndpointDefinition) -> Handler:
        return self._builders[endpoint.action](endpoint)

    # ── Shared Steps ──────────────────────────────────────────────────────

    @asynccontextmanager
    async def _session(self, request: NormalizedRequest) -> AsyncIterator[AsyncSession]:
        """Opens the session for one request, resolved once."""
        if self.config.session_resolver is not None:
            factory = self.config.session_resolver(request)
        else:
            factory = self.config.session_factory
        if factory is None:
            raise ConfigurationError(message="No session factory configured")
        async with factory() as session:
            yield session

    def _eager_query(self, session: AsyncSession, model_class: Any, table: str, request: NormalizedRequest) -> ModelQuery:
        """ModelQuery carrying the model's eager allow-list and the client's eager expression."""
        find = self.registry.find_query(table)
        return ModelQuery(session, model_class).allow_eager(find.allowed_eager).eager(request.eager)

    async def _fetch_by_id(
        self,
        session: AsyncSession,
        model: ModelDescriptor,
        request: NormalizedRequest,
        row_id: Any,
        query: Optional[ModelQuery] = None,
    ) -> Dict[str, Any]:
        if query is None:
            query = self._eager_query(session, model.model_class, model.table_name, request)
        row = await query.where(model.id_attribute, row_id).first()
        if row is None:
            raise NotFoundError(resource=model.name, resource_id=row_id)
        return serialize(row, query.eager_tree)

    async def _owner(self, session: AsyncSession, model: ModelDescriptor, owner_id: Any) -> Any:
        owner = await ModelQuery(session, model.model_class).where(model.id_attribute, owner_id).first()
        if owner is None:
            raise NotFoundError(resource=model.name, resource_id=owner_id)
        return owner

    # ── Collection Endpoints ──────────────────────────────────────────────

    def _create(self, endpoint: EndpointDefinition) -> Handler:
        model = endpoint.model

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session, transaction(session):
                created = await self._eager_query(session, model.model_class, model.table_name, request).insert(request.body)
                row_id = getattr(created, model.id_attribute)
                logger.info("Created %s %s", model.name, row_id)
                return await self._fetch_by_id(session, model, request, row_id)

        return handler

    def _list(self, endpoint: EndpointDefinition) -> Handler:
        model = endpoint.model
        find = self.registry.find_query(model.table_name)

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session:
                query = find.build(request.query, ModelQuery(session, model.model_class))
                return serialize_result(await query.fetch(), query.eager_tree)

        return handler

    def _patch_all(self, endpoint: EndpointDefinition) -> Handler:
        model = endpoint.model
        find = self.registry.find_query(model.table_name)

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session:
                query = find.build(request.query, ModelQuery(session, model.model_class))
                total = await query.patch(request.body)
                await session.commit()
                logger.info("Patched %d %s rows", total, model.name)
                return {"total": total}

        return handler

    def _delete_all(self, endpoint: EndpointDefinition) -> Handler:
        model = endpoint.model
        find = self.registry.find_query(model.table_name)

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session:
                query = find.build(request.query, ModelQuery(session, model.model_class))
                total = await query.delete()
                await session.commit()
                logger.info("Deleted %d %s rows", total, model.name)
                return {"total": total}

        return handler

    # ── Item Endpoints ────────────────────────────────────────────────────

    def _get(self, endpoint: EndpointDefinition) -> Handler:
        model = endpoint.model

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session:
                return await self._fetch_by_id(session, model, request, request.params["id"])

        return handler

    def _write_item(self, endpoint: EndpointDefinition, full: bool) -> Handler:
        model = endpoint.model

        async def handler(request: NormalizedRequest) -> Any:
            row_id = request.params["id"]
            async with self._session(request) as session:
                refetch = self._eager_query(session, model.model_class, model.table_name, request)
                query = ModelQuery(session, model.model_class).where(model.id_attribute, row_id)
                if full:
                    await query.update(request.body)
                else:
                    await query.patch(request.body)
                await session.commit()
                return await self._fetch_by_id(session, model, request, row_id, refetch)

        return handler

    def _update(self, endpoint: EndpointDefinition) -> Handler:
        return self._write_item(endpoint, full=True)

    def _patch(self, endpoint: EndpointDefinition) -> Handler:
        return self._write_item(endpoint, full=False)

    def _delete(self, endpoint: EndpointDefinition) -> Handler:
        model = endpoint.model

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session, transaction(session):
                await ModelQuery(session, model.model_class).where(model.id_attribute, request.params["id"]).delete()
            return {}

        return handler

    # ── Relation Endpoints ────────────────────────────────────────────────

    def _relation_create(self, endpoint: EndpointDefinition) -> Handler:
        model, relation = endpoint.model, endpoint.relation

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session, transaction(session):
                owner = await self._owner(session, model, request.params["id"])
                created = await RelatedQuery(session, owner, relation).insert(request.body)
                related = self.registry.find_query(relation.related_table)
                query = (
                    ModelQuery(session, relation.related_class)
                    .allow_eager(related.allowed_eager)
                    .eager(request.eager)
                )
                row = await query.where(query.id_attribute, getattr(created, query.id_attribute)).first()
                return serialize(row, query.eager_tree)

        return handler

    def _relation_list(self, endpoint: EndpointDefinition) -> Handler:
        model, relation = endpoint.model, endpoint.relation
        find = self.registry.find_query(relation.related_table)

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session:
                owner = await self._owner(session, model, request.params["id"])
                query = find.build(request.query, RelatedQuery(session, owner, relation))
                if relation.kind.is_singular:
                    return serialize(await query.first(), query.eager_tree)
                return serialize_result(await query.fetch(), query.eager_tree)

        return handler

    def _relation_delete(self, endpoint: EndpointDefinition) -> Handler:
        model, relation = endpoint.model, endpoint.relation

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session, transaction(session):
                owner = await self._owner(session, model, request.params["id"])
                total = await RelatedQuery(session, owner, relation).delete()
                logger.info("Deleted %d %s of %s %s", total, relation.name, model.name, request.params["id"])
            return {}

        return handler

    def _relation_replace(self, endpoint: EndpointDefinition) -> Handler:
        model, relation = endpoint.model, endpoint.relation

        async def handler(request: NormalizedRequest) -> Any:
            submitted = self._submitted_items(request.body, relation)
            async with self._session(request) as session, transaction(session):
                owner = await self._owner(session, model, request.params["id"])
                related = RelatedQuery(session, owner, relation)
                current = [serialize(member) for member in await related.all()]

                plan = reconcile(current, submitted, related.id_attribute)
                await apply_plan(
                    plan,
                    related_query=lambda: RelatedQuery(session, owner, relation),
                    query_by_id=lambda row_id: ModelQuery(session, relation.related_class).where(related.id_attribute, row_id),
                )
                return [serialize(member) for member in await RelatedQuery(session, owner, relation).all()]

        return handler

    @staticmethod
    def _submitted_items(body: Any, relation: RelationDescriptor) -> List[Dict[str, Any]]:
        """A single object is accepted as a one-item list."""
        items = [body] if isinstance(body, dict) else body
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise ValidationError(
                message=f"Expected a JSON array of objects for relation '{relation.name}'",
                field=relation.name,
            )
        return items

    def _relation_relate(self, endpoint: EndpointDefinition) -> Handler:
        model, relation = endpoint.model, endpoint.relation

        async def handler(request: NormalizedRequest) -> Any:
            async with self._session(request) as session, transaction(session):
                owner = await self._owner(session, model, request.params["id"])
                related = await RelatedQuery(session, owner, relation).relate(request.params["relatedId"])
                related_model = ModelQuery(session, relation.related_class)
                query = (
                    related_model
                    .allow_eager(self.registry.find_query(relation.related_table).allowed_eager)
                    .eager(request.eager)
                    .where(related_model.id_attribute, getattr(related, related_model.id_attribute))
                )
                return serialize(await query.first(), query.eager_tree)

        return handler
