import asyncio
import logging
import typing

import attr
import httpx

from coda_mapper.config import MapperSettings
from coda_mapper.decoding import CellsBuildingVisitor, RowDecodingVisitor, ValueDecoder, encode_value
from coda_mapper.entity import Entity
from coda_mapper.exceptions import NotPersisted, TypeMismatch
from coda_mapper.identity_cache import IdentityCache
from coda_mapper.registry import describe
from coda_mapper.table_tree import TableTree
from coda_mapper.transport import CodaClient, Row

logger = logging.getLogger(__name__)

E = typing.TypeVar("E", bound=Entity)


class CodaMapper:
    def __init__(
        self, doc_id: str, api_key: str, http_client: typing.Optional[httpx.AsyncClient] = None, **options: typing.Any
    ) -> None:
        self.settings = MapperSettings(doc_id, api_key, **options)
        self.cache = IdentityCache()
        self._client = CodaClient(self.settings, http_client)
        self._decoder = ValueDecoder(self.cache, self)

    @classmethod
    def from_settings(
        cls, settings: MapperSettings, http_client: typing.Optional[httpx.AsyncClient] = None
    ) -> "CodaMapper":
        options = attr.asdict(settings)
        return cls(options.pop("doc_id"), options.pop("api_key"), http_client=http_client, **options)

    @classmethod
    def from_env(
        cls,
        environ: typing.Optional[typing.Mapping[str, str]] = None,
        http_client: typing.Optional[httpx.AsyncClient] = None,
    ) -> "CodaMapper":
        return cls.from_settings(MapperSettings.from_env(environ), http_client=http_client)

    async def __aenter__(self) -> "CodaMapper":
        return self

    async def __aexit__(self, *exc_info: typing.Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def clear_cache(self) -> None:
        self.cache.clear()

    async def get(self, entity_cls: typing.Type[E], row_id: str, latest: bool = False) -> typing.Optional[E]:
        tree = describe(entity_cls)
        row = await self._client.fetch_row_by_id(tree.require_table_id(), row_id, latest=latest)
        if row is None:
            return None
        return self._materialize(tree, row)

    async def find(
        self, entity_cls: typing.Type[E], field_name: str, value: typing.Any, latest: bool = False
    ) -> typing.List[E]:
        tree = describe(entity_cls)
        return await self._query(tree, tree.require_column_id(field_name), encode_value(value), latest)

    async def first(
        self, entity_cls: typing.Type[E], field_name: str, value: typing.Any, latest: bool = False
    ) -> typing.Optional[E]:
        tree = describe(entity_cls)
        rows, _ = await self._client.fetch_rows_by_query(
            tree.require_table_id(), tree.require_column_id(field_name), encode_value(value), limit=1, latest=latest
        )
        return self._materialize(tree, rows[0]) if rows else None

    async def all(self, entity_cls: typing.Type[E], latest: bool = False) -> typing.List[E]:
        return await self._query(describe(entity_cls), None, None, latest)

    async def refresh(self, entity: E, latest: bool = False) -> typing.Optional[E]:
        if not entity.row_id:
            raise NotPersisted(f"Unable to refresh {type(entity).__name__} without a row id")
        tree = describe(type(entity))
        table_id = tree.require_table_id()
        row = await self._client.fetch_row_by_id(table_id, entity.row_id, latest=latest)
        if row is None:
            return None
        # an uncached entity becomes the canonical instance for its row
        self.cache.register_if_absent(table_id, entity.row_id, entity)
        return self._materialize(tree, row)

    async def insert(self, *entities: Entity) -> typing.Optional[str]:
        if not entities:
            return None
        tree = self._describe_batch(entities)
        table_id = tree.require_table_id()
        sent = [entity._capture_dirty() for entity in entities]
        rows = [{"cells": self._cells(tree, {k: v for k, v in values.items() if v is not None})} for values in sent]
        response = await self._client.insert_rows(table_id, rows)
        # cells left out of a new row are empty remotely, so None counts as sent
        for entity, values, row_id in zip(entities, sent, response.get("addedRowIds", [])):
            entity._mark_inserted(self, row_id, values)
            self.cache.register_or_merge(table_id, row_id, entity)
        logger.debug(f"Inserted {len(entities)} {tree.root.name} rows")
        return response.get("requestId")

    async def update(self, entity: Entity) -> typing.Optional[str]:
        if not entity.row_id:
            raise NotPersisted(f"Unable to update {type(entity).__name__} without a row id")
        tree = describe(type(entity))
        sent = entity._capture_dirty()
        cells = self._cells(tree, sent)
        if not cells:
            logger.debug(f"Nothing to update for {tree.root.name} row {entity.row_id}")
            return None
        response = await self._client.update_row(tree.require_table_id(), entity.row_id, cells)
        entity._mark_synced(sent)
        return response.get("requestId")

    async def upsert(self, entities: typing.Sequence[Entity], key_fields: typing.Sequence[str]) -> typing.Optional[str]:
        if not entities:
            return None
        tree = self._describe_batch(entities)
        key_columns = [tree.require_column_id(name) for name in key_fields]
        sent = []
        for entity in entities:
            values = {k: v for k, v in entity._capture_dirty().items() if v is not None}
            current = entity.get_values()
            values.update({name: current[name] for name in key_fields})
            sent.append(values)
        rows = [{"cells": self._cells(tree, values, keys=key_fields)} for values in sent]
        response = await self._client.insert_rows(tree.require_table_id(), rows, key_columns)
        for entity, values in zip(entities, sent):
            entity._mark_synced(values)
        return response.get("requestId")

    async def delete(self, *entities: Entity) -> typing.Optional[str]:
        if not entities:
            return None
        tree = self._describe_batch(entities)
        for entity in entities:
            if not entity.row_id:
                raise NotPersisted(f"Unable to delete {type(entity).__name__} without a row id")
        response = await self._client.delete_rows(tree.require_table_id(), [entity.row_id for entity in entities])
        return response.get("requestId")

    async def wait_for_mutation(self, request_id: str) -> None:
        misses = 0
        while True:
            try:
                status = await self._client.poll_mutation_status(request_id)
            except httpx.HTTPStatusError as e:
                # freshly queued mutations are briefly unknown to the status endpoint
                if e.response.status_code != 404 or misses >= self.settings.mutation_not_found_retries:
                    raise
                misses += 1
                retries = self.settings.mutation_not_found_retries
                logger.warning(f"Mutation {request_id} not found yet ({misses}/{retries})")
            else:
                if status.get("completed"):
                    logger.debug(f"Mutation {request_id} completed")
                    return
                misses = 0
            await asyncio.sleep(self.settings.mutation_poll_interval)

    async def _query(
        self, tree: TableTree, column_id: typing.Optional[str], value: typing.Any, latest: bool
    ) -> typing.List[Entity]:
        table_id = tree.require_table_id()
        entities: typing.List[Entity] = []
        page_token = None
        while True:
            rows, page_token = await self._client.fetch_rows_by_query(
                table_id, column_id, value, page_token=page_token, latest=latest
            )
            entities.extend(self._materialize(tree, row) for row in rows)
            if not page_token:
                return entities

    def _materialize(self, tree: TableTree, row: Row) -> Entity:
        visitor = RowDecodingVisitor(self._decoder, row)
        visitor.traverse_from(tree.root)
        fresh = visitor.result
        return self.cache.register_or_merge(tree.require_table_id(), fresh.row_id, fresh)

    def _cells(
        self, tree: TableTree, values: typing.Dict[str, typing.Any], keys: typing.Sequence[str] = ()
    ) -> typing.List[typing.Dict[str, typing.Any]]:
        visitor = CellsBuildingVisitor(values, keys)
        visitor.traverse_from(tree.root)
        return visitor.cells

    @staticmethod
    def _describe_batch(entities: typing.Sequence[Entity]) -> TableTree:
        entity_cls = type(entities[0])
        for entity in entities:
            if type(entity) is not entity_cls:
                raise TypeMismatch(entity_cls, entity)
        return describe(entity_cls)
