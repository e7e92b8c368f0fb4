import datetime
import logging
import typing
import uuid
from functools import singledispatch

from coda_mapper.entity import Entity, RowMeta
from coda_mapper.exceptions import MissingColumnId, MissingRelationDeclaration, UnresolvedReference
from coda_mapper.identity_cache import IdentityCache
from coda_mapper.registry import describe
from coda_mapper.table_tree import FieldNode, RelationNode, TableNode, Visitor

if typing.TYPE_CHECKING:
    from coda_mapper.mapper import CodaMapper

logger = logging.getLogger(__name__)

FENCE = "```"

ROW_REFERENCE = "StructuredValue"

# rich value shapes that collapse onto one of their keys
RICH_VALUE_KEYS = {
    "MonetaryAmount": "amount",
    "WebPage": "url",
    "ImageObject": "url",
    "Person": "email",
}


def _unescape(value: str) -> str:
    if len(value) >= 2 * len(FENCE) and value.startswith(FENCE) and value.endswith(FENCE):
        value = value[len(FENCE) : -len(FENCE)]
    return value.replace("\\`", "`")


def _is_row_reference(value: typing.Dict[str, typing.Any]) -> bool:
    return value.get("@type") == ROW_REFERENCE and "rowId" in value


class ValueDecoder:
    def __init__(self, cache: IdentityCache, mapper: typing.Optional["CodaMapper"] = None) -> None:
        self._cache = cache
        self._mapper = mapper

    @property
    def mapper(self) -> typing.Optional["CodaMapper"]:
        return self._mapper

    def decode(self, value: typing.Any, field: FieldNode, multiple: typing.Optional[bool] = None) -> typing.Any:
        if multiple is None:
            multiple = field.multiple

        if isinstance(value, str):
            value = _unescape(value)
            if value == "":
                if multiple:
                    return []
                return None if field.is_relation else ""
        elif isinstance(value, list):
            decoded = [self.decode(item, field, multiple=False) for item in value]
            if field.is_relation:
                # empty cells inside a relation array hold no row
                return [item for item in decoded if item is not None]
            return decoded
        elif isinstance(value, dict):
            value = self._decode_structured(value, field)

        return [value] if multiple else value

    def _decode_structured(self, value: typing.Dict[str, typing.Any], field: FieldNode) -> typing.Any:
        if _is_row_reference(value):
            return self._decode_reference(value, field)
        key = RICH_VALUE_KEYS.get(value.get("@type"))
        if key is None:
            return value
        return value.get(key)

    def _decode_reference(self, value: typing.Dict[str, typing.Any], field: FieldNode) -> Entity:
        if not isinstance(field, RelationNode):
            raise MissingRelationDeclaration(
                f"Column {field.column_id} holds row references but field {field.name} declares no related type"
            )
        related = field.related_type
        table_id = describe(related).require_table_id()
        row_id = value["rowId"]
        if value.get("tableId") and value["tableId"] != table_id:
            logger.warning(
                f"Field {field.name} references table {value['tableId']}, caching under {table_id} "
                f"declared by {related.__name__}"
            )

        cached = self._cache.lookup(table_id, row_id)
        if cached is not None:
            return cached
        return self._cache.register_if_absent(table_id, row_id, related._placeholder(row_id, self._mapper))


class RowDecodingVisitor(Visitor):
    def __init__(self, decoder: ValueDecoder, row: typing.Dict[str, typing.Any]) -> None:
        self._decoder = decoder
        self._row = row
        self._cells: typing.Dict[str, typing.Any] = row.get("values") or {}
        self._result: typing.Optional[Entity] = None

    @property
    def result(self) -> Entity:
        return self._result

    def visit_table(self, table: TableNode) -> None:
        self._result = table.type()

    def visit_field(self, field: FieldNode) -> None:
        if field.is_identity:
            setattr(self._result, field.name, self._row["id"])
        elif field.column_id and field.column_id in self._cells:
            setattr(self._result, field.name, self._decoder.decode(self._cells[field.column_id], field))

    visit_relation = visit_field

    def leave_table(self, table: TableNode) -> None:
        self._result._mark_fetched(self._decoder.mapper, RowMeta.from_row(self._row))


class CellsBuildingVisitor(Visitor):
    def __init__(self, values: typing.Dict[str, typing.Any], keys: typing.Iterable[str] = ()) -> None:
        self._values = values
        self._keys = set(keys)
        self._cells: typing.List[typing.Dict[str, typing.Any]] = []

    @property
    def cells(self) -> typing.List[typing.Dict[str, typing.Any]]:
        return self._cells

    def visit_field(self, field: FieldNode) -> None:
        if field.name not in self._values:
            return
        if not field.column_id:
            if field.is_identity and field.name not in self._keys:
                return
            raise MissingColumnId(f"Column id not set for field {field.name}")
        self._cells.append({"column": field.column_id, "value": encode_value(self._values[field.name])})

    visit_relation = visit_field


@singledispatch
def encode_value(value: typing.Any) -> typing.Any:
    return value


@encode_value.register(list)
@encode_value.register(tuple)
def _(value: typing.Sequence) -> typing.List[typing.Any]:
    return [encode_value(item) for item in value]


@encode_value.register(type(None))
def _(value: None) -> str:
    return ""


@encode_value.register(Entity)
def _(value: Entity) -> str:
    if not value.row_id:
        raise UnresolvedReference(f"Cannot reference {type(value).__name__} that has no row id yet")
    return value.row_id


@encode_value.register(datetime.date)
def _(value: datetime.date) -> str:
    return value.isoformat()


@encode_value.register(uuid.UUID)
def _(value: uuid.UUID) -> str:
    return str(value)
