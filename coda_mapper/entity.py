import abc
import inspect
import typing

import attr

from coda_mapper.exceptions import NotPersisted
from coda_mapper.fields import is_relation
from coda_mapper.registry import default_registry
from coda_mapper.resolver import ColumnAccessor, RelationAccessor

if typing.TYPE_CHECKING:
    from coda_mapper.mapper import CodaMapper


E = typing.TypeVar("E", bound="Entity")


@attr.s(auto_attribs=True)
class EntityState:
    exists_on_remote: bool = False
    is_fetched: bool = False

    def advance(self, exists_on_remote: bool = False, is_fetched: bool = False) -> None:
        # NEW -> PLACEHOLDER -> SYNCED, never backwards
        self.is_fetched = self.is_fetched or is_fetched
        self.exists_on_remote = self.exists_on_remote or exists_on_remote or self.is_fetched


@attr.s(auto_attribs=True, frozen=True)
class RowMeta:
    name: typing.Optional[str] = None
    index: typing.Optional[int] = None
    browser_link: typing.Optional[str] = None
    created_at: typing.Optional[str] = None
    updated_at: typing.Optional[str] = None

    @classmethod
    def from_row(cls, row: typing.Dict[str, typing.Any]) -> "RowMeta":
        return cls(
            name=row.get("name"),
            index=row.get("index"),
            browser_link=row.get("browserLink"),
            created_at=row.get("createdAt"),
            updated_at=row.get("updatedAt"),
        )


def _is_class_var(annotation: typing.Any) -> bool:
    if isinstance(annotation, str):
        return annotation.startswith(("ClassVar", "typing.ClassVar"))
    return annotation is typing.ClassVar or getattr(annotation, "__origin__", None) is typing.ClassVar


def _default_bare_fields(cls: type, namespace: dict) -> None:
    for name, annotation in inspect.get_annotations(cls).items():
        if name.startswith("_") or name in namespace or _is_class_var(annotation):
            continue
        setattr(cls, name, attr.ib(default=None))


class EntityMeta(abc.ABCMeta):
    def __new__(mcs, name: str, bases: tuple, namespace: dict):
        cls = super().__new__(mcs, name, bases, namespace)
        if not bases:
            return cls
        _default_bare_fields(cls, namespace)
        attr_cls = attr.s(auto_attribs=True, eq=False, repr=False)(cls)
        for field in attr.fields(attr_cls):
            accessor = RelationAccessor(field) if is_relation(field) else ColumnAccessor(field)
            setattr(attr_cls, field.name, accessor)
        attr_cls.__identity__ = default_registry.register(attr_cls).identity.name
        return attr_cls


def _differs(current: typing.Any, original: typing.Any) -> bool:
    if isinstance(current, Entity) or isinstance(original, Entity):
        return current is not original
    if isinstance(current, list) and isinstance(original, list):
        return len(current) != len(original) or any(_differs(a, b) for a, b in zip(current, original))
    return current != original


def _copy_values(values: typing.Dict[str, typing.Any]) -> typing.Dict[str, typing.Any]:
    return {name: list(value) if isinstance(value, list) else value for name, value in values.items()}


def _describe(value: typing.Any) -> str:
    if isinstance(value, Entity):
        return f"<{type(value).__name__} {value.row_id!r}>"
    if isinstance(value, list):
        return "[" + ", ".join(_describe(item) for item in value) + "]"
    return repr(value)


class Entity(metaclass=EntityMeta):
    __table_id__: typing.ClassVar[typing.Optional[str]] = None
    __identity__: typing.ClassVar[str]

    def __attrs_pre_init__(self) -> None:
        self._values: typing.Dict[str, typing.Any] = {}
        self._original: typing.Dict[str, typing.Any] = {}
        self._state = EntityState()
        self._mapper: typing.Optional["CodaMapper"] = None
        self._meta: typing.Optional[RowMeta] = None

    def __repr__(self) -> str:
        fields = ", ".join(f"{name}={_describe(value)}" for name, value in self.get_values().items())
        return f"{type(self).__name__}({fields})"

    @property
    def row_id(self) -> typing.Optional[str]:
        return self._values.get(self.__identity__)

    @property
    def exists_on_remote(self) -> bool:
        return self._state.exists_on_remote

    @property
    def is_fetched(self) -> bool:
        return self._state.is_fetched

    def get_meta(self) -> typing.Optional[RowMeta]:
        return self._meta

    def get_values(self) -> typing.Dict[str, typing.Any]:
        return {field.name: self._values.get(field.name) for field in attr.fields(type(self))}

    def get_dirty_values(self) -> typing.Dict[str, typing.Any]:
        return {
            name: value
            for name, value in self.get_values().items()
            if name not in self._original or _differs(value, self._original[name])
        }

    def is_dirty(self) -> bool:
        return bool(self.get_dirty_values())

    def reset_dirty_snapshot(self) -> None:
        self._original = _copy_values(self.get_values())

    async def fetch_latest(self: E) -> typing.Optional[E]:
        return await self._require_mapper("refresh").refresh(self)

    async def save(self) -> typing.Optional[str]:
        return await self._require_mapper("update").update(self)

    async def save_and_confirm(self) -> None:
        mapper = self._require_mapper("update")
        request_id = await mapper.update(self)
        if request_id:
            await mapper.wait_for_mutation(request_id)

    async def remove(self) -> typing.Optional[str]:
        return await self._require_mapper("delete").delete(self)

    async def remove_and_confirm(self) -> None:
        mapper = self._require_mapper("delete")
        request_id = await mapper.delete(self)
        if request_id:
            await mapper.wait_for_mutation(request_id)

    def _require_mapper(self, action: str) -> "CodaMapper":
        if not self.row_id or self._mapper is None:
            raise NotPersisted(
                f'Unable to {action} row "{self.row_id}". This row hasn\'t been inserted to or fetched from Coda.'
            )
        return self._mapper

    @classmethod
    def _placeholder(cls: typing.Type[E], row_id: str, mapper: typing.Optional["CodaMapper"]) -> E:
        entity = cls()
        entity._values[cls.__identity__] = row_id
        entity._mapper = mapper
        entity._state.advance(exists_on_remote=True)
        entity.reset_dirty_snapshot()
        return entity

    def _mark_fetched(self, mapper: "CodaMapper", meta: RowMeta) -> None:
        self._mapper = mapper
        self._meta = meta
        self._state.advance(is_fetched=True)
        self.reset_dirty_snapshot()

    def _capture_dirty(self) -> typing.Dict[str, typing.Any]:
        return _copy_values(self.get_dirty_values())

    def _mark_synced(self, sent: typing.Dict[str, typing.Any]) -> None:
        # fields written while the request was in flight stay dirty
        self._original.update(sent)

    def _mark_inserted(self, mapper: "CodaMapper", row_id: str, sent: typing.Dict[str, typing.Any]) -> None:
        self._values[self.__identity__] = row_id
        self._mapper = mapper
        self._state.advance(exists_on_remote=True)
        self._mark_synced({**sent, self.__identity__: row_id})

    def _merge_from(self, fresh: "Entity") -> None:
        if fresh is not self:
            self._values = dict(fresh._values)
            self._meta = fresh._meta or self._meta
            self._mapper = fresh._mapper or self._mapper
            self._state.advance(fresh.exists_on_remote, fresh.is_fetched)
        self.reset_dirty_snapshot()
