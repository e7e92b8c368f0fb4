"""Field accessors installed on every entity class.

Scalar fields read and write the entity's value mapping directly. Relation
fields check the assigned type on write and, on read, hand back either the
linked entity or a task that fetches it when it is still a placeholder.

No in-flight deduplication happens here: two reads of the same unresolved
relation may issue two fetches. Both merge into the same cached instance, so
the callers end up holding one object. Cycles are not detected either; every
hop costs at most one fetch because an already fetched target is returned
synchronously.

Once a placeholder resolves, the field is relinked to whatever instance the
cache returned, so later reads stay synchronous even after a cache clear.
"""
import asyncio
import logging
import typing

import attr

from coda_mapper.exceptions import IdentityReassigned, TypeMismatch
from coda_mapper.fields import RELATED, Identity, is_multiple, resolve_related

logger = logging.getLogger(__name__)


def is_placeholder(value: typing.Any) -> bool:
    state = getattr(value, "_state", None)
    return state is not None and state.exists_on_remote and not state.is_fetched


async def resolve(entity: typing.Any) -> typing.Any:
    if not is_placeholder(entity):
        return entity
    logger.debug(f"Resolving placeholder {type(entity).__name__} row {entity.row_id}")
    return await entity.fetch_latest()


async def resolve_many(entities: typing.List[typing.Any]) -> typing.List[typing.Any]:
    return list(await asyncio.gather(*(resolve(entity) for entity in entities)))


def _schedule(coroutine_function: typing.Callable, *args: typing.Any) -> "asyncio.Task":
    loop = asyncio.get_running_loop()
    return loop.create_task(coroutine_function(*args))


def _swap(values: typing.Dict[str, typing.Any], name: str, old: typing.Any, new: typing.Any) -> None:
    current = values.get(name)
    if current is old:
        values[name] = new
    elif isinstance(current, list):
        # in place, callers may hold the list
        current[:] = [new if item is old else item for item in current]


class ColumnAccessor:
    def __init__(self, field: attr.Attribute) -> None:
        self.field = field
        self.name = field.name
        self.multiple = is_multiple(field)
        self.is_identity = Identity.is_identity(field)

    def __get__(self, instance: typing.Any, owner: type) -> typing.Any:
        if instance is None:
            return self
        return instance._values.get(self.name)

    def __set__(self, instance: typing.Any, value: typing.Any) -> None:
        if self.multiple and isinstance(value, tuple):
            value = list(value)
        if self.is_identity and instance._state.exists_on_remote and value != instance._values.get(self.name):
            raise IdentityReassigned(
                f"Row id of {type(instance).__name__} {instance._values.get(self.name)!r} cannot change once it "
                f"exists on Coda"
            )
        instance._values[self.name] = value


class RelationAccessor(ColumnAccessor):
    @property
    def related_type(self) -> type:
        return resolve_related(self.field.metadata[RELATED])

    def __get__(self, instance: typing.Any, owner: type) -> typing.Any:
        if instance is None:
            return self
        value = instance._values.get(self.name)
        if isinstance(value, list):
            if any(is_placeholder(item) for item in value):
                return _schedule(self._resolve_list, instance, list(value))
            return value
        if is_placeholder(value):
            return _schedule(self._resolve_one, instance, value)
        return value

    async def _resolve_one(self, instance: typing.Any, placeholder: typing.Any) -> typing.Any:
        resolved = await resolve(placeholder)
        self._link(instance, placeholder, resolved)
        return resolved

    async def _resolve_list(self, instance: typing.Any, items: typing.List[typing.Any]) -> typing.List[typing.Any]:
        resolved = await resolve_many(items)
        for old, new in zip(items, resolved):
            self._link(instance, old, new)
        return resolved

    def _link(self, instance: typing.Any, old: typing.Any, new: typing.Any) -> None:
        # a cache clear can leave the field pointing at a stale placeholder
        if new is None or new is old:
            return
        logger.debug(f"Relinking {type(instance).__name__}.{self.name} to the cached {type(new).__name__}")
        _swap(instance._values, self.name, old, new)
        _swap(instance._original, self.name, old, new)

    def __set__(self, instance: typing.Any, value: typing.Any) -> None:
        related = self.related_type
        if self.multiple and value is not None:
            if not isinstance(value, (list, tuple)):
                raise TypeMismatch(list, value)
            value = list(value)
            for item in value:
                self._check(item, related)
        elif value is not None:
            self._check(value, related)
        instance._values[self.name] = value

    @staticmethod
    def _check(value: typing.Any, related: type) -> None:
        if type(value) is not related:
            raise TypeMismatch(related, value)
