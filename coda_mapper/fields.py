import typing

import attr


COLUMN_ID = "coda_mapper.column_id"
RELATED = "coda_mapper.related"
MULTIPLE = "coda_mapper.multiple"
IDENTITY = "coda_mapper.identity"

T = typing.TypeVar("T")

RelatedType = typing.Union[type, typing.Callable[[], type]]


class Identity(typing.Generic[T]):
    @classmethod
    def is_identity(cls, field: attr.Attribute) -> bool:
        if field.metadata.get(IDENTITY):
            return True
        if isinstance(field.type, str):
            return field.type.startswith(f"{cls.__name__}[")
        return getattr(field.type, "__origin__", None) is cls


def identity(column_id: typing.Optional[str] = None) -> typing.Any:
    return attr.ib(default=None, metadata={IDENTITY: True, COLUMN_ID: column_id})


def column(column_id: str, multiple: bool = False) -> typing.Any:
    default = attr.Factory(list) if multiple else None
    return attr.ib(default=default, metadata={COLUMN_ID: column_id, MULTIPLE: multiple})


def relation(column_id: str, related: RelatedType, multiple: bool = False) -> typing.Any:
    default = attr.Factory(list) if multiple else None
    return attr.ib(default=default, metadata={COLUMN_ID: column_id, RELATED: related, MULTIPLE: multiple})


def is_relation(field: attr.Attribute) -> bool:
    return RELATED in field.metadata


def is_multiple(field: attr.Attribute) -> bool:
    return bool(field.metadata.get(MULTIPLE))


def resolve_related(related: RelatedType) -> type:
    # classes are callable too, check for a type first
    if isinstance(related, type):
        return related
    return related()
