from coda_mapper.config import MapperSettings
from coda_mapper.entity import Entity, EntityState, RowMeta
from coda_mapper.exceptions import (
    CodaMapperError,
    ConfigurationError,
    EntityWithoutIdentity,
    IdentityReassigned,
    MissingColumnId,
    MissingRelationDeclaration,
    MissingTableId,
    NotPersisted,
    TypeMismatch,
    UnresolvedReference,
)
from coda_mapper.fields import Identity, column, identity, relation
from coda_mapper.identity_cache import CacheKey, IdentityCache
from coda_mapper.mapper import CodaMapper
from coda_mapper.registry import describe

__all__ = [
    "CacheKey",
    "CodaMapper",
    "CodaMapperError",
    "ConfigurationError",
    "Entity",
    "EntityState",
    "EntityWithoutIdentity",
    "Identity",
    "IdentityCache",
    "IdentityReassigned",
    "MapperSettings",
    "MissingColumnId",
    "MissingRelationDeclaration",
    "MissingTableId",
    "NotPersisted",
    "RowMeta",
    "TypeMismatch",
    "UnresolvedReference",
    "column",
    "describe",
    "identity",
    "relation",
]
