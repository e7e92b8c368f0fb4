import logging
import typing

import attr

from coda_mapper.entity import Entity

logger = logging.getLogger(__name__)

E = typing.TypeVar("E", bound=Entity)


@attr.s(auto_attribs=True, frozen=True)
class CacheKey:
    table_id: str
    row_id: str


class IdentityCache:
    def __init__(self) -> None:
        self._entries: typing.Dict[CacheKey, Entity] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def lookup(self, table_id: str, row_id: str) -> typing.Optional[Entity]:
        return self._entries.get(CacheKey(table_id, row_id))

    def register_or_merge(self, table_id: str, row_id: str, fresh: E) -> E:
        key = CacheKey(table_id, row_id)
        existing = self._entries.get(key)
        if existing is None:
            logger.debug(f"Caching {type(fresh).__name__} under {key}")
            self._entries[key] = fresh
            return fresh

        if existing.is_fetched and not fresh.is_fetched:
            # only a full row response may overwrite a fetched entry
            logger.debug(f"Keeping fetched entry for {key}, ignoring unfetched data")
            return existing

        logger.debug(f"Merging fresh data into cached entry for {key}")
        existing._merge_from(fresh)
        return existing

    def register_if_absent(self, table_id: str, row_id: str, placeholder: E) -> E:
        key = CacheKey(table_id, row_id)
        existing = self._entries.get(key)
        if existing is not None:
            return existing
        logger.debug(f"Caching placeholder {type(placeholder).__name__} under {key}")
        self._entries[key] = placeholder
        return placeholder

    def clear(self) -> None:
        logger.debug(f"Clearing {len(self._entries)} cached entities")
        self._entries.clear()
