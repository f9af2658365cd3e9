"""
Ledger Cache - pages of query results kept for the life of one app instance

Entries are keyed by ``(entity, query_key, page)`` and live until a write
invalidates their entity type or the process exits. There is no TTL: the
service invalidates eagerly after every committed write.
"""
from dataclasses import dataclass
from typing import Any, Optional

from water_ledger.core.logging import get_logger
from water_ledger.domain.records import Cursor

logger = get_logger(__name__)

# Entity types
CUSTOMERS = "customers"
TRANSACTIONS = "transactions"
CUSTOMER_SEARCH = "customer_search"
PRICES = "prices"

ENTITY_TYPES = (CUSTOMERS, TRANSACTIONS, CUSTOMER_SEARCH, PRICES)


@dataclass(frozen=True)
class CachedPage:
    items: tuple
    cursor: Optional[Cursor]
    has_more: bool


class LedgerCache:
    """In-process page cache, one per application (see ``app.state``)"""

    def __init__(self) -> None:
        self._entries: dict[str, dict[tuple[str, int], Any]] = {
            entity: {} for entity in ENTITY_TYPES
        }

    def _bucket(self, entity: str) -> dict[tuple[str, int], Any]:
        if entity not in self._entries:
            raise ValueError(f"Unknown cache entity: {entity}")
        return self._entries[entity]

    def get(self, entity: str, key: str, page: int) -> Optional[CachedPage]:
        bucket = self._bucket(entity)
        entry = bucket.get((key, page))
        if entry is None:
            return None
        if not isinstance(entry, CachedPage) or not isinstance(entry.items, tuple):
            logger.warning(
                "Dropping malformed cache entry",
                extra_data={"entity": entity, "key": key, "page": page},
            )
            bucket.pop((key, page), None)
            return None
        return entry

    def put(
        self,
        entity: str,
        key: str,
        page: int,
        items,
        cursor: Optional[Cursor],
        has_more: bool,
    ) -> CachedPage:
        entry = CachedPage(items=tuple(items), cursor=cursor, has_more=has_more)
        self._bucket(entity)[(key, page)] = entry
        return entry

    def invalidate(self, *entities: str) -> None:
        """Drop every entry of the given entity types"""
        for entity in entities:
            self._bucket(entity).clear()
        logger.debug("Cache invalidated", extra_data={"entities": list(entities)})

    def invalidate_key(self, entity: str, key: str) -> None:
        bucket = self._bucket(entity)
        for cache_key in [k for k in bucket if k[0] == key]:
            del bucket[cache_key]

    def clear(self) -> None:
        for bucket in self._entries.values():
            bucket.clear()
        logger.debug("Cache cleared")

    def size(self, entity: Optional[str] = None) -> int:
        if entity is not None:
            return len(self._bucket(entity))
        return sum(len(bucket) for bucket in self._entries.values())
