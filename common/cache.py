"""TTL caches for the reference data listings (locations, categories, types)."""
from __future__ import annotations

from typing import Generic, Optional, TypeVar

from cachetools import TTLCache

from .config import get_settings

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: str) -> Optional[T]:
        return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        self._cache[key] = value

    def pop(self, key: str) -> None:
        self._cache.pop(key, None)

    def pop_prefix(self, prefix: str) -> None:
        for key in [key for key in self._cache.keys() if key.startswith(prefix)]:
            self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()


catalog_cache: SimpleTTLCache[list] = SimpleTTLCache(ttl=get_settings().catalog_cache_ttl)


def catalog_key(kind: str, *parts: object) -> str:
    return ":".join([f"catalog-{kind}", *(str(part) for part in parts)])


def invalidate_catalog(kind: str) -> None:
    catalog_cache.pop_prefix(f"catalog-{kind}")
