"""
Tagged read cache and its invalidation interface.

Read paths (graph snapshot, node detail) store derived values here under a
key and one or more tags. Write paths clear by tag after their transaction
commits. A reader that fetched a value before a clear keeps that value;
every lookup that starts after the clear misses.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheTag(str, Enum):
    """Tags grouping cached artifacts for invalidation."""

    GRAPH_DATA = "graph-data"
    NODE_DETAIL = "node-detail"
    ENTITIES = "entities"
    RELATIONSHIPS = "relationships"
    EPISODES = "episodes"


# Tags affected by any write to canonical entities or connections
GRAPH_WRITE_TAGS = (
    CacheTag.GRAPH_DATA,
    CacheTag.NODE_DETAIL,
    CacheTag.ENTITIES,
    CacheTag.RELATIONSHIPS,
)


@dataclass
class _Entry:
    value: Any
    tags: frozenset[str]
    expires_at: float


class ReadCache:
    """Thread-safe in-memory cache with TTL and tags."""

    def __init__(self, default_ttl: float = 3600.0) -> None:
        self.default_ttl = default_ttl
        self._entries: dict[str, _Entry] = {}
        # Bumped by every removal; a factory result computed across a bump
        # is not stored
        self._generation = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Get a value if present and not expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if time.monotonic() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(
        self,
        key: str,
        value: Any,
        tags: Iterable[CacheTag | str] = (),
        ttl: float | None = None,
    ) -> None:
        """Store a value under a key with tags and a TTL in seconds."""
        entry = self._make_entry(value, tags, ttl)
        with self._lock:
            self._entries[key] = entry

    def get_or_set(
        self,
        key: str,
        factory: Callable[[], T],
        tags: Iterable[CacheTag | str] = (),
        ttl: float | None = None,
    ) -> T:
        """
        Return the cached value, computing and storing it on a miss.

        The factory runs outside the lock; concurrent misses may both
        compute, and the last one stored wins. A result is dropped instead
        of stored if any invalidation ran while it was being computed, so
        a clear is never undone by a read that started before it. None
        results are not cached.
        """
        with self._lock:
            generation = self._generation
        cached = self.get(key)
        if cached is not None:
            return cached
        value = factory()
        if value is None:
            return value

        entry = self._make_entry(value, tags, ttl)
        with self._lock:
            if self._generation == generation:
                self._entries[key] = entry
            else:
                logger.debug(f"Cache fill for '{key}' dropped after invalidation")
        return value

    def delete(self, key: str) -> bool:
        with self._lock:
            self._generation += 1
            return self._entries.pop(key, None) is not None

    def delete_tagged(self, tag: CacheTag | str) -> int:
        tag_value = _tag_value(tag)
        with self._lock:
            self._generation += 1
            keys = [k for k, e in self._entries.items() if tag_value in e.tags]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def clear(self) -> int:
        with self._lock:
            self._generation += 1
            count = len(self._entries)
            self._entries.clear()
            return count

    def _make_entry(
        self, value: Any, tags: Iterable[CacheTag | str], ttl: float | None
    ) -> _Entry:
        return _Entry(
            value=value,
            tags=frozenset(_tag_value(t) for t in tags),
            expires_at=time.monotonic() + (ttl if ttl is not None else self.default_ttl),
        )

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _tag_value(tag: CacheTag | str) -> str:
    return tag.value if isinstance(tag, CacheTag) else tag


class CacheInvalidator:
    """Key-, tag- and global invalidation over a ReadCache."""

    def __init__(self, cache: ReadCache) -> None:
        self._cache = cache

    def clear(self, key: str) -> bool:
        """
        Remove one cached artifact.

        Returns:
            True if the key existed
        """
        existed = self._cache.delete(key)
        logger.info(f"Cache clear key='{key}' existed={existed}")
        return existed

    def clear_by_tag(self, tag: CacheTag | str) -> int:
        """Remove every artifact carrying a tag; returns entries removed."""
        removed = self._cache.delete_tagged(tag)
        logger.info(f"Cache clear tag='{_tag_value(tag)}' removed={removed}")
        return removed

    def clear_tags(self, tags: Iterable[CacheTag | str]) -> int:
        return sum(self.clear_by_tag(tag) for tag in tags)

    def clear_all(self) -> int:
        removed = self._cache.clear()
        logger.info(f"Cache cleared: {removed} entries removed")
        return removed
