"""Tenant-scoped TTL caches for replies and retrieval results.

Keys always start with the tenant id, so one tenant can never be served
another tenant's entry. Whether the caches are consulted at all is decided per
message from the runtime settings; clearing is available at any time.
"""

from __future__ import annotations

import re
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

from ..llm.schemas import GenerationResult, Intent

T = TypeVar("T")

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_FILLER_WORDS = {
    "dong", "ya", "yah", "sih", "nih", "deh", "kak", "pak", "bu", "min", "mas", "mbak",
    "tolong", "mohon", "please", "gan",
}

CACHEABLE_INTENTS = frozenset({Intent.KNOWLEDGE_QUERY, Intent.QUESTION, Intent.GREETING})

_TTL_BY_INTENT: dict[Intent, float] = {
    Intent.KNOWLEDGE_QUERY: 3600.0,
    Intent.GREETING: 86400.0,
}
DEFAULT_TTL = 1800.0


def normalize_query(text: str) -> str:
    """Lowercase, strip punctuation and filler words, sort remaining words."""

    cleaned = _PUNCTUATION.sub(" ", (text or "").lower())
    words = [w for w in _WHITESPACE.split(cleaned) if w and w not in _FILLER_WORDS]
    return " ".join(sorted(words))


class TenantCache(Generic[T]):
    """LRU cache with per-entry TTL and hit/miss accounting."""

    def __init__(
        self,
        *,
        max_size: int = 500,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: OrderedDict[tuple[str, Hashable], tuple[float, T]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, tenant_id: str, key: Hashable) -> T | None:
        full_key = (tenant_id, key)
        with self._lock:
            entry = self._entries.get(full_key)
            if entry is None or entry[0] <= self._clock():
                if entry is not None:
                    del self._entries[full_key]
                self._misses += 1
                return None
            self._entries.move_to_end(full_key)
            self._hits += 1
            return entry[1]

    def set(self, tenant_id: str, key: Hashable, value: T, ttl: float | None = None) -> None:
        full_key = (tenant_id, key)
        expires = self._clock() + (ttl if ttl is not None else self._default_ttl)
        with self._lock:
            self._entries[full_key] = (expires, value)
            self._entries.move_to_end(full_key)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    def clear(self, tenant_id: str | None = None) -> int:
        with self._lock:
            if tenant_id is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            keys = [key for key in self._entries if key[0] == tenant_id]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def stats(self) -> dict[str, float | int]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self._max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups, 3) if lookups else 0.0,
            }


class ResponseCache:
    """Cache model replies for repeatable, non-personal intents."""

    def __init__(self, cache: TenantCache[GenerationResult] | None = None) -> None:
        self._cache = cache or TenantCache()

    def get(self, tenant_id: str, channel: str, message: str) -> GenerationResult | None:
        key = (channel, normalize_query(message))
        if not key[1]:
            return None
        return self._cache.get(tenant_id, key)

    def put(self, tenant_id: str, channel: str, message: str, generation: GenerationResult) -> bool:
        if generation.intent not in CACHEABLE_INTENTS or generation.format_degraded:
            return False
        normalized = normalize_query(message)
        if not normalized:
            return False
        ttl = _TTL_BY_INTENT.get(generation.intent, DEFAULT_TTL)
        self._cache.set(tenant_id, (channel, normalized), generation, ttl)
        return True

    def clear(self, tenant_id: str | None = None) -> int:
        return self._cache.clear(tenant_id)

    def stats(self) -> dict[str, float | int]:
        return self._cache.stats()
