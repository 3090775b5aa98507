"""
In-memory response cache.

Responses are keyed by a SHA-256 fingerprint of the normalized query, model
and context. Entries expire lazily after ``ttl_seconds``; when the cache is
full the least recently used entry is evicted.
"""

import dataclasses
import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..config import CacheOptions

logger = logging.getLogger(__name__)

# Full expired-entry sweep every N insertions
SWEEP_INTERVAL = 100


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float


@dataclass
class CacheStats:
    hits: int
    misses: int
    size: int
    max_entries: int
    approximate_bytes: int


def _mark_cached(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.replace(value, cached=True)
    if isinstance(value, dict):
        return {**value, "cached": True}
    return value


def _approximate_size(value: Any) -> int:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    return len(json.dumps(value, default=str))


class ResponseCache:
    def __init__(
        self,
        options: Optional[CacheOptions] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._options = options or CacheOptions()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._insertions = 0

    @staticmethod
    def generate_key(
        query: str,
        model: str,
        context: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> str:
        """
        Fingerprint a request.

        Matching is case- and surrounding-whitespace-insensitive. A mode
        (e.g. "json") is appended so structured-output responses never
        collide with plain ones.
        """
        normalized = json.dumps(
            {
                "query": query.strip().lower(),
                "model": model.lower(),
                "context": (context or "").strip().lower(),
            },
            separators=(",", ":"),
        )
        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
        return f"{digest}:{mode}" if mode else digest

    def is_enabled(self) -> bool:
        return self._options.enabled

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Any:
        if not self._options.enabled:
            self._misses += 1
            return None

        entry = self._live_entry(key)
        if entry is None:
            self._misses += 1
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def has(self, key: str) -> bool:
        if not self._options.enabled:
            return False
        return self._live_entry(key) is not None

    def set(self, key: str, value: Any) -> None:
        if not self._options.enabled:
            return

        if key not in self._entries and len(self._entries) >= self._options.max_entries:
            self.evict_expired()
            while len(self._entries) >= self._options.max_entries and self._entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache full, evicted %s", evicted[:12])

        now = self._clock()
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(
            key=key,
            value=_mark_cached(value),
            created_at=now,
            expires_at=now + self._options.ttl_seconds,
        )

        self._insertions += 1
        if self._insertions % SWEEP_INTERVAL == 0:
            self.evict_expired()

    def get_expires_at(self, key: str) -> Optional[datetime]:
        entry = self._live_entry(key)
        if entry is None:
            return None
        return datetime.fromtimestamp(entry.expires_at, tz=timezone.utc)

    def get_ttl_remaining(self, key: str) -> Optional[int]:
        """Whole seconds until the entry expires, or None if absent or expired."""
        entry = self._live_entry(key)
        if entry is None:
            return None
        return max(0, int(entry.expires_at - self._clock()))

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0

    def get_stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=len(self._entries),
            max_entries=self._options.max_entries,
            approximate_bytes=sum(_approximate_size(e.value) for e in self._entries.values()),
        )

    def get_hit_rate(self) -> int:
        total = self._hits + self._misses
        if total == 0:
            return 0
        return round(self._hits / total * 100)

    def set_options(
        self,
        enabled: Optional[bool] = None,
        ttl_seconds: Optional[int] = None,
        max_entries: Optional[int] = None,
    ) -> None:
        if enabled is not None:
            self._options.enabled = enabled
        if ttl_seconds is not None:
            self._options.ttl_seconds = ttl_seconds
        if max_entries is not None:
            self._options.max_entries = max_entries
            while len(self._entries) > max_entries:
                self._entries.popitem(last=False)

    def get_options(self) -> CacheOptions:
        return self._options.model_copy()
