"""
Content-addressed memo cache for classifier calls.

Identical inputs (mode + tail-truncated content + extra params) hash to the
same key, so re-opening a message or re-running a batch never pays for a second
model call while the entry is live.

Policy: LRU bounded by max_entries, plus a fixed TTL per entry. Expired entries
are pruned before every insert and on every lookup; an update refreshes the
entry's expiry and moves it to the most-recently-used end. Only successful
classifications are ever stored.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any, Generic, TypeVar

from cachetools import TTLCache

from decluttr.config import CACHE_MAX_ENTRIES, CACHE_TTL_SECONDS
from decluttr.observability.telemetry import counter, log_event

T = TypeVar("T")

_MISSING = object()


def _hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def cache_key(prefix: str, *parts: Any) -> str:
    """Fingerprint for a classifier call: ``prefix:sha256(parts joined by NUL)``."""
    encoded = [
        part if isinstance(part, str) else json.dumps(part, sort_keys=True, default=str)
        for part in parts
    ]
    return f"{prefix}:{_hash(chr(0).join(encoded))}"


def fingerprint(mode: str, content: str, params: Mapping[str, Any] | None = None) -> str:
    """Key over (mode, content, params); empty params hash the same as no params."""
    if params:
        return cache_key(mode, content, dict(params))
    return cache_key(mode, content)


def summarize_key(content: str) -> str:
    return fingerprint("summarize", content)


def categorize_key(content: str) -> str:
    return fingerprint("categorize", content)


def match_label_key(content: str, label_name: str, label_description: str) -> str:
    return fingerprint(
        "matchLabel", content, {"labelName": label_name, "labelDescription": label_description}
    )


class MemoCache(Generic[T]):
    """Bounded LRU + TTL cache with telemetry. Safe to share across worker threads."""

    def __init__(
        self,
        name: str = "classification",
        max_entries: int = CACHE_MAX_ENTRIES,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        timer: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            name: Cache name for telemetry counters (cache.<name>.hit etc.)
            max_entries: Upper bound on live entries
            ttl_seconds: Lifetime of each entry from its last write
            timer: Clock; injectable so tests can move time forward
        """
        self.name = name
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._store: TTLCache[str, T] = TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=timer)
        self._lock = threading.Lock()

    def get(self, key: str) -> T | None:
        """
        Return the cached value, or None on a miss.

        Side Effects:
            - Prunes expired entries (an expired hit is evicted and reported as a miss)
            - Promotes a live hit to the most-recently-used end
            - Increments telemetry counters
        """
        with self._lock:
            expired = self._store.expire() or ()
            value = self._store.get(key, _MISSING)

        if any(expired_key == key for expired_key, _ in expired):
            counter(f"cache.{self.name}.expired")
            log_event("cache.expired", cache=self.name, key_hash=key[:24])
        if value is _MISSING:
            counter(f"cache.{self.name}.miss")
            return None
        counter(f"cache.{self.name}.hit")
        return value  # type: ignore[return-value]

    def set(self, key: str, value: T) -> None:
        """
        Store value, evicting expired then least-recently-used entries first.

        Side Effects:
            - Writes to the in-memory store
            - Increments telemetry counter (cache.{name}.write)
        """
        with self._lock:
            self._store.expire()
            self._store[key] = value
        counter(f"cache.{self.name}.write")

    def invalidate(self, key: str) -> None:
        with self._lock:
            removed = self._store.pop(key, _MISSING) is not _MISSING
        if removed:
            counter(f"cache.{self.name}.invalidate")

    def clear(self) -> None:
        with self._lock:
            count = len(self._store)
            self._store.clear()
        log_event("cache.cleared", cache=self.name, count=count)

    def stats(self) -> dict[str, int | float]:
        with self._lock:
            self._store.expire()
            size = len(self._store)
        return {"entries": size, "max_entries": self.max_entries, "ttl_seconds": self.ttl_seconds}

    def __len__(self) -> int:
        with self._lock:
            self._store.expire()
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store
