from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from tickersync.clock import Clock
from tickersync.config.settings import CacheSettings
from tickersync.schemas.quote import Snapshot

logger = logging.getLogger(__name__)

QUOTE_PREFIX = "quote:"
HISTORICAL_PREFIX = "historical:"
META_PREFIX = "meta:"


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float
    size_bytes: int


def quote_key(symbol: str) -> str:
    return f"{QUOTE_PREFIX}{symbol}"


def _size_of(value: Any) -> int:
    if isinstance(value, BaseModel):
        return len(value.model_dump_json().encode("utf-8"))
    return len(json.dumps(value, default=str).encode("utf-8"))


class QuoteCache:
    """In-memory TTL cache with entry/size bounds and category namespaces.

    Entries are kept in insertion order; a write re-inserts its key, so the
    dict order is also ascending ``created_at`` and eviction pops from the
    front.
    """

    def __init__(self, settings: CacheSettings, clock: Clock) -> None:
        self._settings = settings
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._total_size = 0
        self._next_sweep = clock.time() + settings.cleanup_interval

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    @property
    def total_size(self) -> int:
        return self._total_size

    def ttl_for(self, key: str) -> float:
        if key.startswith(HISTORICAL_PREFIX):
            return self._settings.historical_ttl
        if key.startswith(META_PREFIX):
            return self._settings.meta_ttl
        return self._settings.quote_ttl

    def entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock.time() > entry.expires_at:
            return None
        return entry

    def get(self, key: str) -> Any | None:
        entry = self.entry(key)
        return entry.value if entry else None

    def put(self, key: str, value: Any, ttl: float | None = None) -> bool:
        existing = self.entry(key)
        incoming_as_of = getattr(value, "as_of", None)
        stored_as_of = getattr(existing.value, "as_of", None) if existing else None
        if incoming_as_of is not None and stored_as_of is not None and incoming_as_of < stored_as_of:
            logger.debug(
                "Rejected stale write for %s (%s older than %s)", key, incoming_as_of, stored_as_of
            )
            return False

        size = _size_of(value)
        if size > self._settings.max_size_bytes:
            logger.warning("Value for %s is %d bytes, larger than the whole cache", key, size)
            return False

        now = self._clock.time()
        if self._settings.auto_cleanup and now >= self._next_sweep:
            self.sweep()

        self._remove(key)
        ttl = self.ttl_for(key) if ttl is None else ttl
        self._entries[key] = CacheEntry(
            key=key, value=value, created_at=now, expires_at=now + ttl, size_bytes=size
        )
        self._total_size += size
        self._evict()
        return True

    def delete(self, key: str) -> bool:
        return self._remove(key) is not None

    def clear(self, prefix: str | None = None) -> int:
        keys = [key for key in self._entries if prefix is None or key.startswith(prefix)]
        for key in keys:
            self._remove(key)
        return len(keys)

    def sweep(self) -> int:
        now = self._clock.time()
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            self._remove(key)
        self._next_sweep = now + self._settings.cleanup_interval
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def put_quote(self, snapshot: Snapshot) -> bool:
        return self.put(quote_key(snapshot.symbol), snapshot)

    def get_quote(self, symbol: str) -> Snapshot | None:
        return self.get(quote_key(symbol))

    def quotes(self) -> Iterator[Snapshot]:
        now = self._clock.time()
        for key, entry in list(self._entries.items()):
            if key.startswith(QUOTE_PREFIX) and now <= entry.expires_at:
                yield entry.value

    def _remove(self, key: str) -> CacheEntry | None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._total_size -= entry.size_bytes
        return entry

    def _evict(self) -> None:
        while self._entries and (
            len(self._entries) > self._settings.max_entries
            or self._total_size > self._settings.max_size_bytes
        ):
            oldest = next(iter(self._entries))
            self._remove(oldest)
            logger.debug("Evicted %s to stay within cache bounds", oldest)
