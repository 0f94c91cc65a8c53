from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from redis import Redis

from tickersync.clock import Clock

logger = logging.getLogger(__name__)

ALERTS_KEY = "price-alerts"
WATCHLIST_KEY = "favorite-stocks"
PREFERENCES_KEY = "user-preferences"


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool: ...

    def remove(self, key: str) -> bool: ...

    def clear(self, prefix: str | None = None) -> int: ...


class MemoryKeyValueStore:
    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._items: dict[str, tuple[str, float | None]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        item = self._items.get(key)
        if item is None:
            return default
        raw, expires_at = item
        if expires_at is not None and self._clock.time() > expires_at:
            del self._items[key]
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        expires_at = self._clock.time() + ttl if ttl else None
        self._items[key] = (json.dumps(value, default=str), expires_at)
        return True

    def remove(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    def clear(self, prefix: str | None = None) -> int:
        keys = [key for key in self._items if prefix is None or key.startswith(prefix)]
        for key in keys:
            del self._items[key]
        return len(keys)


class RedisKeyValueStore:
    """JSON values in Redis. Backend errors are logged and read as a miss."""

    def __init__(self, client: Redis, namespace: str = "tickersync:") -> None:
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "tickersync:") -> "RedisKeyValueStore":
        return cls(Redis.from_url(url), namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    def get(self, key: str, default: Any = None) -> Any:
        try:
            raw = self._client.get(self._key(key))
        except Exception:
            logger.warning("Redis get failed for %s", key, exc_info=True)
            return default

        if not raw:
            return default

        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.warning("Discarding undecodable value stored under %s", key)
            return default

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        payload = json.dumps(value, default=str)
        try:
            if ttl:
                self._client.setex(self._key(key), max(int(ttl), 1), payload)
            else:
                self._client.set(self._key(key), payload)
        except Exception:
            logger.warning("Redis set failed for %s", key, exc_info=True)
            return False
        return True

    def remove(self, key: str) -> bool:
        try:
            return bool(self._client.delete(self._key(key)))
        except Exception:
            logger.warning("Redis delete failed for %s", key, exc_info=True)
            return False

    def clear(self, prefix: str | None = None) -> int:
        pattern = f"{self._key(prefix or '')}*"
        try:
            keys = list(self._client.scan_iter(match=pattern))
            if not keys:
                return 0
            return int(self._client.delete(*keys))
        except Exception:
            logger.warning("Redis clear failed for prefix %r", prefix, exc_info=True)
            return 0
