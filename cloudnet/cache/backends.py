"""
Key/value backends for the network cache.

`CacheBackend` is the contract the cache layer depends on.  Values are
already-serialised JSON strings; expiry is handled by the backend.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Storage interface used by `NetworkCache`."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or ``None`` when missing or expired."""

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store *value* under *key* for *ttl_seconds*."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove *key*; a missing key is not an error."""

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with *prefix* and return how many were removed."""


class RedisCacheBackend(CacheBackend):
    """
    CacheBackend backed by Redis.

    The connection is opened lazily so importing the module or building the
    dependency graph never requires a reachable Redis.
    """

    def __init__(self, url: str, key_prefix: str = "cloudnet:") -> None:
        self._url = url
        self._key_prefix = key_prefix
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
            logger.info("Redis cache connected to %s", self._url)
        return self._client

    def _k(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        return self._get_client().get(self._k(key))

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._get_client().set(self._k(key), value, ex=ttl_seconds)

    def delete(self, key: str) -> None:
        self._get_client().delete(self._k(key))

    def delete_prefix(self, prefix: str) -> int:
        client = self._get_client()
        keys = list(client.scan_iter(match=f"{self._k(prefix)}*", count=500))
        if not keys:
            return 0
        return client.delete(*keys)


class InMemoryCacheBackend(CacheBackend):
    """Process-local backend, used for single-instance deployments and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)
