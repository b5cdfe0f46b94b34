"""
Read-through / write-invalidate cache in front of provider reads.

Key layout
──────────
  list:{kind}:{provider}:{credential_id}:{scope}
  item:{kind}:{provider}:{credential_id}:{resource_id}

``scope`` is the region for VPC and security-group lists and the VPC id for
subnet lists, joined with any other provider-side narrowing of the request
(resource group, VPC filter) so differently narrowed results never share a
key.  ``global`` stands in when the request has none.

Every backend failure is logged and treated as a miss (reads) or ignored
(writes, invalidations).  A `NetworkCache` without a backend is a no-op.
"""

import logging
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, TypeAdapter

from cloudnet.cache.backends import CacheBackend
from cloudnet.schemas.common import ResourceKind

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

GLOBAL_SCOPE = "global"


def compose_scope(*parts: Optional[str]) -> str:
    present = [p for p in parts if p]
    return "|".join(present) if present else GLOBAL_SCOPE


def list_key(kind: ResourceKind, provider: str, credential_id: str, scope: Optional[str]) -> str:
    return f"list:{kind.value}:{provider}:{credential_id}:{scope or GLOBAL_SCOPE}"


def item_key(kind: ResourceKind, provider: str, credential_id: str, resource_id: str) -> str:
    return f"item:{kind.value}:{provider}:{credential_id}:{resource_id}"


def list_prefix(kind: ResourceKind, provider: str, credential_id: str) -> str:
    """Prefix covering every list scope of one (kind, provider, credential)."""
    return f"list:{kind.value}:{provider}:{credential_id}:"


def item_prefix(kind: ResourceKind, provider: str, credential_id: str) -> str:
    return f"item:{kind.value}:{provider}:{credential_id}:"


class NetworkCache:
    def __init__(self, backend: Optional[CacheBackend], ttl_seconds: int = 300) -> None:
        self._backend = backend
        self.ttl_seconds = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._backend is not None

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get_list(self, key: str, model: Type[M]) -> tuple[list[M], bool]:
        raw = self._read(key)
        if raw is None:
            return [], False
        try:
            return TypeAdapter(list[model]).validate_json(raw), True
        except ValueError as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            self.invalidate(key)
            return [], False

    def get_item(self, key: str, model: Type[M]) -> tuple[Optional[M], bool]:
        raw = self._read(key)
        if raw is None:
            return None, False
        try:
            return model.model_validate_json(raw), True
        except ValueError as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            self.invalidate(key)
            return None, False

    # ── Writes ────────────────────────────────────────────────────────────────

    def set_list(self, key: str, items: list[BaseModel], ttl_seconds: Optional[int] = None) -> None:
        payload = "[" + ",".join(i.model_dump_json() for i in items) + "]"
        self._write(key, payload, ttl_seconds)

    def set_item(self, key: str, item: BaseModel, ttl_seconds: Optional[int] = None) -> None:
        self._write(key, item.model_dump_json(), ttl_seconds)

    def invalidate(self, key: str) -> None:
        if self._backend is None:
            return
        try:
            self._backend.delete(key)
            logger.debug("Cache invalidated %s", key)
        except Exception as exc:
            logger.warning("Cache invalidation failed for %s: %s", key, exc)

    def invalidate_prefix(self, prefix: str) -> None:
        if self._backend is None:
            return
        try:
            removed = self._backend.delete_prefix(prefix)
            logger.debug("Cache invalidated %d key(s) under %s", removed, prefix)
        except Exception as exc:
            logger.warning("Cache invalidation failed for prefix %s: %s", prefix, exc)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _read(self, key: str) -> Optional[str]:
        if self._backend is None:
            return None
        try:
            raw = self._backend.get(key)
        except Exception as exc:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, exc)
            return None
        logger.debug("Cache %s for %s", "hit" if raw is not None else "miss", key)
        return raw

    def _write(self, key: str, payload: str, ttl_seconds: Optional[int]) -> None:
        if self._backend is None:
            return
        try:
            self._backend.set(key, payload, ttl_seconds or self.ttl_seconds)
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)
