"""
InMemoryKVStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database, no Redis)
  - Per-entry expiry checked lazily on access
  - Insertion-ordered listing (dict order; re-puts move to the end)
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import time
import structlog
from typing import Callable, Optional

from database.store_base import BaseKVStore

logger = structlog.get_logger()


class InMemoryKVStore(BaseKVStore):
    """
    In-memory store. Values are kept as ``key → (value, expires_at)`` where
    expires_at is an epoch timestamp in seconds or None for no expiry.

    ``clock`` is injectable so tests can move time forward without sleeping.
    """

    def __init__(self, namespace: str = "default", clock: Callable[[], float] = None):
        super().__init__(namespace)
        self._clock = clock or time.time
        self._entries: dict[str, tuple[str, Optional[float]]] = {}
        logger.info("inmemory_store_initialized", namespace=namespace)

    def _is_expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and expires_at <= self._clock()

    def _purge_expired(self) -> list[str]:
        expired = [k for k, (_, exp) in self._entries.items() if self._is_expired(exp)]
        for key in expired:
            del self._entries[key]
        return expired

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._is_expired(expires_at):
            del self._entries[key]
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        # pop first so a re-written key moves to the end of the listing order
        self._entries.pop(key, None)
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def list_keys(self, prefix: str = "") -> list[str]:
        self._purge_expired()
        return [k for k in self._entries if k.startswith(prefix)]

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {"entries": len(self._entries)}
