"""
Correlation Store — Maps a relayed copy back to the message it came from.

When the bot copies a message into another chat, Telegram assigns the copy a
new message id. Replying to that copy only tells us the copy's id, so every
successful relay records ``copy id → (origin chat, origin message)``.

Retention is bounded twice:
  - every entry carries a TTL (``relay.kv_expiration_ttl``)
  - after each write, keys beyond ``max_entries`` are evicted oldest-first

Storage layout (namespace ``relay``):
  "{relayed_id}"          → "{origin_chat}_{origin_message}"
  "{scope}:{relayed_id}"  → same, when a key scope is configured

Nothing here raises: a lost correlation only means a later reply cannot be
routed, and the message itself has already been delivered.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from database.store_base import BaseKVStore
from models.schemas import ChatRef, CorrelationEntry

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 259200
DEFAULT_MAX_ENTRIES = 10


def encode_entry(origin_chat: ChatRef, origin_message: int) -> str:
    return f"{origin_chat}_{origin_message}"


def decode_entry(value: str) -> Optional[CorrelationEntry]:
    """Parse a stored value; malformed values decode to None."""
    parts = value.split("_")
    if len(parts) != 2:
        return None
    chat_part, message_part = parts
    # chat handles like "@channel" or "-100123" stay strings
    numeric = chat_part.isascii() and chat_part.isdigit()
    origin_chat: ChatRef = int(chat_part) if numeric else chat_part
    try:
        origin_message = int(message_part)
    except ValueError:
        return None
    return CorrelationEntry(origin_chat=origin_chat, origin_message=origin_message)


class CorrelationStore:
    """Bounded, expiring map from relayed message id to its origin."""

    def __init__(
        self,
        store: BaseKVStore,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        key_scope: str = "",
    ):
        self._store = store
        self.max_entries = max_entries
        self.key_scope = key_scope

    def key_for(self, relayed_id: int) -> str:
        if self.key_scope:
            return f"{self.key_scope}:{relayed_id}"
        return str(relayed_id)

    async def put(
        self,
        ttl_seconds: int,
        relayed_id: int,
        origin_chat: ChatRef,
        origin_message: int,
    ) -> None:
        key = self.key_for(relayed_id)
        value = encode_entry(origin_chat, origin_message)
        try:
            await self._store.put(key, value, ttl_seconds=ttl_seconds)
            logger.info("correlation_stored", key=key, value=value, ttl=ttl_seconds)
        except Exception as e:
            logger.error("correlation_store_failed", key=key, error=str(e))
            return
        await self.cleanup()

    async def get(self, relayed_id: int) -> Optional[CorrelationEntry]:
        key = self.key_for(relayed_id)
        try:
            value = await self._store.get(key)
        except Exception as e:
            logger.error("correlation_lookup_failed", key=key, error=str(e))
            return None

        if value is None:
            logger.info("correlation_not_found", key=key)
            return None
        entry = decode_entry(value)
        if entry is None:
            logger.warning("correlation_malformed", key=key, value=value)
        return entry

    async def cleanup(self) -> int:
        """
        Evict the oldest entries beyond ``max_entries``.

        Best effort: concurrent writers may briefly push the count over the
        cap, and a failed deletion is only logged. Returns how many keys the
        pass tried to evict.
        """
        prefix = f"{self.key_scope}:" if self.key_scope else ""
        try:
            keys = await self._store.list_keys(prefix)
        except Exception as e:
            logger.error("correlation_cleanup_list_failed", error=str(e))
            return 0

        excess = len(keys) - self.max_entries
        if excess <= 0:
            return 0

        stale = keys[:excess]
        results = await asyncio.gather(
            *(self._store.delete(key) for key in stale),
            return_exceptions=True,
        )
        for key, result in zip(stale, results):
            if isinstance(result, Exception):
                logger.error("correlation_evict_failed", key=key, error=str(result))
        logger.info("correlation_cleanup", evicted=len(stale), remaining=self.max_entries)
        return len(stale)
