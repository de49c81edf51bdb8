"""
Blacklist — Blocked sender ids kept as one JSON array in the config namespace.

Read on every inbound message before any routing decision; changed only by
the owner's /ban and /unban commands. Both mutations are idempotent.
"""
from __future__ import annotations

import json
import structlog

from database.store_base import BaseKVStore

logger = structlog.get_logger()

BLACKLIST_KEY = "black_list"


class BlacklistStore:

    def __init__(self, store: BaseKVStore):
        self._store = store

    async def get(self) -> list[int]:
        """Return blocked ids. Raises on storage errors so callers can decide."""
        raw = await self._store.get(BLACKLIST_KEY)
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("blacklist_malformed", value=raw[:200])
            return []
        if not isinstance(ids, list):
            logger.warning("blacklist_malformed", value=raw[:200])
            return []
        return [i for i in ids if isinstance(i, int) and not isinstance(i, bool)]

    async def contains(self, user_id: int) -> bool:
        return user_id in await self.get()

    async def add(self, user_id: int) -> bool:
        """Block a user. Already blocked counts as success."""
        try:
            current = await self.get()
            if user_id in current:
                logger.info("blacklist_already_present", user_id=user_id)
                return True
            await self._store.put(BLACKLIST_KEY, json.dumps(current + [user_id]))
            logger.info("blacklist_added", user_id=user_id)
            return True
        except Exception as e:
            logger.error("blacklist_add_failed", user_id=user_id, error=str(e))
            return False

    async def remove(self, user_id: int) -> bool:
        """Unblock a user. Not blocked counts as success."""
        try:
            current = await self.get()
            if user_id not in current:
                logger.info("blacklist_not_present", user_id=user_id)
                return True
            await self._store.put(
                BLACKLIST_KEY, json.dumps([i for i in current if i != user_id])
            )
            logger.info("blacklist_removed", user_id=user_id)
            return True
        except Exception as e:
            logger.error("blacklist_remove_failed", user_id=user_id, error=str(e))
            return False
