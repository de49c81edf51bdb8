"""
SqlKVStore — Portable SQL key/value storage for PostgreSQL, MySQL, SQLite.

Expiry is enforced on read (rows past ``expires_at`` are invisible) and
expired rows are swept whenever keys are listed.
"""
from __future__ import annotations

import time
import structlog
from typing import Callable, Optional

from sqlalchemy import delete, or_, select

from database.models import KVEntryRow
from database.session import Database
from database.store_base import BaseKVStore

logger = structlog.get_logger()


class SqlKVStore(BaseKVStore):
    """
    Persistent KV store backed by any SQLAlchemy-supported database.
    Works with PostgreSQL, MySQL 8+, and SQLite.
    """

    def __init__(self, database: Database, namespace: str = "default",
                 clock: Callable[[], float] = None):
        super().__init__(namespace)
        self._db = database
        self._clock = clock or time.time

    async def init(self) -> None:
        await self._db.init()

    def _live(self):
        return or_(KVEntryRow.expires_at.is_(None), KVEntryRow.expires_at > self._clock())

    async def get(self, key: str) -> Optional[str]:
        async with self._db.session() as db:
            stmt = select(KVEntryRow.value).where(
                KVEntryRow.namespace == self.namespace,
                KVEntryRow.key == key,
                self._live(),
            )
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        async with self._db.session() as db:
            # delete + insert rather than update so the row gets a fresh id
            await db.execute(
                delete(KVEntryRow).where(
                    KVEntryRow.namespace == self.namespace,
                    KVEntryRow.key == key,
                )
            )
            db.add(KVEntryRow(
                namespace=self.namespace, key=key,
                value=value, expires_at=expires_at,
            ))

    async def delete(self, key: str) -> None:
        async with self._db.session() as db:
            await db.execute(
                delete(KVEntryRow).where(
                    KVEntryRow.namespace == self.namespace,
                    KVEntryRow.key == key,
                )
            )

    async def list_keys(self, prefix: str = "") -> list[str]:
        async with self._db.session() as db:
            swept = await db.execute(
                delete(KVEntryRow).where(
                    KVEntryRow.namespace == self.namespace,
                    KVEntryRow.expires_at.is_not(None),
                    KVEntryRow.expires_at <= self._clock(),
                )
            )
            if swept.rowcount:
                logger.debug("sql_store_expired_swept",
                             namespace=self.namespace, count=swept.rowcount)

            stmt = select(KVEntryRow.key).where(KVEntryRow.namespace == self.namespace)
            if prefix:
                stmt = stmt.where(KVEntryRow.key.startswith(prefix, autoescape=True))
            stmt = stmt.order_by(KVEntryRow.id)
            result = await db.execute(stmt)
            return list(result.scalars())
