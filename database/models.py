"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, MySQL 8+, SQLite.

Key design decisions:
  - One table for every namespace; (namespace, key) is unique.
  - Auto-increment ``id`` records insertion order, which the listing
    operation relies on. Re-writing a key deletes and re-inserts the row so
    it moves to the end of that order.
  - ``expires_at`` is an epoch timestamp in seconds (float) so expiry checks
    are plain numeric comparisons on every dialect.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy import Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


class KVEntryRow(Base):
    __tablename__ = "kv_entries"
    __table_args__ = (
        UniqueConstraint("namespace", "key", name="uq_kv_namespace_key"),
        Index("ix_kv_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    namespace: Mapped[str] = mapped_column(String(64), nullable=False)
    key: Mapped[str] = mapped_column(String(256), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
