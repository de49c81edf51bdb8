"""
Abstract KV Store — Interface for all storage backends.

Implementations:
  - InMemoryKVStore (dict-based, single-process, no persistence)
  - FileKVStore     (JSON files on disk, single-process, durable)
  - SqlKVStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - RedisKVStore    (Redis, multi-process)

Every store is scoped to one namespace so that listing keys (used by the
correlation cleanup pass) only ever sees that namespace's entries. All
operations act on exactly one key; no backend offers multi-key transactions.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class BaseKVStore(ABC):
    """Interface that all KV store backends must implement."""

    def __init__(self, namespace: str = "default"):
        self.namespace = namespace

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the live value for key, or None if absent or expired."""
        ...

    @abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """
        Write a value. Writing an existing key replaces it and moves it to
        the end of the listing order.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a key. Deleting an absent key is not an error."""
        ...

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """Return live keys in insertion order (oldest first)."""
        ...

    async def init(self) -> None:
        """Prepare backend resources (tables, connections)."""
        pass

    async def close(self) -> None:
        pass
