"""
Database layer — Multi-backend key/value persistence.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - Redis (redis.asyncio, for multi-process deployments)

Quick start:
  from database import create_stores
  stores = create_stores(settings.database)
  await stores.init()
  await stores.relay.put("42", "1001_7", ttl_seconds=259200)
"""
from database.models import Base, KVEntryRow
from database.session import Database
from database.store_base import BaseKVStore
from database.store import SqlKVStore
from database.store_memory import InMemoryKVStore
from database.store_file import FileKVStore
from database.store_redis import RedisKVStore
from database.store_factory import (
    KVStores, create_store, create_stores,
    RELAY_NAMESPACE, CONFIG_NAMESPACE, TIMERS_NAMESPACE,
)

__all__ = [
    # ORM models
    "Base", "KVEntryRow",
    # Session management
    "Database",
    # Store interface
    "BaseKVStore",
    # Store backends
    "InMemoryKVStore", "FileKVStore", "SqlKVStore", "RedisKVStore",
    # Factory
    "KVStores", "create_store", "create_stores",
    "RELAY_NAMESPACE", "CONFIG_NAMESPACE", "TIMERS_NAMESPACE",
]
