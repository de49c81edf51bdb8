"""
FileKVStore — JSON file-backed store with persistence across restarts.

Data layout:
  {data_dir}/
    {namespace}.json     — [[key, value, expires_at], ...] in insertion order

Features:
  - Survives process restarts (unlike InMemoryKVStore)
  - No external dependencies (no database server, no Redis)
  - Writes are flushed on every mutation, or batched with flush_interval_s
  - Single-process only (no concurrent write safety)

Best for: small deployments, demos, edge devices.
"""
from __future__ import annotations

import asyncio
import json
import structlog
from pathlib import Path
from typing import Callable, Optional

from database.store_memory import InMemoryKVStore

logger = structlog.get_logger()


class FileKVStore(InMemoryKVStore):
    """
    Extends InMemoryKVStore with JSON file persistence.

    On init: loads the namespace file into memory.
    On every write: flushes the namespace to disk.

    For higher write throughput, set flush_interval_s > 0 to batch writes.
    """

    def __init__(
        self,
        namespace: str = "default",
        data_dir: str = "./data",
        flush_interval_s: float = 0,
        clock: Callable[[], float] = None,
    ):
        super().__init__(namespace, clock=clock)
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._flush_interval = flush_interval_s
        self._dirty = False
        self._flush_task: Optional[asyncio.Task] = None
        self._load()
        logger.info("file_store_initialized",
                    namespace=namespace, data_dir=str(self._data_dir))

    # ── Load / Save ───────────────────────────────────────

    @property
    def file_path(self) -> Path:
        return self._data_dir / f"{self.namespace}.json"

    def _load(self):
        path = self.file_path
        if not path.exists():
            return
        try:
            with open(path, "r") as f:
                rows = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("file_store_load_error", namespace=self.namespace, error=str(e))
            return

        if not isinstance(rows, list):
            logger.warning("file_store_load_error",
                           namespace=self.namespace, error="expected a list of entries")
            return
        for row in rows:
            if not (isinstance(row, list) and len(row) == 3 and isinstance(row[0], str)):
                continue
            key, value, expires_at = row
            self._entries[key] = (str(value), expires_at)
        expired = self._purge_expired()
        logger.debug("file_store_loaded",
                     namespace=self.namespace,
                     records=len(self._entries),
                     expired=len(expired))

    def _flush(self):
        """Write the namespace to disk."""
        path = self.file_path
        rows = [[key, value, expires_at] for key, (value, expires_at) in self._entries.items()]
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(rows, f, indent=2)
        tmp_path.replace(path)  # atomic on POSIX

    def _mark_dirty(self):
        if self._flush_interval <= 0:
            self._flush()
            return
        self._dirty = True
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(self._deferred_flush())

    async def _deferred_flush(self):
        """Batch flush after interval."""
        await asyncio.sleep(self._flush_interval)
        if self._dirty:
            self._dirty = False
            self._flush()

    def flush_all(self):
        """Force flush to disk."""
        self._dirty = False
        self._flush()
        logger.info("file_store_flushed", namespace=self.namespace)

    # ── Override write methods to trigger persistence ──────

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        await super().put(key, value, ttl_seconds)
        self._mark_dirty()

    async def delete(self, key: str) -> None:
        existed = key in self._entries
        await super().delete(key)
        if existed:
            self._mark_dirty()

    async def close(self) -> None:
        if self._flush_task and not self._flush_task.done():
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
        if self._dirty:
            self.flush_all()
