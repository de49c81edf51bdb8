"""
Background Executor — Run accepted work after the HTTP response is sent.

The webhook answers Telegram immediately and hands the update to this
executor. Every submitted coroutine is tracked until it finishes, concurrency
is bounded by a semaphore, failures are logged, and ``shutdown()`` waits for
outstanding work so nothing accepted is dropped when the process stops.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Coroutine, Optional

logger = structlog.get_logger()


class BackgroundExecutor:

    def __init__(self, concurrency: int = 16):
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._tasks: set[asyncio.Task] = set()
        self._accepting = True
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], name: str = "") -> asyncio.Task:
        """Schedule ``coro`` and return its task. Raises once shut down."""
        if not self._accepting:
            coro.close()
            raise RuntimeError("BackgroundExecutor is shut down")
        task = asyncio.get_running_loop().create_task(self._run(coro, name), name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        async with self._semaphore:
            try:
                await coro
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error("background_task_failed", task=name, error=str(e), exc_info=True)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for submitted work. Returns False if the timeout expired first."""
        if not self._tasks:
            return True
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not still_running

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop accepting work, wait for what is running, cancel stragglers."""
        self._accepting = False
        pending = self.pending
        finished = await self.drain(timeout)
        if not finished:
            stragglers = list(self._tasks)
            logger.warning("background_tasks_cancelled", count=len(stragglers))
            for task in stragglers:
                task.cancel()
            await asyncio.gather(*stragglers, return_exceptions=True)
        logger.info("background_executor_stopped",
                    drained=pending, completed=self.completed, failed=self.failed)
