"""
Deferred Task Scheduler — Run one action once, after a delay.

Each task is addressed by an identity derived from ``(action, params)``, so
scheduling the same deletion twice targets the same instance and the later
request replaces the pending timer instead of adding a second one.

Per-identity lifecycle:

    Idle ──schedule──▶ Armed ──schedule──▶ Armed (new run_at)
                         │
                         └──wake──▶ dispatch ──finally──▶ Idle (state deleted)

Storage layout (namespace ``timers``):
  task:{identity}   → {"action": ..., "params": {...}}
  alarm:{identity}  → run_at in epoch milliseconds

Timers are asyncio tasks inside this process. The persisted records are the
source of truth: ``recover()`` re-arms every stored alarm after a restart, and
overdue ones fire straight away.

Execution is at-most-once per armed timer. A failing effect is logged, its
state is still cleared, and nothing is retried.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import time
import structlog
from typing import Any, Callable, Optional, Union

from database.store_base import BaseKVStore
from job_queue.actions import ActionExecutor
from models.schemas import ChatRef, DeferredAction, ScheduleResult, TaskRecord

logger = structlog.get_logger()

DEFAULT_DELAY_MS = 60000

TASK_PREFIX = "task:"
ALARM_PREFIX = "alarm:"


def task_identity(action: str, params: dict[str, Any]) -> str:
    """Stable identity for an (action, params) pair."""
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(f"{action}-{canonical}".encode()).hexdigest()[:32]


class DeferredTaskScheduler:
    """
    Usage:
        scheduler = DeferredTaskScheduler(stores.timers, ActionExecutor(gateway))
        await scheduler.recover()
        await scheduler.schedule_deletion(chat_id, message_id, delay_ms=10000)
        ...
        await scheduler.close()
    """

    def __init__(
        self,
        store: BaseKVStore,
        executor: ActionExecutor,
        default_delay_ms: int = DEFAULT_DELAY_MS,
        clock: Callable[[], float] = None,
    ):
        self._store = store
        self._executor = executor
        self.default_delay_ms = default_delay_ms
        self._clock = clock or time.time
        self._timers: dict[str, asyncio.Task] = {}
        self._firing: set[str] = set()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ── Public API ────────────────────────────────────────

    async def schedule(
        self,
        action: Union[DeferredAction, str],
        params: dict[str, Any],
        delay_ms: Optional[int] = None,
    ) -> ScheduleResult:
        """Persist the task and (re)arm its timer. Storage errors propagate."""
        action_name = action.value if isinstance(action, DeferredAction) else str(action)
        delay = self.default_delay_ms if delay_ms is None else max(0, int(delay_ms))
        identity = task_identity(action_name, params)
        run_at = self._now_ms() + delay

        record = TaskRecord(action=action_name, params=params)
        await self._store.put(TASK_PREFIX + identity, record.model_dump_json())
        await self._store.put(ALARM_PREFIX + identity, str(run_at))
        self._arm(identity, run_at)

        logger.info("deferred_task_scheduled",
                    identity=identity, action=action_name, delay_ms=delay, run_at=run_at)
        return ScheduleResult(identity=identity, run_at=run_at)

    async def schedule_deletion(
        self, chat_id: ChatRef, message_id: int, delay_ms: Optional[int] = None,
    ) -> ScheduleResult:
        return await self.schedule(
            DeferredAction.DELETE_MESSAGE,
            {"chat_id": chat_id, "message_id": message_id},
            delay_ms,
        )

    async def recover(self) -> int:
        """Re-arm every persisted alarm. Returns how many timers were armed."""
        armed = 0
        for key in await self._store.list_keys(ALARM_PREFIX):
            identity = key[len(ALARM_PREFIX):]
            run_at = _parse_run_at(await self._store.get(key))
            if run_at is None or await self._store.get(TASK_PREFIX + identity) is None:
                logger.warning("deferred_task_orphan_alarm", identity=identity)
                await self._store.delete(key)
                continue
            self._arm(identity, run_at)
            armed += 1
        logger.info("deferred_tasks_recovered", count=armed)
        return armed

    def pending(self) -> list[str]:
        """Identities with an armed in-process timer."""
        return [i for i, t in self._timers.items() if not t.done()]

    async def close(self) -> None:
        """Cancel in-process timers. Persisted state is kept for recover()."""
        timers = list(self._timers.values())
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._timers.clear()
        logger.info("deferred_scheduler_closed", cancelled=len(timers))

    # ── Timers ────────────────────────────────────────────

    def _arm(self, identity: str, run_at: int) -> None:
        previous = self._timers.get(identity)
        # a timer that is already dispatching runs to completion
        if (previous is not None and identity not in self._firing
                and previous is not asyncio.current_task()):
            previous.cancel()

        task = asyncio.get_running_loop().create_task(
            self._sleep_then_wake(identity, run_at),
            name=f"deferred:{identity}",
        )
        self._timers[identity] = task
        task.add_done_callback(lambda t, i=identity: self._forget(i, t))

    def _forget(self, identity: str, task: asyncio.Task) -> None:
        if self._timers.get(identity) is task:
            del self._timers[identity]

    async def _sleep_then_wake(self, identity: str, run_at: int) -> None:
        delay_s = max(0, run_at - self._now_ms()) / 1000
        await asyncio.sleep(delay_s)
        try:
            await self.wake(identity)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("deferred_task_wake_error", identity=identity, error=str(e))

    # ── Wake handling ─────────────────────────────────────

    async def wake(self, identity: str) -> None:
        """Run the task stored for ``identity`` if its alarm is due."""
        task_key = TASK_PREFIX + identity
        alarm_key = ALARM_PREFIX + identity

        raw = await self._store.get(task_key)
        if raw is None:
            logger.debug("deferred_task_absent", identity=identity)
            return

        alarm_raw = await self._store.get(alarm_key)
        run_at = _parse_run_at(alarm_raw)
        if run_at is not None and run_at > self._now_ms():
            # moved into the future by a later schedule()
            self._arm(identity, run_at)
            return

        self._firing.add(identity)
        try:
            record = TaskRecord.model_validate_json(raw)
            await self._executor.execute(record)
            logger.info("deferred_task_done", identity=identity, action=record.action)
        except Exception as e:
            logger.error("deferred_task_failed", identity=identity, error=str(e))
        finally:
            self._firing.discard(identity)
            await self._clear(identity, alarm_raw)

    async def _clear(self, identity: str, fired_alarm: Optional[str]) -> None:
        alarm_key = ALARM_PREFIX + identity
        try:
            current = await self._store.get(alarm_key)
            if current is not None and current != fired_alarm:
                # re-scheduled while dispatching; the new timer owns the state
                logger.info("deferred_task_rescheduled_during_run", identity=identity)
                return
            await self._store.delete(TASK_PREFIX + identity)
            await self._store.delete(alarm_key)
        except Exception as e:
            logger.error("deferred_task_cleanup_failed", identity=identity, error=str(e))


def _parse_run_at(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
