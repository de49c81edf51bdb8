"""
Job Queue — Work that outlives the request that created it.

- BackgroundExecutor: tracked fire-and-forget processing of webhook updates
- DeferredTaskScheduler: durable one-shot timers (e.g. delete a notice later)
- ActionExecutor: the closed set of effects a deferred task can run
"""
from job_queue.actions import ActionExecutor
from job_queue.background import BackgroundExecutor
from job_queue.scheduler import DeferredTaskScheduler, task_identity

__all__ = [
    "ActionExecutor", "BackgroundExecutor",
    "DeferredTaskScheduler", "task_identity",
]
