"""Tests for the background executor used by the webhook."""
import asyncio

import pytest

from job_queue.background import BackgroundExecutor


class TestBackgroundExecutor:
    @pytest.mark.asyncio
    async def test_runs_submitted_work(self):
        executor = BackgroundExecutor()
        done = []

        async def work():
            done.append(1)

        executor.submit(work(), name="work")
        assert await executor.drain(timeout=1)
        assert done == [1]
        assert executor.completed == 1
        assert executor.pending == 0

    @pytest.mark.asyncio
    async def test_failure_is_counted_not_raised(self):
        executor = BackgroundExecutor()

        async def boom():
            raise ValueError("boom")

        executor.submit(boom())
        assert await executor.drain(timeout=1)
        assert executor.failed == 1

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        executor = BackgroundExecutor(concurrency=2)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        for _ in range(6):
            executor.submit(work())
        await executor.drain(timeout=1)
        assert peak == 2

    @pytest.mark.asyncio
    async def test_shutdown_waits_then_rejects(self):
        executor = BackgroundExecutor()
        done = []

        async def slow():
            await asyncio.sleep(0.02)
            done.append(1)

        executor.submit(slow())
        await executor.shutdown(timeout=1)
        assert done == [1]

        async def late():
            pass

        with pytest.raises(RuntimeError):
            executor.submit(late())

    @pytest.mark.asyncio
    async def test_shutdown_cancels_stragglers(self):
        executor = BackgroundExecutor()

        async def forever():
            await asyncio.sleep(10)

        task = executor.submit(forever())
        await executor.shutdown(timeout=0.01)
        assert task.cancelled()
