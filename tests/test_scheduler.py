"""
Tests for the debounce scheduler.

Tests cover:
- Delayed execution and debouncing
- Cancellation tokens
- Flush and run_now
- Shutdown
"""

import asyncio

import pytest

from recall.identity.scheduler import CancellationToken, Scheduler


# ==================== Scheduler Tests ====================

class TestScheduler:
    """Tests for keyed debounce timers."""

    @pytest.mark.asyncio
    async def test_runs_after_delay(self):
        """Test a job runs once its timer fires."""
        scheduler = Scheduler()
        ran = []

        scheduler.schedule("job", 0.01, lambda: ran.append("job"))
        assert scheduler.is_pending("job")
        await asyncio.sleep(0.1)

        assert ran == ["job"]
        assert not scheduler.is_pending("job")

    @pytest.mark.asyncio
    async def test_debounce_restarts_timer(self):
        """Test repeated scheduling runs the job once."""
        scheduler = Scheduler()
        ran = []

        for i in range(3):
            scheduler.schedule("job", 0.05, lambda i=i: ran.append(i))
        await asyncio.sleep(0.2)

        assert ran == [2]

    @pytest.mark.asyncio
    async def test_no_restart_keeps_deadline(self):
        """Test restart=False keeps the pending job."""
        scheduler = Scheduler()

        first = scheduler.schedule("job", 10, lambda: None)
        second = scheduler.schedule("job", 10, lambda: None, restart=False)

        assert second is first
        assert not first.token.cancelled
        scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_cancel(self):
        """Test cancelling a pending job."""
        scheduler = Scheduler()
        ran = []
        job = scheduler.schedule("job", 0.01, lambda: ran.append(1))

        assert scheduler.cancel("job")
        assert not scheduler.cancel("job")
        await asyncio.sleep(0.05)

        assert ran == []
        assert job.token.cancelled

    @pytest.mark.asyncio
    async def test_flush_runs_pending_in_order(self):
        """Test flush runs everything now."""
        scheduler = Scheduler()
        ran = []

        async def record(name):
            ran.append(name)

        scheduler.schedule("a", 10, lambda: record("a"))
        scheduler.schedule("b", 10, lambda: record("b"))

        count = await scheduler.flush()

        assert count == 2
        assert ran == ["a", "b"]
        assert len(scheduler) == 0

    @pytest.mark.asyncio
    async def test_flush_runs_follow_up_jobs(self):
        """Test jobs scheduled by flushed jobs also run."""
        scheduler = Scheduler()
        ran = []

        def first():
            ran.append("first")
            scheduler.schedule("second", 10, lambda: ran.append("second"))

        scheduler.schedule("first", 10, first)
        await scheduler.flush()

        assert ran == ["first", "second"]

    @pytest.mark.asyncio
    async def test_failing_job_does_not_stop_flush(self):
        """Test job errors are logged, not raised."""
        scheduler = Scheduler()
        ran = []

        def broken():
            raise ValueError("bad")

        scheduler.schedule("broken", 10, broken)
        scheduler.schedule("ok", 10, lambda: ran.append("ok"))

        await scheduler.flush()

        assert ran == ["ok"]

    @pytest.mark.asyncio
    async def test_flush_waits_for_running_job(self):
        """Test flush does not return while a fired job is still executing."""
        scheduler = Scheduler()
        done = []

        async def slow():
            await asyncio.sleep(0.05)
            done.append(True)

        scheduler.schedule("slow", 0, slow)
        await asyncio.sleep(0.01)
        await scheduler.flush()

        assert done == [True]

    @pytest.mark.asyncio
    async def test_run_now(self):
        """Test running a single job immediately."""
        scheduler = Scheduler()
        ran = []
        scheduler.schedule("a", 10, lambda: ran.append("a"))
        scheduler.schedule("b", 10, lambda: ran.append("b"))

        assert await scheduler.run_now("a")
        assert not await scheduler.run_now("missing")

        assert ran == ["a"]
        assert scheduler.pending_keys == ["b"]
        scheduler.cancel_all()

    @pytest.mark.asyncio
    async def test_shutdown(self):
        """Test shutdown with and without flushing."""
        flushed = Scheduler()
        dropped = Scheduler()
        ran = []
        flushed.schedule("a", 10, lambda: ran.append("a"))
        dropped.schedule("b", 10, lambda: ran.append("b"))

        await flushed.shutdown()
        await dropped.shutdown(flush=False)

        assert ran == ["a"]
        assert flushed.schedule("c", 0, lambda: None) is None

        flushed.reopen()
        assert flushed.schedule("c", 10, lambda: None) is not None
        flushed.cancel_all()


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_cancel(self):
        """Test the token flag."""
        token = CancellationToken()
        assert not token.cancelled

        token.cancel()

        assert token.cancelled
