"""
Debounce Scheduler

Keyed, cancellable timers for deferred engine work (extraction, reconciliation,
persistence notifications). Each job carries a CancellationToken. flush() runs
every pending job immediately and waits for jobs already executing, so ending
a session never silently drops scheduled work.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

JobCallback = Callable[[], Any]


class CancellationToken:
    """Cooperative cancellation flag shared between a job and its owner."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass
class ScheduledJob:
    key: str
    delay: float
    callback: JobCallback
    token: CancellationToken = field(default_factory=CancellationToken)
    created_at: datetime = field(default_factory=datetime.now)
    timer: Optional[asyncio.Task] = None


class Scheduler:
    """
    Keyed debounce timers on the running event loop.

    Scheduling a key that is already pending restarts its timer (debounce)
    unless restart=False, in which case the existing deadline is kept.
    """

    def __init__(self, name: str = "scheduler"):
        self.name = name
        self._jobs: dict[str, ScheduledJob] = {}
        self._executing: set[asyncio.Task] = set()
        self._closed = False

    def schedule(
        self,
        key: str,
        delay: float,
        callback: JobCallback,
        restart: bool = True,
    ) -> Optional[ScheduledJob]:
        if self._closed:
            logger.debug("Scheduler closed, job dropped", scheduler=self.name, key=key)
            return None

        existing = self._jobs.get(key)
        if existing is not None:
            if not restart:
                return existing
            self._cancel_job(existing)

        job = ScheduledJob(key=key, delay=max(0.0, delay), callback=callback)
        job.timer = asyncio.create_task(self._run_after(job))
        self._jobs[key] = job
        return job

    def cancel(self, key: str) -> bool:
        job = self._jobs.pop(key, None)
        if job is None:
            return False
        self._cancel_job(job)
        return True

    def cancel_all(self) -> int:
        jobs = list(self._jobs.values())
        self._jobs.clear()
        for job in jobs:
            self._cancel_job(job)
        return len(jobs)

    def is_pending(self, key: str) -> bool:
        return key in self._jobs

    @property
    def pending_keys(self) -> list[str]:
        return list(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    async def run_now(self, key: str) -> bool:
        """Run one pending job immediately instead of waiting for its timer."""
        job = self._jobs.pop(key, None)
        if job is None:
            return False
        if job.timer is not None:
            job.timer.cancel()
        await self._execute(job)
        return True

    async def flush(self) -> int:
        """Run every pending job now, in scheduling order. Returns the count run."""
        ran = 0
        # Jobs may schedule follow-up jobs; keep going until nothing is left
        while self._jobs:
            jobs = list(self._jobs.values())
            self._jobs.clear()
            for job in jobs:
                if job.timer is not None:
                    job.timer.cancel()
            for job in jobs:
                if job.token.cancelled:
                    continue
                await self._execute(job)
                ran += 1

        current = asyncio.current_task()
        in_flight = [t for t in self._executing if t is not current and not t.done()]
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)

        if ran:
            logger.debug("Scheduler flushed", scheduler=self.name, jobs=ran)
        return ran

    async def shutdown(self, flush: bool = True) -> None:
        if flush:
            await self.flush()
        else:
            self.cancel_all()
        self._closed = True

    def reopen(self) -> None:
        self._closed = False

    # ==================== Internals ====================

    async def _run_after(self, job: ScheduledJob) -> None:
        try:
            await asyncio.sleep(job.delay)
        except asyncio.CancelledError:
            return

        if job.token.cancelled or self._jobs.get(job.key) is not job:
            return
        del self._jobs[job.key]

        task = asyncio.current_task()
        if task is not None:
            self._executing.add(task)
        try:
            await self._execute(job)
        finally:
            if task is not None:
                self._executing.discard(task)

    async def _execute(self, job: ScheduledJob) -> None:
        try:
            result = job.callback()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error("Scheduled job failed", scheduler=self.name, key=job.key, error=str(e))

    @staticmethod
    def _cancel_job(job: ScheduledJob) -> None:
        job.token.cancel()
        if job.timer is not None and not job.timer.done():
            job.timer.cancel()
