"""Job worker pool - drains the priority queue and runs jobs."""

import asyncio
import os
import socket
import traceback
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from app import __version__
from app.jobs.queue import PriorityJobQueue
from app.jobs.runner import JobRunner
from app.jobs.types import JobType
from app.repositories.store import JobStore

logger = structlog.get_logger(__name__)


def generate_worker_id() -> str:
    """Generate a unique worker ID: hostname:pid."""
    return f"{socket.gethostname()}:{os.getpid()}"


class WorkerRunner:
    """Pool of asyncio tasks that claim and execute queued jobs."""

    def __init__(
        self,
        store: JobStore,
        queue: PriorityJobQueue,
        runner: JobRunner,
        concurrency: int = 2,
        poll_interval_s: float = 1.0,
        stale_timeout_minutes: int = 15,
        worker_id: Optional[str] = None,
        job_types: Optional[list[JobType]] = None,
        reap_interval_s: float = 60.0,
    ):
        self._store = store
        self._queue = queue
        self._runner = runner
        self._concurrency = concurrency
        self._poll_interval_s = poll_interval_s
        self._stale_timeout = timedelta(minutes=stale_timeout_minutes)
        self._worker_id = worker_id or generate_worker_id()
        self._job_types = job_types  # None = all types
        self._reap_interval_s = reap_interval_s
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Recover open jobs, then spawn the worker tasks."""
        if self._running:
            return
        self._running = True
        await self.recover()

        for i in range(self._concurrency):
            task_id = f"{self._worker_id}#{i}"
            self._tasks.append(asyncio.create_task(self._loop(task_id)))
        self._tasks.append(asyncio.create_task(self._reap_loop()))

        logger.info(
            "worker_started",
            worker_id=self._worker_id,
            version=__version__,
            concurrency=self._concurrency,
            job_types=[jt.value for jt in self._job_types] if self._job_types else "all",
        )

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop the worker loops. Jobs mid-step are left RUNNING for the reaper."""
        self._running = False
        if not self._tasks:
            return
        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        logger.info("worker_stopped", worker_id=self._worker_id)

    async def recover(self) -> int:
        """Reap stale RUNNING jobs and enqueue everything claimable."""
        await self.reap()
        jobs = await self._store.list_claimable()
        for job in jobs:
            if self._job_types is None or job.type in self._job_types:
                self._queue.enqueue(job)
        if jobs:
            logger.info("jobs_recovered", count=len(jobs))
        return len(jobs)

    async def reap(self) -> int:
        cutoff = datetime.now(timezone.utc) - self._stale_timeout
        reaped = await self._store.reap_stale(cutoff)
        for job in reaped:
            self._queue.enqueue(job)
        return len(reaped)

    async def _loop(self, task_id: str) -> None:
        while self._running:
            try:
                entry = self._queue.dequeue_next(self._job_types)
                if entry is None:
                    await self._queue.wait(self._poll_interval_s, self._job_types)
                    continue
                await self._runner.run_job(entry.job_id, task_id)

            except asyncio.CancelledError:
                logger.info("worker_cancelled", worker_id=task_id)
                raise
            except Exception as e:
                logger.error(
                    "worker_loop_error", error=str(e), traceback=traceback.format_exc()
                )
                await asyncio.sleep(self._poll_interval_s)

    async def _reap_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._reap_interval_s)
                if self._running:
                    await self.reap()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("worker_reap_failed", error=str(e))
