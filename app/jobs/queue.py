"""In-process priority queue of runnable jobs.

Ordering: higher priority first, then oldest ``created_at`` first. Each job
type has its own heap so a worker can drain a subset of types; a global
dequeue takes the best head across partitions.

The queue holds references only. Workers claim the job through the store's
conditional update, so a stale or repeated entry is harmless: its claim
simply fails.
"""

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from app.jobs.models import Job
from app.jobs.types import JobType


@dataclass(order=True)
class QueueEntry:
    sort_key: tuple = field(compare=True)
    job_id: UUID = field(compare=False)
    job_type: JobType = field(compare=False)
    priority: int = field(compare=False)
    created_at: datetime = field(compare=False)


class PriorityJobQueue:
    """Priority queue partitioned by job type."""

    def __init__(self):
        self._heaps: dict[JobType, list[QueueEntry]] = {}
        self._removed: set[UUID] = set()
        self._seq = itertools.count()
        self._size = 0
        # Replaced on every enqueue; waiters re-check their types when it fires
        self._enqueued = asyncio.Event()

    def __len__(self) -> int:
        return self._size

    def enqueue(self, job: Job) -> None:
        """Add a job reference. No duplicate elimination."""
        entry = QueueEntry(
            sort_key=(-int(job.priority), job.created_at.timestamp(), next(self._seq)),
            job_id=job.id,
            job_type=job.type,
            priority=int(job.priority),
            created_at=job.created_at,
        )
        self._removed.discard(job.id)
        heapq.heappush(self._heaps.setdefault(job.type, []), entry)
        self._size += 1
        self._enqueued.set()
        self._enqueued = asyncio.Event()

    def remove(self, job_id: UUID) -> None:
        """Lazily drop every entry for a job (e.g. after cancel)."""
        self._removed.add(job_id)

    def _prune(self, heap: list[QueueEntry]) -> None:
        while heap and heap[0].job_id in self._removed:
            heapq.heappop(heap)
            self._size -= 1

    def peek(self, job_types: Optional[Iterable[JobType]] = None) -> Optional[QueueEntry]:
        best: Optional[QueueEntry] = None
        types = list(job_types) if job_types else list(self._heaps)
        for jt in types:
            heap = self._heaps.get(jt)
            if not heap:
                continue
            self._prune(heap)
            if heap and (best is None or heap[0] < best):
                best = heap[0]
        return best

    def dequeue_next(
        self, job_types: Optional[Iterable[JobType]] = None
    ) -> Optional[QueueEntry]:
        """Pop the highest-priority, oldest entry (optionally within types)."""
        best = self.peek(job_types)
        if best is None:
            return None
        heapq.heappop(self._heaps[best.job_type])
        self._size -= 1
        if self._size <= 0:
            self._removed.clear()
        return best

    async def wait(
        self,
        timeout: Optional[float] = None,
        job_types: Optional[Iterable[JobType]] = None,
    ) -> bool:
        """Wait until an entry of ``job_types`` (any type when None) is queued.

        Returns False on timeout. Entries of other types do not end the wait.
        """
        types = list(job_types) if job_types else None
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self.peek(types) is None:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            try:
                await asyncio.wait_for(self._enqueued.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return False
        return True
