"""Duplicate job detection.

A job's fingerprint is the SHA-256 of its type plus the canonical JSON of its
payload. While an open job (pending, running, step_complete) with the same
fingerprint exists inside the dedupe window, new submissions are rejected.

Check and reservation are single-flight per fingerprint: the caller creates
the job inside ``check_and_reserve`` while the fingerprint's lock is held, so
two concurrent identical submissions can never both pass the check.
"""

import asyncio
import hashlib
import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

import structlog

from app.core.errors import DuplicateJobError
from app.jobs.types import JobType
from app.repositories.store import JobStore

logger = structlog.get_logger(__name__)


def canonical_json(payload: dict[str, Any]) -> str:
    """Serialize with sorted keys and no whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_fingerprint(job_type: JobType, payload: dict[str, Any]) -> str:
    """SHA-256 hex digest over job type and canonical payload."""
    material = f"{job_type.value}:{canonical_json(payload)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class DedupeGuard:
    """Rejects duplicate submissions within a time window."""

    def __init__(self, store: JobStore, window_s: int = 300):
        self._store = store
        self.window_s = window_s
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def check_and_reserve(
        self, job_type: JobType, payload: dict[str, Any]
    ) -> AsyncIterator[str]:
        """Yield the fingerprint while holding its lock.

        Raises:
            DuplicateJobError: an open job with this fingerprint exists
                within the window
        """
        fingerprint = compute_fingerprint(job_type, payload)
        lock = self._locks.setdefault(fingerprint, asyncio.Lock())
        self._holders[fingerprint] = self._holders.get(fingerprint, 0) + 1
        try:
            async with lock:
                since = datetime.now(timezone.utc) - timedelta(seconds=self.window_s)
                existing = await self._store.find_open_by_fingerprint(fingerprint, since)
                if existing is not None:
                    logger.info(
                        "job_duplicate_rejected",
                        job_type=job_type.value,
                        existing_job_id=str(existing.id),
                        fingerprint=fingerprint[:16],
                    )
                    raise DuplicateJobError(str(existing.id), fingerprint)
                yield fingerprint
        finally:
            self._holders[fingerprint] -= 1
            if self._holders[fingerprint] == 0:
                del self._holders[fingerprint]
                self._locks.pop(fingerprint, None)
