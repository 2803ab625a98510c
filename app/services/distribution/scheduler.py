"""Scheduled distribution poller.

Wakes up every ``scheduled_poll_interval_s`` and dispatches SCHEDULED records
whose time has come. Each tick first fails IN_PROGRESS records whose dispatch
never reported back. Old finished records are pruned once per hour.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog

from app.services.distribution.service import DistributionService

logger = structlog.get_logger(__name__)

CLEANUP_INTERVAL_S = 3600.0


@dataclass
class SchedulerHealth:
    """Health status for the scheduler."""

    running: bool = False
    last_run_at: Optional[datetime] = None
    last_run: dict[str, int] = field(default_factory=dict)
    poll_interval_s: float = 60.0

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run": self.last_run,
            "poll_interval_s": self.poll_interval_s,
        }


class ScheduledDistributionPoller:
    """Background task that drives ``DistributionService.process_scheduled``."""

    def __init__(self, service: DistributionService, poll_interval_s: float = 60.0):
        self._service = service
        self._poll_interval_s = poll_interval_s
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._running = False
        self._last_run_at: Optional[datetime] = None
        self._last_run: dict[str, int] = {}
        self._last_cleanup = 0.0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("scheduler_already_running")
            return
        logger.info("scheduler_started", poll_interval_s=self._poll_interval_s)
        self._stop_event.clear()
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self, timeout: float = 30.0) -> None:
        if not self._running:
            return
        self._stop_event.set()
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("scheduler_stop_timeout")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
        self._running = False
        logger.info("scheduler_stopped")

    async def run_once(self) -> dict[str, int]:
        """Run a single tick (also used by the manual trigger route)."""
        summary = await self._service.process_scheduled()
        self._last_run_at = datetime.now(timezone.utc)
        self._last_run = summary
        return summary

    def get_health(self) -> SchedulerHealth:
        return SchedulerHealth(
            running=self._running,
            last_run_at=self._last_run_at,
            last_run=dict(self._last_run),
            poll_interval_s=self._poll_interval_s,
        )

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self._service.reap_stale_distributions()
                await self.run_once()
                if time.monotonic() - self._last_cleanup >= CLEANUP_INTERVAL_S:
                    await self._service.cleanup_old_records()
                    self._last_cleanup = time.monotonic()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("scheduler_tick_failed", error=str(e))

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._poll_interval_s
                )
            except asyncio.TimeoutError:
                pass
