"""Tests for the scheduled distribution poller."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.distribution.scheduler import ScheduledDistributionPoller


def _service(summary=None):
    service = MagicMock()
    service.process_scheduled = AsyncMock(
        return_value=summary or {"processed": 1, "succeeded": 1, "failed": 0, "skipped": 0}
    )
    service.cleanup_old_records = AsyncMock(return_value=0)
    service.reap_stale_distributions = AsyncMock(return_value=[])
    return service


class TestScheduledDistributionPoller:
    def test_initial_health(self):
        poller = ScheduledDistributionPoller(_service(), poll_interval_s=15.0)

        health = poller.get_health().to_dict()

        assert health == {
            "running": False,
            "last_run_at": None,
            "last_run": {},
            "poll_interval_s": 15.0,
        }

    @pytest.mark.asyncio
    async def test_run_once_records_summary(self):
        service = _service()
        poller = ScheduledDistributionPoller(service)

        summary = await poller.run_once()

        assert summary["processed"] == 1
        health = poller.get_health()
        assert health.last_run == summary
        assert health.last_run_at is not None

    @pytest.mark.asyncio
    async def test_start_stop(self):
        service = _service()
        poller = ScheduledDistributionPoller(service, poll_interval_s=0.01)

        await poller.start()
        assert poller.is_running
        await asyncio.sleep(0.05)
        await poller.stop(timeout=1.0)

        assert not poller.is_running
        assert service.process_scheduled.await_count >= 1
        # First tick also prunes old records
        service.cleanup_old_records.assert_awaited_once()
        assert service.reap_stale_distributions.await_count >= 1

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self):
        poller = ScheduledDistributionPoller(_service(), poll_interval_s=0.01)
        await poller.start()
        task = poller._task
        try:
            await poller.start()
            assert poller._task is task
        finally:
            await poller.stop(timeout=1.0)

    @pytest.mark.asyncio
    async def test_tick_errors_do_not_stop_loop(self):
        service = _service()
        service.process_scheduled.side_effect = [
            RuntimeError("db down"),
            {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0},
            {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0},
            {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0},
            {"processed": 0, "succeeded": 0, "failed": 0, "skipped": 0},
        ]
        poller = ScheduledDistributionPoller(service, poll_interval_s=0.01)

        await poller.start()
        await asyncio.sleep(0.03)
        await poller.stop(timeout=1.0)

        assert service.process_scheduled.await_count >= 2

    @pytest.mark.asyncio
    async def test_processes_real_service(self, distribution_service, connector):
        await distribution_service.bulk_distribute(
            ["p1"],
            ["ch-a"],
            scheduled_at=datetime.now(timezone.utc) + timedelta(milliseconds=50),
        )
        poller = ScheduledDistributionPoller(distribution_service)
        await asyncio.sleep(0.1)

        summary = await poller.run_once()

        assert summary["succeeded"] == 1
        assert len(connector.calls) == 1
