"""Shared fixtures for unit tests.

Everything here is built over the in-memory stores, with a controllable
clock for breakers and rate limiters and a fake connector in place of the
platform APIs.
"""

import asyncio
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

import app.jobs.workflows  # noqa: F401  (registers workflow steps)

from app.jobs.queue import PriorityJobQueue
from app.jobs.registry import default_registry
from app.jobs.runner import JobRunner
from app.jobs.service import JobService
from app.repositories.memory import (
    InMemoryChannelStore,
    InMemoryDistributionStore,
    InMemoryJobStore,
    InMemoryPostSource,
)
from app.services.distribution.breaker import BreakerConfig
from app.services.distribution.connectors import Connector, ConnectorRegistry
from app.services.distribution.dispatcher import Dispatcher
from app.services.distribution.guards import ChannelGuardRegistry
from app.services.distribution.models import (
    Channel,
    DeliveryError,
    DeliveryResult,
    SocialPlatform,
)
from app.services.distribution.service import DistributionService
from app.services.posts import PostData


BODY = " ".join(["Lorem ipsum dolor sit amet consectetur adipiscing elit."] * 10)


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnector(Connector):
    """Records every post; raises queued errors first, then ``fail_with``.

    ``delay`` holds each call open, for timeout and cancellation tests.
    """

    platform = SocialPlatform.WEBHOOK

    def __init__(self):
        super().__init__(timeout=1.0)
        self.calls: list[tuple[str, str]] = []
        self.errors: list[DeliveryError] = []
        self.fail_with: Optional[DeliveryError] = None
        self.valid = True
        self.delay = 0.0

    async def post(self, channel, message):
        self.calls.append((channel.id, message.text))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        if self.fail_with is not None:
            raise self.fail_with
        n = len(self.calls)
        return DeliveryResult(
            external_ref=f"ext-{n}", external_url=f"https://social.example/{n}"
        )

    async def validate_credentials(self, credentials):
        return self.valid


def build_post(post_id: str, **overrides) -> PostData:
    fields = {
        "id": post_id,
        "title": f"Post {post_id}",
        "slug": f"post-{post_id}",
        "excerpt": "A short summary of the post.",
        "content": BODY,
        "status": "scheduled",
        "tags": ["python", "asyncio"],
    }
    fields.update(overrides)
    return PostData(**fields)


def build_channel(channel_id: str, **overrides) -> Channel:
    fields = {
        "id": channel_id,
        "name": f"Channel {channel_id}",
        "platform": SocialPlatform.WEBHOOK,
        "credentials": {"webhook_url": "https://hooks.example/in"},
    }
    fields.update(overrides)
    return Channel(**fields)


@pytest.fixture
def make_post():
    return build_post


@pytest.fixture
def make_channel():
    return build_channel


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker_config():
    return BreakerConfig(
        failure_threshold=3,
        failure_window_s=60.0,
        cooldown_s=30.0,
        cooldown_max_s=120.0,
        backoff_multiplier=2.0,
    )


@pytest.fixture
def guards(breaker_config, clock):
    return ChannelGuardRegistry(breaker_config, rate_per_second=1.0, burst=5, clock=clock)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def dispatcher(guards, connector):
    connectors = ConnectorRegistry({p: connector for p in SocialPlatform})
    return Dispatcher(guards, connectors, timeout_s=1.0)


@pytest.fixture
def post_source():
    return InMemoryPostSource([build_post("p1"), build_post("p2")])


@pytest.fixture
def record_store():
    return InMemoryDistributionStore()


@pytest.fixture
def channel_store():
    return InMemoryChannelStore(
        [
            build_channel("ch-a"),
            build_channel("ch-b", platform=SocialPlatform.DISCORD),
            build_channel("ch-off", enabled=False),
        ]
    )


@pytest.fixture
def distribution_service(record_store, channel_store, post_source, dispatcher):
    return DistributionService(
        record_store,
        channel_store,
        post_source,
        dispatcher,
        max_retries=3,
        site_base_url="https://blog.example",
        utm_source=None,
    )


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def job_queue():
    return PriorityJobQueue()


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.enabled = True
    mock.send = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def job_runner(job_store, post_source, distribution_service, notifier):
    return JobRunner(
        job_store,
        default_registry,
        step_timeout_s=2.0,
        services={
            "posts": post_source,
            "distribution": distribution_service,
            "notifier": notifier,
        },
    )


@pytest.fixture
def job_service(job_store, job_queue, job_runner):
    return JobService(
        job_store,
        job_queue,
        job_runner,
        default_registry,
        dedupe_window_s=300,
        max_attempts=3,
    )
