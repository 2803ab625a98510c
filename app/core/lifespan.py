"""Application lifespan management - startup and shutdown logic."""

import traceback
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

import asyncpg
import structlog
from fastapi import FastAPI

import app.jobs.workflows  # noqa: F401  (registers workflow steps)
from app import __version__
from app.config import Settings, get_settings
from app.jobs.queue import PriorityJobQueue
from app.jobs.registry import default_registry
from app.jobs.runner import JobRunner
from app.jobs.service import JobService
from app.jobs.worker import WorkerRunner
from app.repositories.distributions import ChannelRepository, DistributionRepository
from app.repositories.jobs import JobRepository
from app.repositories.memory import (
    InMemoryChannelStore,
    InMemoryDistributionStore,
    InMemoryJobStore,
    InMemoryPostSource,
)
from app.repositories.posts import PostRepository
from app.services.distribution.connectors import ConnectorRegistry
from app.services.distribution.dispatcher import Dispatcher
from app.services.distribution.guards import ChannelGuardRegistry
from app.services.distribution.scheduler import ScheduledDistributionPoller
from app.services.distribution.service import DistributionService
from app.services.notifier import WebhookNotifier
from app.services.posts import PostSource, set_post_source

logger = structlog.get_logger(__name__)


@dataclass
class Engine:
    """Everything the lifespan builds, wired together."""

    queue: PriorityJobQueue
    jobs: JobService
    distribution: DistributionService
    worker: WorkerRunner
    scheduler: ScheduledDistributionPoller
    store_backend: str


# Global components - accessed by routers through the getters
_db_pool: Optional[asyncpg.Pool] = None
_engine: Optional[Engine] = None


def get_db_pool() -> Optional[asyncpg.Pool]:
    """Get the database connection pool."""
    return _db_pool


def get_engine() -> Optional[Engine]:
    """Get the wired engine (None before startup)."""
    return _engine


def set_engine(engine: Optional[Engine]) -> None:
    global _engine
    _engine = engine


async def _init_database(settings: Settings) -> Optional[asyncpg.Pool]:
    """Initialize asyncpg connection pool, or None for in-memory stores."""
    if not settings.database_url:
        logger.warning(
            "database_not_configured",
            hint="DATABASE_URL unset; using in-memory stores (state is lost on restart)",
        )
        return None

    try:
        pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            ssl="require" if settings.db_ssl else None,
            timeout=10,  # Connection timeout
            command_timeout=30,  # Query timeout
        )
        logger.info(
            "database_pool_initialized",
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )
        return pool
    except Exception as e:
        logger.error(
            "database_pool_failed",
            error=str(e),
            traceback=traceback.format_exc(),
        )
        raise


def build_engine(
    settings: Settings,
    pool: Optional[asyncpg.Pool] = None,
    post_source: Optional[PostSource] = None,
) -> Engine:
    """Wire stores, services, worker pool and scheduler from settings."""
    if pool is not None:
        job_store = JobRepository(pool)
        records = DistributionRepository(pool)
        channels = ChannelRepository(pool)
        posts = post_source or PostRepository(pool)
        backend = "postgres"
    else:
        job_store = InMemoryJobStore()
        records = InMemoryDistributionStore()
        channels = InMemoryChannelStore()
        posts = post_source or InMemoryPostSource()
        backend = "memory"
    set_post_source(posts)

    guards = ChannelGuardRegistry.from_settings(settings)
    dispatcher = Dispatcher(
        guards,
        ConnectorRegistry.default(timeout=settings.connector_timeout_s),
        timeout_s=settings.connector_timeout_s,
    )
    distribution = DistributionService(
        records,
        channels,
        posts,
        dispatcher,
        enabled=settings.distribution_enabled,
        max_retries=settings.distribution_max_retries,
        site_base_url=settings.site_url,
        utm_source=settings.utm_source,
        scheduled_batch_size=settings.scheduled_batch_size,
        retention_days=settings.retention_days,
        stale_timeout_minutes=settings.distribution_stale_timeout_minutes,
    )

    queue = PriorityJobQueue()
    runner = JobRunner(
        job_store,
        default_registry,
        step_timeout_s=settings.job_step_timeout_s,
        services={
            "posts": posts,
            "distribution": distribution,
            "notifier": WebhookNotifier(settings.notify_webhook_url),
        },
    )
    jobs = JobService(
        job_store,
        queue,
        runner,
        default_registry,
        dedupe_window_s=settings.job_dedupe_window_s,
        max_attempts=settings.job_max_attempts,
    )
    worker = WorkerRunner(
        job_store,
        queue,
        runner,
        concurrency=settings.job_worker_concurrency,
        poll_interval_s=settings.job_poll_interval_s,
        stale_timeout_minutes=settings.job_stale_timeout_minutes,
    )
    scheduler = ScheduledDistributionPoller(
        distribution, poll_interval_s=settings.scheduled_poll_interval_s
    )
    return Engine(
        queue=queue,
        jobs=jobs,
        distribution=distribution,
        worker=worker,
        scheduler=scheduler,
        store_backend=backend,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    global _db_pool, _engine

    settings = get_settings()
    logger.info(
        "service_starting",
        version=__version__,
        host=settings.service_host,
        port=settings.service_port,
        distribution_enabled=settings.distribution_enabled,
        workflows=[jt.value for jt in default_registry.job_types()],
    )

    _db_pool = await _init_database(settings)
    _engine = build_engine(settings, _db_pool)

    if settings.jobs_worker_enabled:
        await _engine.worker.start()
    else:
        logger.info("job_worker_disabled", hint="JOBS_WORKER_ENABLED=false")

    if settings.scheduler_enabled:
        await _engine.scheduler.start()
    else:
        logger.info("scheduler_disabled", hint="SCHEDULER_ENABLED=false")

    yield

    logger.info("service_stopping")

    # Stop background tasks before the pool closes
    await _engine.scheduler.stop()
    await _engine.worker.stop()
    set_post_source(None)
    _engine = None

    if _db_pool:
        await _db_pool.close()
        _db_pool = None
        logger.info("database_pool_closed")
