"""Health check endpoint."""

import time

import structlog
from fastapi import APIRouter

from app import __version__
from app.core.lifespan import get_db_pool, get_engine
from app.schemas import DependencyHealth, HealthResponse

router = APIRouter()
logger = structlog.get_logger(__name__)


async def check_database_health() -> DependencyHealth:
    """Check the Postgres pool, or report in-memory mode."""
    pool = get_db_pool()
    if pool is None:
        return DependencyHealth(status="memory")

    start = time.perf_counter()
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return DependencyHealth(
            status="ok", latency_ms=(time.perf_counter() - start) * 1000
        )
    except Exception as e:
        logger.warning("database_health_failed", error=str(e))
        return DependencyHealth(
            status="error",
            latency_ms=(time.perf_counter() - start) * 1000,
            error=str(e),
        )


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Service liveness and readiness.

    Returns 200 with status "degraded" when the database is unreachable or
    the engine has not started, so health checks can tell the two apart.
    """
    database = await check_database_health()
    engine = get_engine()

    degraded = engine is None or database.status == "error"
    return HealthResponse(
        status="degraded" if degraded else "ok",
        version=__version__,
        database=database,
        worker_running=bool(engine and engine.worker.is_running),
        scheduler_running=bool(engine and engine.scheduler.is_running),
        distribution_enabled=bool(engine and engine.distribution.is_enabled()),
        queue_depth=len(engine.queue) if engine else 0,
    )
