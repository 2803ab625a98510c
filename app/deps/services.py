"""Service dependencies for FastAPI routes.

Routes depend on these rather than on lifespan globals so tests can swap
in services built over in-memory stores via ``app.dependency_overrides``.
"""

from fastapi import HTTPException, status

from app.core.lifespan import Engine, get_engine
from app.jobs.service import JobService
from app.services.distribution.scheduler import ScheduledDistributionPoller
from app.services.distribution.service import DistributionService


def _require_engine() -> Engine:
    engine = get_engine()
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return engine


def get_job_service() -> JobService:
    return _require_engine().jobs


def get_distribution_service() -> DistributionService:
    return _require_engine().distribution


def get_scheduler() -> ScheduledDistributionPoller:
    return _require_engine().scheduler
