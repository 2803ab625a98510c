"""FastAPI dependencies."""

from app.deps.security import require_admin_token, verify_admin_token
from app.deps.services import (
    get_distribution_service,
    get_job_service,
    get_scheduler,
)

__all__ = [
    "require_admin_token",
    "verify_admin_token",
    "get_job_service",
    "get_distribution_service",
    "get_scheduler",
]
