"""Job system package."""

from app.jobs.types import JobPriority, JobStatus, JobType
from app.jobs.models import Job, StepResult
from app.jobs.registry import StepContext, WorkflowRegistry, default_registry

__all__ = [
    "JobType",
    "JobStatus",
    "JobPriority",
    "Job",
    "StepResult",
    "StepContext",
    "WorkflowRegistry",
    "default_registry",
]
