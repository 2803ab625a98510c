"""Job system type definitions."""

from enum import Enum, IntEnum


class JobType(str, Enum):
    """Workflow job types."""

    BLOG_AUTOPUBLISH = "blog_autopublish"
    DISTRIBUTION = "distribution"
    SEO_PLANNER = "seo_planner"


class JobStatus(str, Enum):
    """Job lifecycle statuses."""

    PENDING = "pending"
    RUNNING = "running"
    STEP_COMPLETE = "step_complete"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (job won't change without a retry)."""
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)

    @property
    def is_open(self) -> bool:
        """Open jobs block duplicate submissions."""
        return not self.is_terminal

    @property
    def is_claimable(self) -> bool:
        """A worker may pick this job up."""
        return self in (JobStatus.PENDING, JobStatus.STEP_COMPLETE)


OPEN_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.STEP_COMPLETE)
CLAIMABLE_STATUSES = (JobStatus.PENDING, JobStatus.STEP_COMPLETE)


class JobPriority(IntEnum):
    """Named priority levels. Higher is served first; any value in 0-100 is valid."""

    LOW = 0
    NORMAL = 50
    HIGH = 75
    CRITICAL = 100
