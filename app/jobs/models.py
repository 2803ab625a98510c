"""Job system data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from app.jobs.types import JobPriority, JobStatus, JobType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """A unit of background work driven through a workflow."""

    id: UUID
    type: JobType
    status: JobStatus
    payload: dict[str, Any]
    priority: int = JobPriority.NORMAL

    # Workflow progress: current or last executed step
    step: Optional[str] = None
    result: dict[str, Any] = field(default_factory=dict)

    # Dedupe + retry handling
    fingerprint: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None
    cancel_requested: bool = False

    # Lock info
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None

    # Lifecycle timestamps
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "status": self.status.value,
            "payload": self.payload,
            "priority": int(self.priority),
            "step": self.step,
            "result": self.result,
            "fingerprint": self.fingerprint,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "cancel_requested": self.cancel_requested,
            "locked_by": self.locked_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }


@dataclass
class StepResult:
    """Outcome of a single workflow step."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    next_step: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(
        cls, data: Optional[dict[str, Any]] = None, next_step: Optional[str] = None
    ) -> "StepResult":
        return cls(success=True, data=data or {}, next_step=next_step)

    @classmethod
    def fail(cls, error: str, data: Optional[dict[str, Any]] = None) -> "StepResult":
        return cls(success=False, data=data or {}, error=error)


@dataclass
class BatchResult:
    """Summary of an inline processing batch."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "details": self.details,
        }
