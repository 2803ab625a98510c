"""Job API schemas."""

from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from app.schemas.common import PageMeta


class EnqueueJobRequest(BaseModel):
    """Request body for POST /jobs."""

    type: str = Field(..., description="Job type, e.g. blog_autopublish")
    payload: dict[str, Any] = Field(default_factory=dict, description="Type-specific payload")
    priority: Union[int, str] = Field(
        default=50,
        description="0 (low) to 100 (critical), or one of low, normal, high, critical",
    )


class JobResponse(BaseModel):
    id: str
    type: str
    status: str
    payload: dict[str, Any]
    priority: int
    step: Optional[str] = None
    result: dict[str, Any] = Field(default_factory=dict)
    fingerprint: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None
    cancel_requested: bool = False
    locked_by: Optional[str] = None
    created_at: str
    updated_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class JobListResponse(PageMeta):
    data: list[JobResponse]


class RunJobsRequest(BaseModel):
    limit: int = Field(default=5, description="Max jobs to run inline (1-50)")


class RunJobsResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    skipped: int
    details: list[dict[str, Any]]
