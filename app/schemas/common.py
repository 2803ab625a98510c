"""Common schemas: error envelope, health checks, pagination."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ===========================================
# Health & Error
# ===========================================


class DependencyHealth(BaseModel):
    """Health status for a dependency."""

    status: str = Field(..., description="Dependency status (ok/error/memory)")
    latency_ms: Optional[float] = Field(None, description="Response latency in ms")
    error: Optional[str] = Field(None, description="Error message if unhealthy")


class HealthResponse(BaseModel):
    """Response for health endpoint."""

    status: str = Field(..., description="Overall service status (ok/degraded)")
    version: str = Field(..., description="Service version")
    database: DependencyHealth = Field(..., description="Record store health")
    worker_running: bool = Field(..., description="Job worker pool is running")
    scheduler_running: bool = Field(
        ..., description="Scheduled distribution poller is running"
    )
    distribution_enabled: bool = Field(..., description="Distribution kill switch state")
    queue_depth: int = Field(..., description="Jobs waiting in the in-process queue")


class ErrorDetail(BaseModel):
    """Body of the error envelope. Extra keys carry code-specific details."""

    model_config = ConfigDict(extra="allow")

    code: str = Field(..., description="Stable error code")
    message: str = Field(..., description="User-facing message")
    retryable: bool = Field(default=False, description="Whether error is retryable")


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = Field(default=False)
    error: ErrorDetail


# ===========================================
# Pagination
# ===========================================


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Validation error"},
    404: {"model": ErrorResponse, "description": "Not found"},
    409: {"model": ErrorResponse, "description": "Duplicate or invalid state"},
    503: {"model": ErrorResponse, "description": "Module disabled or circuit open"},
}
