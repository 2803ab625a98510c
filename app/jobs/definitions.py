"""Job definitions: payload schemas and per-type limits."""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.core.errors import ValidationFailedError
from app.jobs.types import JobPriority, JobType

MIN_PRIORITY = 0
MAX_PRIORITY = 100


class PayloadModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class AutopublishCriteria(PayloadModel):
    status: str = Field(default="scheduled", description="Post status to select")
    tag: Optional[str] = Field(default=None, description="Only posts carrying this tag")
    limit: int = Field(default=20, ge=1, le=100)


class BlogAutopublishPayload(PayloadModel):
    post_id: Optional[str] = Field(
        default=None, min_length=1, alias="postId", description="Publish only this post"
    )
    criteria: AutopublishCriteria = Field(default_factory=AutopublishCriteria)
    dry_run: bool = Field(default=False, alias="dryRun")


class DistributionPayload(PayloadModel):
    post_id: str = Field(..., min_length=1, alias="postId")
    channel_ids: Optional[list[str]] = Field(default=None, alias="channels")
    message_override: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("channel_ids")
    @classmethod
    def _non_empty_channels(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is not None and not v:
            raise ValueError("channels must not be empty when provided")
        return v


class SeoPlannerPayload(PayloadModel):
    post_id: str = Field(..., min_length=1, alias="postId")
    url: Optional[str] = None
    target_keywords: list[str] = Field(
        default_factory=list, alias="targetKeywords", max_length=20
    )


JOB_PAYLOAD_SCHEMAS: dict[JobType, type[PayloadModel]] = {
    JobType.BLOG_AUTOPUBLISH: BlogAutopublishPayload,
    JobType.DISTRIBUTION: DistributionPayload,
    JobType.SEO_PLANNER: SeoPlannerPayload,
}


def parse_job_type(value: Any) -> JobType:
    """Coerce a raw value into a JobType. Raises ValidationFailedError."""
    if isinstance(value, JobType):
        return value
    try:
        return JobType(str(value).strip().lower().replace("-", "_"))
    except ValueError:
        allowed = ", ".join(jt.value for jt in JobType)
        raise ValidationFailedError(f"Unknown job type '{value}'. Allowed: {allowed}")


def validate_payload(job_type: JobType, payload: dict[str, Any]) -> PayloadModel:
    """Validate a raw payload against the job type's schema."""
    schema = JOB_PAYLOAD_SCHEMAS.get(job_type)
    if schema is None:
        raise ValidationFailedError(f"No payload schema for job type {job_type.value}")
    try:
        return schema.model_validate(payload or {})
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationFailedError(
            f"Invalid payload for {job_type.value}", errors=errors
        ) from e


def normalize_payload(job_type: JobType, payload: dict[str, Any]) -> dict[str, Any]:
    """Validated payload as a plain dict with defaults filled in."""
    return validate_payload(job_type, payload).model_dump(mode="json")


def validate_priority(priority: Union[int, str]) -> int:
    """Accept an integer in range or a named level (low, normal, high, critical)."""
    if isinstance(priority, str):
        name = priority.strip().upper()
        if name in JobPriority.__members__:
            return int(JobPriority[name])
        try:
            priority = int(name)
        except ValueError:
            allowed = ", ".join(p.name.lower() for p in JobPriority)
            raise ValidationFailedError(
                f"Unknown priority '{priority}'. Use {allowed} or an integer"
            )
    if not isinstance(priority, int) or isinstance(priority, bool):
        raise ValidationFailedError("priority must be an integer or a named level")
    if priority < MIN_PRIORITY or priority > MAX_PRIORITY:
        raise ValidationFailedError(
            f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}"
        )
    return int(priority)
