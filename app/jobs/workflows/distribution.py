"""Distribution workflow: select-targets -> format -> distribute -> verify."""

from typing import Any

import structlog

from app.core.errors import NotFoundError
from app.jobs.definitions import DistributionPayload
from app.jobs.models import Job, StepResult
from app.jobs.registry import StepContext, default_registry
from app.jobs.types import JobType
from app.services.distribution.models import DistributionStatus
from app.services.distribution.service import DistributionService
from app.services.posts import PostSource

logger = structlog.get_logger(__name__)


@default_registry.step(JobType.DISTRIBUTION, "select-targets")
async def select_targets(job: Job, ctx: StepContext) -> StepResult:
    payload: DistributionPayload = ctx.payload
    posts: PostSource = ctx.service("posts")
    distribution: DistributionService = ctx.service("distribution")

    post = await posts.get_post(payload.post_id)
    if post is None:
        return StepResult.fail(f"Post {payload.post_id} not found")

    if payload.channel_ids is None:
        channels = await distribution.list_channels(enabled_only=True)
        channel_ids = [c.id for c in channels]
        skipped: list[dict[str, str]] = []
    else:
        channel_ids, skipped = [], []
        for channel_id in payload.channel_ids:
            try:
                channel = await distribution.get_channel(channel_id)
            except NotFoundError:
                skipped.append({"channel_id": channel_id, "reason": "not found"})
                continue
            if not channel.enabled:
                skipped.append({"channel_id": channel_id, "reason": "disabled"})
            else:
                channel_ids.append(channel_id)

    if not channel_ids:
        return StepResult.fail("No enabled channels to distribute to")

    return StepResult.ok(
        {"post_id": post.id, "channel_ids": channel_ids, "skipped": skipped},
        next_step="format",
    )


@default_registry.step(JobType.DISTRIBUTION, "format")
async def format_messages(job: Job, ctx: StepContext) -> StepResult:
    payload: DistributionPayload = ctx.payload
    posts: PostSource = ctx.service("posts")
    distribution: DistributionService = ctx.service("distribution")

    post = await posts.get_post(payload.post_id)
    if post is None:
        return StepResult.fail(f"Post {payload.post_id} disappeared")

    previews: dict[str, Any] = {}
    for channel_id in ctx.results["select-targets"]["channel_ids"]:
        channel = await distribution.get_channel(channel_id)
        message = distribution.build_message_for(post, channel, payload.message_override)
        previews[channel_id] = {
            "platform": channel.platform.value,
            "length": len(message.text),
            "truncated": message.truncated,
        }

    return StepResult.ok({"messages": previews}, next_step="distribute")


@default_registry.step(JobType.DISTRIBUTION, "distribute")
async def distribute(job: Job, ctx: StepContext) -> StepResult:
    payload: DistributionPayload = ctx.payload
    distribution: DistributionService = ctx.service("distribution")

    result = await distribution.bulk_distribute(
        [payload.post_id],
        channel_ids=ctx.results["select-targets"]["channel_ids"],
        message_override=payload.message_override,
    )
    logger.info(
        "distribution_job_dispatched",
        job_id=str(job.id),
        created=len(result.created),
        skipped=len(result.skipped),
    )
    return StepResult.ok(
        {
            "record_ids": [str(r.id) for r in result.created],
            "skipped": result.skipped,
            "errors": result.errors,
        },
        next_step="verify",
    )


@default_registry.step(JobType.DISTRIBUTION, "verify")
async def verify(job: Job, ctx: StepContext) -> StepResult:
    distribution: DistributionService = ctx.service("distribution")
    payload: DistributionPayload = ctx.payload

    records = await distribution.get_post_distributions(payload.post_id)
    wanted = set(ctx.results["distribute"]["record_ids"])
    mine = [r for r in records if str(r.id) in wanted]

    summary = {
        "succeeded": sum(1 for r in mine if r.status == DistributionStatus.SUCCEEDED),
        "failed": sum(1 for r in mine if r.status == DistributionStatus.FAILED),
        "records": [
            {
                "id": str(r.id),
                "channel_id": r.channel_id,
                "status": r.status.value,
                "error_kind": r.error_kind.value if r.error_kind else None,
            }
            for r in mine
        ],
    }
    if mine and summary["failed"] == len(mine):
        return StepResult.fail(f"All {len(mine)} deliveries failed")
    return StepResult.ok(summary)
