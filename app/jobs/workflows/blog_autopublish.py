"""Blog auto-publish workflow: select -> validate -> publish -> notify.

Picks posts matching the payload criteria (scheduled posts by default),
checks each is ready to go live, publishes the ready ones through the
post source, hands them to every auto-publish distribution channel and
announces the result on the notify webhook.
"""

from datetime import datetime, timezone
from typing import Any

import structlog

from app.core.errors import EngineError
from app.jobs.definitions import BlogAutopublishPayload
from app.jobs.models import Job, StepResult
from app.jobs.registry import StepContext, default_registry
from app.jobs.types import JobType
from app.services.notifier import NotificationError
from app.services.posts import PostData, PostSource

logger = structlog.get_logger(__name__)

MIN_CONTENT_WORDS = 50


def readiness_problems(post: PostData, now: datetime) -> list[str]:
    """Reasons a post cannot be published yet (empty when ready)."""
    problems = []
    if post.is_published:
        problems.append("already published")
    if not post.title.strip():
        problems.append("missing title")
    if not post.slug.strip():
        problems.append("missing slug")
    if len(post.content.split()) < MIN_CONTENT_WORDS:
        problems.append(f"content shorter than {MIN_CONTENT_WORDS} words")
    if post.scheduled_for is not None and post.scheduled_for > now:
        problems.append("scheduled in the future")
    return problems


@default_registry.step(JobType.BLOG_AUTOPUBLISH, "select")
async def select(job: Job, ctx: StepContext) -> StepResult:
    payload: BlogAutopublishPayload = ctx.payload
    posts: PostSource = ctx.service("posts")
    criteria = payload.criteria

    if payload.post_id is not None:
        post_ids = [payload.post_id]
    else:
        found = await posts.find_posts(
            criteria.status, tag=criteria.tag, limit=criteria.limit
        )
        post_ids = [p.id for p in found]
    logger.info("autopublish_selected", job_id=str(job.id), count=len(post_ids))
    return StepResult.ok({"post_ids": post_ids, "count": len(post_ids)}, next_step="validate")


@default_registry.step(JobType.BLOG_AUTOPUBLISH, "validate")
async def validate(job: Job, ctx: StepContext) -> StepResult:
    posts: PostSource = ctx.service("posts")
    now = datetime.now(timezone.utc)

    ready: list[str] = []
    rejected: list[dict[str, Any]] = []
    for post_id in ctx.results.get("select", {}).get("post_ids", []):
        post = await posts.get_post(post_id)
        if post is None:
            rejected.append({"post_id": post_id, "reasons": ["not found"]})
            continue
        problems = readiness_problems(post, now)
        if problems:
            rejected.append({"post_id": post_id, "reasons": problems})
        else:
            ready.append(post_id)

    return StepResult.ok({"ready": ready, "rejected": rejected}, next_step="publish")


@default_registry.step(JobType.BLOG_AUTOPUBLISH, "publish")
async def publish(job: Job, ctx: StepContext) -> StepResult:
    payload: BlogAutopublishPayload = ctx.payload
    ready = ctx.results.get("validate", {}).get("ready", [])

    if payload.dry_run:
        return StepResult.ok(
            {"published": [], "would_publish": ready, "dry_run": True},
            next_step="notify",
        )

    posts: PostSource = ctx.service("posts")
    published: list[dict[str, Any]] = []
    failed: list[str] = []
    for post_id in ready:
        post = await posts.publish_post(post_id)
        if post is None:
            failed.append(post_id)
            continue
        published.append({"post_id": post.id, "slug": post.slug, "url": post.published_url})

    if ready and not published:
        return StepResult.fail(f"Failed to publish all {len(ready)} ready posts")

    logger.info(
        "autopublish_published",
        job_id=str(job.id),
        published=len(published),
        failed=len(failed),
    )
    distributed = await _auto_distribute(job, ctx, [p["post_id"] for p in published])
    return StepResult.ok(
        {"published": published, "failed": failed, "distributed": distributed},
        next_step="notify",
    )


async def _auto_distribute(
    job: Job, ctx: StepContext, post_ids: list[str]
) -> list[dict[str, Any]]:
    """Queue deliveries to auto-publish channels. Never fails the step."""
    distribution = ctx.services.get("distribution")
    if distribution is None:
        return []

    summary = []
    for post_id in post_ids:
        try:
            result = await distribution.auto_distribute(post_id)
        except EngineError as e:
            # The post is live; a distribution problem is reported, not fatal
            logger.warning(
                "autopublish_distribute_failed",
                job_id=str(job.id),
                post_id=post_id,
                error=e.message,
            )
            summary.append({"post_id": post_id, "error": e.message})
            continue
        if result is not None:
            summary.append(
                {
                    "post_id": post_id,
                    "records": [
                        {"channel_id": r.channel_id, "status": r.status.value}
                        for r in result.created
                    ],
                    "errors": result.errors,
                }
            )
    return summary


@default_registry.step(JobType.BLOG_AUTOPUBLISH, "notify")
async def notify(job: Job, ctx: StepContext) -> StepResult:
    published = ctx.results.get("publish", {}).get("published", [])
    notifier = ctx.services.get("notifier")

    if not published or notifier is None or not notifier.enabled:
        return StepResult.ok({"notified": False, "count": len(published)})

    try:
        await notifier.send(
            "posts_published", {"job_id": str(job.id), "posts": published}
        )
    except NotificationError as e:
        # Posts are live; a missed announcement does not fail the job
        logger.warning("autopublish_notify_failed", job_id=str(job.id), error=str(e))
        return StepResult.ok(
            {"notified": False, "count": len(published), "error": str(e)}
        )

    return StepResult.ok({"notified": True, "count": len(published)})
