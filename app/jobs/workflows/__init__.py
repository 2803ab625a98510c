"""Workflow step chains.

Importing this package registers every workflow with ``default_registry``.

Step contract:
    async def step(job: Job, ctx: StepContext) -> StepResult
        - job: the RUNNING job (payload, step, previous results)
        - ctx.payload: validated pydantic payload model
        - ctx.results: data returned by earlier steps, keyed by step name
        - ctx.service(name): collaborators wired by the lifespan
          ("posts", "distribution", "notifier")
"""

# Import workflows to trigger registration
from app.jobs.workflows import blog_autopublish  # noqa: F401
from app.jobs.workflows import distribution  # noqa: F401
from app.jobs.workflows import seo_planner  # noqa: F401

__all__ = ["blog_autopublish", "distribution", "seo_planner"]
