"""Workflow step registry.

Each job type maps to an ordered chain of named async steps. Steps are plain
functions registered against a job type tag; the runner looks them up by name
and owns every status transition.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from app.jobs.models import Job, StepResult
from app.jobs.types import JobType


@dataclass
class StepContext:
    """What a step gets besides the job itself."""

    payload: Any
    results: dict[str, Any] = field(default_factory=dict)
    services: dict[str, Any] = field(default_factory=dict)
    worker_id: Optional[str] = None

    def service(self, name: str) -> Any:
        """Get a collaborator by name. Raises RuntimeError if not wired."""
        svc = self.services.get(name)
        if svc is None:
            raise RuntimeError(f"Service not configured for step: {name}")
        return svc


# Step signature: async def step(job: Job, ctx: StepContext) -> StepResult
StepFn = Callable[[Job, StepContext], Awaitable[StepResult]]


@dataclass(frozen=True)
class WorkflowStep:
    name: str
    fn: StepFn


class WorkflowRegistry:
    """Registry mapping job types to their ordered steps."""

    def __init__(self):
        self._steps: dict[JobType, list[WorkflowStep]] = {}

    def register(self, job_type: JobType, name: str, fn: StepFn) -> None:
        """Append a step to a job type's chain."""
        chain = self._steps.setdefault(job_type, [])
        if any(s.name == name for s in chain):
            raise ValueError(f"Step '{name}' already registered for {job_type.value}")
        chain.append(WorkflowStep(name=name, fn=fn))

    def step(self, job_type: JobType, name: str) -> Callable[[StepFn], StepFn]:
        """Decorator to register a step. Registration order is execution order."""

        def decorator(fn: StepFn) -> StepFn:
            self.register(job_type, name, fn)
            return fn

        return decorator

    def is_registered(self, job_type: JobType) -> bool:
        return bool(self._steps.get(job_type))

    def job_types(self) -> list[JobType]:
        return [jt for jt, chain in self._steps.items() if chain]

    def steps(self, job_type: JobType) -> list[WorkflowStep]:
        """Get the step chain for a job type. Raises KeyError if none registered."""
        chain = self._steps.get(job_type)
        if not chain:
            raise KeyError(f"No workflow registered for job type: {job_type}")
        return list(chain)

    def step_names(self, job_type: JobType) -> list[str]:
        return [s.name for s in self.steps(job_type)]

    def get_step(self, job_type: JobType, name: str) -> WorkflowStep:
        """Get a step by name. Raises KeyError if unknown."""
        for s in self.steps(job_type):
            if s.name == name:
                return s
        raise KeyError(f"Unknown step '{name}' for job type: {job_type.value}")

    def first_step(self, job_type: JobType) -> str:
        return self.steps(job_type)[0].name

    def next_step(self, job_type: JobType, name: str) -> Optional[str]:
        """Name of the step after ``name``, or None if it is the last one."""
        names = self.step_names(job_type)
        if name not in names:
            raise KeyError(f"Unknown step '{name}' for job type: {job_type.value}")
        idx = names.index(name)
        return names[idx + 1] if idx + 1 < len(names) else None


# Global registry instance
default_registry = WorkflowRegistry()
