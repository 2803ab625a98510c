"""API routers."""

from app.routers import distribution, health, jobs

__all__ = ["distribution", "health", "jobs"]
