"""Record stores for the Pressroom engine."""

from app.repositories import distributions, jobs, memory, posts

__all__ = ["jobs", "distributions", "posts", "memory"]
