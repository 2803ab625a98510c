"""Read/publish access to blog posts.

The CMS owns posts; the engine only needs a narrow view of them. Workflows and
the distribution pipeline talk to a ``PostSource`` and never to the CMS tables
directly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol


@dataclass
class PostData:
    """The distribution pipeline's view of a blog post."""

    id: str
    title: str
    slug: str
    excerpt: Optional[str] = None
    content: str = ""
    status: str = "draft"
    tags: list[str] = field(default_factory=list)
    published_url: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    published_at: Optional[datetime] = None

    @property
    def is_published(self) -> bool:
        return self.status == "published"


class PostSource(Protocol):
    """Protocol for post lookup and publishing."""

    async def get_post(self, post_id: str) -> Optional[PostData]:
        ...

    async def find_posts(
        self, status: str, tag: Optional[str] = None, limit: int = 20
    ) -> list[PostData]:
        ...

    async def publish_post(self, post_id: str) -> Optional[PostData]:
        ...


_post_source: Optional[PostSource] = None


def set_post_source(source: Optional[PostSource]) -> None:
    """Set the process-wide post source (called from lifespan)."""
    global _post_source
    _post_source = source


def get_post_source() -> Optional[PostSource]:
    return _post_source
