"""Post lookup against the CMS posts table (asyncpg)."""

from typing import Optional

import structlog

from app.services.posts import PostData

logger = structlog.get_logger(__name__)

POST_COLUMNS = """
    p.id, p.title, p.slug, p.excerpt, p.content, p.status,
    p.scheduled_for, p.published_at,
    COALESCE(
        (SELECT array_agg(t.name ORDER BY t.name)
         FROM post_tags pt JOIN tags t ON t.id = pt.tag_id
         WHERE pt.post_id = p.id),
        ARRAY[]::text[]
    ) AS tags
"""


class PostRepository:
    """PostSource over the CMS tables."""

    def __init__(self, pool):
        self._pool = pool

    async def get_post(self, post_id: str) -> Optional[PostData]:
        query = f"SELECT {POST_COLUMNS} FROM posts p WHERE p.id = $1"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, post_id)
        return self._row_to_post(row) if row else None

    async def find_posts(
        self, status: str, tag: Optional[str] = None, limit: int = 20
    ) -> list[PostData]:
        params: list = [status]
        tag_filter = ""
        if tag:
            params.append(tag)
            tag_filter = f"""
                AND EXISTS (
                    SELECT 1 FROM post_tags pt JOIN tags t ON t.id = pt.tag_id
                    WHERE pt.post_id = p.id AND t.name = ${len(params)}
                )
            """
        params.append(limit)
        query = f"""
            SELECT {POST_COLUMNS} FROM posts p
            WHERE p.status = $1
              AND (p.scheduled_for IS NULL OR p.scheduled_for <= now())
            {tag_filter}
            ORDER BY p.scheduled_for NULLS FIRST, p.id
            LIMIT ${len(params)}
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_post(row) for row in rows]

    async def publish_post(self, post_id: str) -> Optional[PostData]:
        query = """
            UPDATE posts SET status = 'published', published_at = now()
            WHERE id = $1
            RETURNING id
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, post_id)
        if not row:
            return None
        logger.info("post_published", post_id=post_id)
        return await self.get_post(post_id)

    def _row_to_post(self, row) -> PostData:
        return PostData(
            id=str(row["id"]),
            title=row["title"],
            slug=row["slug"],
            excerpt=row["excerpt"],
            content=row["content"] or "",
            status=row["status"],
            tags=list(row["tags"] or []),
            scheduled_for=row["scheduled_for"],
            published_at=row["published_at"],
        )
