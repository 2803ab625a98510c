"""Repositories for distribution records and channels (asyncpg)."""

import json
from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import UUID

import structlog

from app.repositories.store import (
    CHANNEL_MUTABLE_FIELDS,
    RECORD_MUTABLE_FIELDS,
    check_fields,
)
from app.services.distribution.models import (
    Channel,
    DeliveryErrorKind,
    DistributionFilter,
    DistributionRecord,
    DistributionStatus,
    SocialPlatform,
)

logger = structlog.get_logger(__name__)


def _load_json(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


class DistributionRepository:
    """Repository for distribution_records."""

    def __init__(self, pool):
        self._pool = pool

    async def create_if_absent(
        self, record: DistributionRecord
    ) -> Optional[DistributionRecord]:
        """Insert unless an open record exists for the same post and channel.

        Relies on the partial unique index
        ``distribution_records_open_pair_idx``.
        """
        query = """
            INSERT INTO distribution_records (
                id, post_id, channel_id, platform, status, content,
                scheduled_at, attempts, message_override, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $10)
            ON CONFLICT (post_id, channel_id)
                WHERE status IN ('scheduled', 'pending', 'in_progress')
            DO NOTHING
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                record.id,
                record.post_id,
                record.channel_id,
                record.platform.value,
                record.status.value,
                record.content,
                record.scheduled_at,
                record.attempts,
                record.message_override,
                record.created_at,
            )
        return self._row_to_record(row) if row else None

    async def get(self, record_id: UUID) -> Optional[DistributionRecord]:
        query = "SELECT * FROM distribution_records WHERE id = $1"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, record_id)
        return self._row_to_record(row) if row else None

    async def transition(
        self,
        record_id: UUID,
        expected: Sequence[DistributionStatus],
        **changes: Any,
    ) -> Optional[DistributionRecord]:
        """Conditional update on status. Returns None if it did not apply."""
        check_fields(changes, RECORD_MUTABLE_FIELDS)
        sets = ["updated_at = now()"]
        params: list[Any] = [record_id, [s.value for s in expected]]
        for key, value in changes.items():
            params.append(_enum_value(value))
            sets.append(f"{key} = ${len(params)}")

        query = f"""
            UPDATE distribution_records SET {", ".join(sets)}
            WHERE id = $1 AND status = ANY($2::text[])
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)
        return self._row_to_record(row) if row else None

    async def find_open(
        self, post_id: str, channel_id: str
    ) -> Optional[DistributionRecord]:
        query = """
            SELECT * FROM distribution_records
            WHERE post_id = $1 AND channel_id = $2
              AND status IN ('scheduled', 'pending', 'in_progress')
            LIMIT 1
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, post_id, channel_id)
        return self._row_to_record(row) if row else None

    async def list_records(
        self, filters: DistributionFilter
    ) -> tuple[list[DistributionRecord], int]:
        """Filtered page of records plus the total match count."""
        conditions = []
        params: list[Any] = []

        for column, value in (
            ("post_id", filters.post_id),
            ("channel_id", filters.channel_id),
            ("platform", _enum_value(filters.platform)),
            ("status", _enum_value(filters.status)),
        ):
            if value is not None:
                params.append(value)
                conditions.append(f"{column} = ${len(params)}")

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        direction = "ASC" if filters.sort_order == "asc" else "DESC"
        query = f"""
            SELECT * FROM distribution_records
            {where_clause}
            ORDER BY created_at {direction}
            LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """
        count_query = f"""
            SELECT COUNT(*) as total FROM distribution_records
            {where_clause}
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *params, filters.limit, filters.offset)
            count_row = await conn.fetchrow(count_query, *params)

        records = [self._row_to_record(row) for row in rows]
        total = count_row["total"] if count_row else 0
        return records, total

    async def list_for_post(self, post_id: str) -> list[DistributionRecord]:
        query = """
            SELECT * FROM distribution_records
            WHERE post_id = $1
            ORDER BY created_at DESC
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, post_id)
        return [self._row_to_record(row) for row in rows]

    async def list_due_scheduled(
        self, now: datetime, limit: int
    ) -> list[DistributionRecord]:
        query = """
            SELECT * FROM distribution_records
            WHERE status = 'scheduled' AND scheduled_at <= $1
            ORDER BY scheduled_at ASC
            LIMIT $2
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, now, limit)
        return [self._row_to_record(row) for row in rows]

    async def reap_stale_in_progress(
        self, updated_before: datetime, error: str
    ) -> list[DistributionRecord]:
        """Fail IN_PROGRESS records whose dispatch never reported back."""
        query = """
            UPDATE distribution_records SET
                status = 'failed',
                error_kind = 'transient_network',
                last_error = $2,
                updated_at = now()
            WHERE status = 'in_progress'
              AND updated_at < $1
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, updated_before, error)
        if rows:
            logger.warning("stale_distributions_reaped", count=len(rows))
        return [self._row_to_record(row) for row in rows]

    async def delete_finished_before(self, cutoff: datetime) -> int:
        query = """
            DELETE FROM distribution_records
            WHERE status IN ('succeeded', 'cancelled') AND updated_at < $1
            RETURNING id
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, cutoff)
        return len(rows)

    async def count_by_status(self) -> dict[str, int]:
        query = """
            SELECT status, COUNT(*) as total
            FROM distribution_records
            GROUP BY status
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query)
        counts = {s.value: 0 for s in DistributionStatus}
        for row in rows:
            counts[row["status"]] = row["total"]
        return counts

    def _row_to_record(self, row) -> DistributionRecord:
        return DistributionRecord(
            id=row["id"],
            post_id=row["post_id"],
            channel_id=row["channel_id"],
            platform=SocialPlatform(row["platform"]),
            status=DistributionStatus(row["status"]),
            content=row["content"] or "",
            scheduled_at=row["scheduled_at"],
            attempts=row["attempts"],
            last_error=row["last_error"],
            error_kind=(
                DeliveryErrorKind(row["error_kind"]) if row["error_kind"] else None
            ),
            external_ref=row["external_ref"],
            external_url=row["external_url"],
            message_override=row["message_override"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            published_at=row["published_at"],
        )


class ChannelRepository:
    """Repository for distribution_channels."""

    def __init__(self, pool):
        self._pool = pool

    async def create(self, channel: Channel) -> Channel:
        query = """
            INSERT INTO distribution_channels (
                id, name, platform, credentials, config, enabled, auto_publish,
                created_at, updated_at
            )
            VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6, $7, $8, $8)
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                channel.id,
                channel.name,
                channel.platform.value,
                json.dumps(channel.credentials),
                json.dumps(channel.config),
                channel.enabled,
                channel.auto_publish,
                channel.created_at,
            )
        logger.info("channel_created", channel_id=channel.id, platform=channel.platform.value)
        return self._row_to_channel(row)

    async def get(self, channel_id: str) -> Optional[Channel]:
        query = "SELECT * FROM distribution_channels WHERE id = $1"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, channel_id)
        return self._row_to_channel(row) if row else None

    async def update(self, channel_id: str, **changes: Any) -> Optional[Channel]:
        check_fields(changes, CHANNEL_MUTABLE_FIELDS)
        sets = ["updated_at = now()"]
        params: list[Any] = [channel_id]
        for key, value in changes.items():
            if key in ("credentials", "config"):
                params.append(json.dumps(value or {}))
                sets.append(f"{key} = ${len(params)}::jsonb")
            else:
                params.append(value)
                sets.append(f"{key} = ${len(params)}")
        query = f"""
            UPDATE distribution_channels SET {", ".join(sets)}
            WHERE id = $1
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)
        return self._row_to_channel(row) if row else None

    async def delete(self, channel_id: str) -> bool:
        query = "DELETE FROM distribution_channels WHERE id = $1 RETURNING id"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, channel_id)
        return row is not None

    async def list_channels(self, enabled_only: bool = False) -> list[Channel]:
        query = "SELECT * FROM distribution_channels"
        if enabled_only:
            query += " WHERE enabled"
        query += " ORDER BY created_at"
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query)
        return [self._row_to_channel(row) for row in rows]

    def _row_to_channel(self, row) -> Channel:
        return Channel(
            id=row["id"],
            name=row["name"],
            platform=SocialPlatform(row["platform"]),
            credentials=_load_json(row["credentials"]),
            config=_load_json(row["config"]),
            enabled=row["enabled"],
            auto_publish=row["auto_publish"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
