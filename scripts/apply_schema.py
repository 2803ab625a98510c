#!/usr/bin/env python3
"""Apply the pressroom schema: jobs, distribution_records, distribution_channels.

The posts, tags and post_tags tables belong to the CMS and are not touched.
"""
import asyncio
import asyncpg
import os

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (
        status IN ('pending', 'running', 'step_complete', 'succeeded', 'failed', 'cancelled')
    ),
    payload JSONB NOT NULL DEFAULT '{}',
    priority INTEGER NOT NULL DEFAULT 50 CHECK (priority BETWEEN 0 AND 100),
    step TEXT,
    result JSONB NOT NULL DEFAULT '{}',
    fingerprint TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    cancel_requested BOOLEAN NOT NULL DEFAULT FALSE,
    locked_at TIMESTAMPTZ,
    locked_by TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    started_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_jobs_dispatch ON jobs(priority DESC, created_at ASC)
    WHERE status IN ('pending', 'step_complete');
CREATE INDEX IF NOT EXISTS idx_jobs_fingerprint ON jobs(fingerprint, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_created ON jobs(created_at DESC);

CREATE TABLE IF NOT EXISTS distribution_channels (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    platform TEXT NOT NULL,
    credentials JSONB NOT NULL DEFAULT '{}',
    config JSONB NOT NULL DEFAULT '{}',
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    auto_publish BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

ALTER TABLE distribution_channels
    ADD COLUMN IF NOT EXISTS auto_publish BOOLEAN NOT NULL DEFAULT FALSE;

CREATE TABLE IF NOT EXISTS distribution_records (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    post_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    platform TEXT NOT NULL,
    status TEXT NOT NULL CHECK (
        status IN ('scheduled', 'pending', 'in_progress', 'succeeded', 'failed', 'cancelled')
    ),
    content TEXT NOT NULL DEFAULT '',
    scheduled_at TIMESTAMPTZ,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    error_kind TEXT,
    external_ref TEXT,
    external_url TEXT,
    message_override TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    published_at TIMESTAMPTZ
);

-- At most one open record per (post, channel)
CREATE UNIQUE INDEX IF NOT EXISTS distribution_records_open_pair_idx
    ON distribution_records(post_id, channel_id)
    WHERE status IN ('scheduled', 'pending', 'in_progress');
CREATE INDEX IF NOT EXISTS idx_distribution_records_post ON distribution_records(post_id);
CREATE INDEX IF NOT EXISTS idx_distribution_records_status ON distribution_records(status);
CREATE INDEX IF NOT EXISTS idx_distribution_records_scheduled ON distribution_records(scheduled_at)
    WHERE status = 'scheduled';
CREATE INDEX IF NOT EXISTS idx_distribution_records_in_progress ON distribution_records(updated_at)
    WHERE status = 'in_progress';
"""

TABLES = ("jobs", "distribution_channels", "distribution_records")


async def main():
    conn = await asyncpg.connect(os.environ["DATABASE_URL"], statement_cache_size=0)
    try:
        await conn.execute(SCHEMA)
        print("Schema applied")

        # Verify
        for table in TABLES:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM information_schema.columns WHERE table_name = $1",
                table,
            )
            print(f"{table}: {count} columns")
    finally:
        await conn.close()

if __name__ == "__main__":
    asyncio.run(main())
