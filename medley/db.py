from __future__ import annotations

import logging
from urllib.parse import urlparse

import asyncpg

from medley.config import Settings

logger = logging.getLogger("medley.db")


SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TABLE IF NOT EXISTS songs (
  id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
  midi_key TEXT NOT NULL,
  token_key TEXT,
  artist VARCHAR(255) NOT NULL,
  title VARCHAR(255) NOT NULL,
  created_at TIMESTAMPTZ DEFAULT now(),
  updated_at TIMESTAMPTZ DEFAULT now()
);

ALTER TABLE songs ADD COLUMN IF NOT EXISTS base_title VARCHAR(255);

-- rows imported before base_title existed
UPDATE songs
SET base_title = btrim(regexp_replace(title, '\\.\\d+$', ''))
WHERE base_title IS NULL;

ALTER TABLE songs ALTER COLUMN base_title SET NOT NULL;

CREATE INDEX IF NOT EXISTS idx_songs_title_lower ON songs (lower(title));
CREATE INDEX IF NOT EXISTS idx_songs_base_title_lower ON songs (lower(base_title));
CREATE INDEX IF NOT EXISTS idx_songs_title_artist ON songs (lower(title), lower(artist));

CREATE TABLE IF NOT EXISTS jobs (
  job_id UUID PRIMARY KEY,
  status VARCHAR(20) NOT NULL DEFAULT 'pending',
  progress INTEGER NOT NULL DEFAULT 0,
  songs TEXT[] NOT NULL,
  created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
  completed_at TIMESTAMPTZ,
  output_file_id VARCHAR(255),
  error_message TEXT,
  CONSTRAINT valid_status CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
  CONSTRAINT valid_progress CHECK (progress >= 0 AND progress <= 100)
);

CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs (created_at DESC);
"""


def _dsn_safe(dsn: str) -> str:
    try:
        u = urlparse(dsn)
        host = u.hostname or ""
        port = u.port or ""
        db = (u.path or "").lstrip("/")
        return f"{u.scheme}://***@{host}:{port}/{db}"
    except Exception:
        return "<invalid-dsn>"


async def init_pool(settings: Settings) -> asyncpg.Pool:
    dsn = (settings.DATABASE_URL or "").strip()
    if not dsn:
        raise RuntimeError("DATABASE_URL is required")

    logger.info("Initializing asyncpg pool: %s", _dsn_safe(dsn))
    return await asyncpg.create_pool(
        dsn=dsn,
        min_size=settings.DB_POOL_MIN,
        max_size=settings.DB_POOL_MAX,
        command_timeout=settings.DB_COMMAND_TIMEOUT,
    )


async def ensure_schema(pool: asyncpg.Pool) -> None:
    """Create tables and indexes if they don't exist (idempotent)."""
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)
    logger.info("schema_ready")
