from __future__ import annotations

from typing import Any, Dict, List, Optional

import asyncpg

_JOB_COLUMNS = """
  job_id::text AS job_id,
  status,
  progress,
  songs,
  created_at,
  completed_at,
  output_file_id,
  error_message
"""


class JobsRepo:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def insert_job(self, job_id: str, songs: List[str]) -> Dict[str, Any]:
        sql = f"""
        INSERT INTO jobs (job_id, status, progress, songs, created_at)
        VALUES ($1::uuid, 'pending', 0, $2::text[], now())
        RETURNING {_JOB_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, job_id, songs)
        return dict(row)

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        sql = f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = $1::uuid"
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, job_id)
        return dict(row) if row else None

    async def update_status(
        self,
        job_id: str,
        status: str,
        progress: int,
        error_message: Optional[str] = None,
        output_file_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Overwrites status/progress/error/output in one statement (last write wins).
        completed_at is stamped only when the new status is 'completed'.
        """
        p = max(0, min(100, int(progress)))
        sql = f"""
        UPDATE jobs
        SET status = $2,
            progress = $3,
            error_message = $4,
            output_file_id = $5,
            completed_at = CASE WHEN $2 = 'completed' THEN now() ELSE NULL END
        WHERE job_id = $1::uuid
        RETURNING {_JOB_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, job_id, status, p, error_message, output_file_id)
        return dict(row) if row else None

    async def list_jobs(self, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        sql = f"""
        SELECT {_JOB_COLUMNS}
        FROM jobs
        ORDER BY created_at DESC
        LIMIT $1 OFFSET $2
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, limit, offset)
        return [dict(r) for r in rows]

    async def count_jobs(self) -> int:
        async with self.pool.acquire() as conn:
            return int(await conn.fetchval("SELECT count(*) FROM jobs"))

    async def delete_terminal_older_than(self, hours: int) -> List[str]:
        """Returns the ids of the deleted jobs."""
        sql = """
        DELETE FROM jobs
        WHERE created_at < now() - ($1::int * interval '1 hour')
          AND status IN ('completed', 'failed')
        RETURNING job_id::text AS job_id
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, int(hours))
        return [r["job_id"] for r in rows]

    async def ping(self) -> bool:
        async with self.pool.acquire() as conn:
            return (await conn.fetchval("SELECT 1")) == 1
