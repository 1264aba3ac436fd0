from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from redis.exceptions import RedisError

from medley.cache import RedisCache
from medley.domain.enums import JobStatus
from medley.domain.models import JobSnapshot
from medley.repos.jobs_repo import JobsRepo

logger = logging.getLogger("job_status_manager")


class JobStatusManager:
    """
    Keeps the durable job row and its cached projection in step.

    Postgres is written first and its RETURNING row is the truth; the cache is
    then overwritten from that row. Cache failures are logged and ignored.
    """

    def __init__(self, jobs: JobsRepo, cache: Optional[RedisCache] = None):
        self.jobs = jobs
        self.cache = cache

    async def _cache_put(self, snap: JobSnapshot) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set_job(snap)
        except RedisError as e:
            logger.warning("job_cache_write_failed", extra={"job_id": snap.job_id, "error": str(e)})

    async def _cache_get(self, job_id: str) -> Optional[JobSnapshot]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get_job(job_id)
        except RedisError as e:
            logger.warning("job_cache_read_failed", extra={"job_id": job_id, "error": str(e)})
            return None

    async def create(self, job_id: str, songs: List[str]) -> JobSnapshot:
        row = await self.jobs.insert_job(job_id, songs)
        snap = JobSnapshot.from_row(row)
        await self._cache_put(snap)
        return snap

    async def write(
        self,
        job_id: str,
        status: JobStatus,
        progress: int,
        *,
        error: Optional[str] = None,
        artifact_id: Optional[str] = None,
    ) -> Optional[JobSnapshot]:
        status = JobStatus(status)
        if status == JobStatus.failed:
            artifact_id = None
        elif status == JobStatus.completed:
            error = None

        row = await self.jobs.update_status(
            job_id,
            status.value,
            progress,
            error_message=error,
            output_file_id=artifact_id,
        )
        if row is None:
            logger.warning("job_write_missing_row", extra={"job_id": job_id, "status": status.value})
            return None

        snap = JobSnapshot.from_row(row)
        await self._cache_put(snap)
        logger.info(
            "job_status_written",
            extra={"job_id": job_id, "status": snap.status.value, "progress": snap.progress},
        )
        return snap

    async def read(self, job_id: str) -> Optional[JobSnapshot]:
        cached = await self._cache_get(job_id)
        if cached is not None:
            return cached

        snap = await self.read_durable(job_id)
        if snap is not None:
            await self._cache_put(snap)
        return snap

    async def read_durable(self, job_id: str) -> Optional[JobSnapshot]:
        row = await self.jobs.get_job(job_id)
        return JobSnapshot.from_row(row) if row else None

    async def purge_older_than(self, hours: int) -> int:
        """Deletes old terminal jobs, then evicts their cached snapshots."""
        deleted = await self.jobs.delete_terminal_older_than(hours)
        if self.cache is not None:
            for job_id in deleted:
                try:
                    await self.cache.delete_job(job_id)
                except RedisError as e:
                    logger.warning("job_cache_evict_failed", extra={"job_id": job_id, "error": str(e)})
        return len(deleted)

    async def list_recent(self, limit: int, offset: int) -> Tuple[List[JobSnapshot], int]:
        rows = await self.jobs.list_jobs(limit=limit, offset=offset)
        total = await self.jobs.count_jobs()
        return [JobSnapshot.from_row(r) for r in rows], total
