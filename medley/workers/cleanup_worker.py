from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from medley.config import settings
from medley.repos.jobs_repo import JobsRepo
from medley.services.job_status_manager import JobStatusManager

logger = logging.getLogger("cleanup_worker")


async def tick_once(status: JobStatusManager, output, *, job_hours: int, output_hours: int) -> Dict[str, int]:
    """One sweep. Each half runs even if the other fails."""
    out = {"jobs_deleted": 0, "files_deleted": 0}

    try:
        out["jobs_deleted"] = await status.purge_older_than(job_hours)
    except Exception as e:
        logger.exception("cleanup_jobs_failed", extra={"error": str(e)})

    try:
        out["files_deleted"] = await output.delete_older_than(output_hours)
    except Exception as e:
        logger.exception("cleanup_files_failed", extra={"error": str(e)})

    logger.info("cleanup_tick", extra=out)
    return out


async def run_forever(
    status: JobStatusManager,
    output,
    *,
    interval_seconds: float = settings.CLEANUP_INTERVAL_SECONDS,
    job_hours: int = settings.JOB_RETENTION_HOURS,
    output_hours: int = settings.OUTPUT_RETENTION_HOURS,
    stop: Optional[asyncio.Event] = None,
) -> None:
    stop = stop or asyncio.Event()
    logger.info(
        "cleanup_worker_started",
        extra={"interval_seconds": interval_seconds, "job_hours": job_hours, "output_hours": output_hours},
    )

    while not stop.is_set():
        await tick_once(status, output, job_hours=job_hours, output_hours=output_hours)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("cleanup_worker_stopped")


async def _main() -> None:
    from medley.cache import RedisCache
    from medley.db import init_pool
    from medley.logging import configure_logging
    from medley.services.blob_storage import AzureOutputStore, blob_service_from_connection_string

    configure_logging()
    pool = await init_pool(settings)
    cache = None
    if settings.REDIS_URL:
        cache = RedisCache.from_url(
            settings.REDIS_URL,
            job_ttl=settings.JOB_CACHE_TTL_SECONDS,
            search_ttl=settings.SEARCH_CACHE_TTL_SECONDS,
        )
    try:
        output = AzureOutputStore(
            blob_service_from_connection_string(settings.AZURE_STORAGE_CONNECTION_STRING),
            container=settings.OUTPUT_CONTAINER,
            auto_create=False,
        )
        await run_forever(JobStatusManager(JobsRepo(pool), cache), output)
    finally:
        if cache is not None:
            await cache.close()
        await pool.close()


if __name__ == "__main__":
    asyncio.run(_main())
