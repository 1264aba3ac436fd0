from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import asyncpg

from medley.cache import RedisCache
from medley.clients.generation_client import GenerationClient
from medley.config import Settings
from medley.repos.jobs_repo import JobsRepo
from medley.repos.songs_repo import SongsRepo
from medley.services.blob_storage import AzureBlobFetcher, AzureOutputStore, blob_service_from_connection_string
from medley.services.job_orchestrator import JobOrchestrator
from medley.services.job_status_manager import JobStatusManager
from medley.services.song_resolver import SongResolver
from medley.services.task_supervisor import TaskSupervisor

logger = logging.getLogger("medley.container")


@dataclass
class Services:
    """Everything the routes and workers need, built once per process."""

    settings: Settings
    pool: Any
    cache: Optional[RedisCache]
    status: JobStatusManager
    resolver: SongResolver
    generator: Any
    output: Any
    supervisor: TaskSupervisor
    orchestrator: JobOrchestrator
    jobs: Any

    async def close(self, shutdown_timeout: float = 30.0) -> None:
        await self.supervisor.shutdown(timeout=shutdown_timeout)
        if hasattr(self.generator, "close"):
            await self.generator.close()
        if self.cache is not None:
            await self.cache.close()
        if self.pool is not None:
            await self.pool.close()


def build_services(settings: Settings, pool: asyncpg.Pool) -> Services:
    cache: Optional[RedisCache] = None
    if settings.REDIS_URL:
        cache = RedisCache.from_url(
            settings.REDIS_URL,
            job_ttl=settings.JOB_CACHE_TTL_SECONDS,
            search_ttl=settings.SEARCH_CACHE_TTL_SECONDS,
        )
    else:
        logger.warning("redis_disabled")

    jobs = JobsRepo(pool)
    status = JobStatusManager(jobs, cache)
    resolver = SongResolver(SongsRepo(pool), cache, fuzzy_candidates=settings.RESOLVER_FUZZY_CANDIDATES)

    blob_service = blob_service_from_connection_string(settings.AZURE_STORAGE_CONNECTION_STRING)
    fetcher = AzureBlobFetcher(blob_service, default_container=settings.ASSET_CONTAINER)
    output = AzureOutputStore(
        blob_service,
        container=settings.OUTPUT_CONTAINER,
        auto_create=settings.AZURE_STORAGE_AUTO_CREATE_CONTAINER,
    )

    generator = GenerationClient(
        settings.GENERATION_BASE_URL,
        api_key=settings.GENERATION_API_KEY,
        timeout=settings.GENERATION_TIMEOUT_SECONDS,
        connect_attempts=settings.GENERATION_CONNECT_ATTEMPTS,
    )

    supervisor = TaskSupervisor(
        max_running=settings.PIPELINE_MAX_RUNNING,
        max_pending=settings.PIPELINE_MAX_PENDING,
    )

    orchestrator = JobOrchestrator(status, resolver, fetcher, generator, output, supervisor)

    return Services(
        settings=settings,
        pool=pool,
        cache=cache,
        status=status,
        resolver=resolver,
        generator=generator,
        output=output,
        supervisor=supervisor,
        orchestrator=orchestrator,
        jobs=jobs,
    )
