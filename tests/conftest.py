from __future__ import annotations

import pytest

from medley.cache import RedisCache
from medley.config import Settings
from medley.services.container import Services
from medley.services.job_orchestrator import JobOrchestrator
from medley.services.job_status_manager import JobStatusManager
from medley.services.song_resolver import SongResolver
from medley.services.task_supervisor import TaskSupervisor
from tests.fakes import (
    FakeFetcher,
    FakeGenerator,
    FakeJobsRepo,
    FakeOutputStore,
    FakeRedis,
    FakeSongsRepo,
)

CATALOG = [
    ("Fugue.1", "Bach"),
    ("Fugue.2", "Bach"),
    ("Clair de Lune", "Debussy"),
    ("Gymnopedie", "Satie"),
    ("Moonlight Sonata", "Beethoven"),
    ("Ode to Joy", "Beethoven"),
]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        CLEANUP_ENABLED=False,
        REDIS_URL=None,
        PIPELINE_MAX_RUNNING=2,
        PIPELINE_MAX_PENDING=4,
    )


@pytest.fixture
def jobs_repo() -> FakeJobsRepo:
    return FakeJobsRepo()


@pytest.fixture
def songs_repo() -> FakeSongsRepo:
    return FakeSongsRepo(CATALOG)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis) -> RedisCache:
    return RedisCache(fake_redis, job_ttl=86400, search_ttl=3600)


@pytest.fixture
def status_manager(jobs_repo, cache) -> JobStatusManager:
    return JobStatusManager(jobs_repo, cache)


@pytest.fixture
def resolver(songs_repo, cache) -> SongResolver:
    return SongResolver(songs_repo, cache, fuzzy_candidates=5)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def output_store() -> FakeOutputStore:
    return FakeOutputStore()


@pytest.fixture
def supervisor() -> TaskSupervisor:
    return TaskSupervisor(max_running=2, max_pending=4)


@pytest.fixture
def orchestrator(status_manager, resolver, fetcher, generator, output_store, supervisor) -> JobOrchestrator:
    return JobOrchestrator(status_manager, resolver, fetcher, generator, output_store, supervisor)


@pytest.fixture
def services(settings, cache, status_manager, resolver, generator, output_store, supervisor, orchestrator, jobs_repo):
    return Services(
        settings=settings,
        pool=None,
        cache=cache,
        status=status_manager,
        resolver=resolver,
        generator=generator,
        output=output_store,
        supervisor=supervisor,
        orchestrator=orchestrator,
        jobs=jobs_repo,
    )
