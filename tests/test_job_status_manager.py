import uuid

import pytest

from medley.domain.enums import JobStatus
from medley.domain.models import JobSnapshot


@pytest.fixture
def job_id():
    return str(uuid.uuid4())


@pytest.mark.asyncio
async def test_create_writes_both_stores(status_manager, jobs_repo, fake_redis, job_id):
    snap = await status_manager.create(job_id, ["A", "B", "C"])

    assert snap.status == JobStatus.pending
    assert snap.progress == 0
    assert jobs_repo.rows[job_id]["status"] == "pending"
    assert f"job:{job_id}" in fake_redis.data
    assert fake_redis.ttls[f"job:{job_id}"] == 86400


@pytest.mark.asyncio
async def test_cache_and_durable_agree_after_write(status_manager, cache, job_id):
    await status_manager.create(job_id, ["A", "B", "C"])
    await status_manager.write(job_id, JobStatus.processing, 50)
    await status_manager.write(job_id, JobStatus.completed, 100, artifact_id="file-1")

    cached = await cache.get_job(job_id)
    durable = await status_manager.read_durable(job_id)

    assert cached.status_fields() == durable.status_fields()
    assert durable.status_fields() == (JobStatus.completed, 100, "file-1", None)
    assert durable.completed_at is not None


@pytest.mark.asyncio
async def test_failed_write_clears_artifact_and_completed_at(status_manager, job_id):
    await status_manager.create(job_id, ["A", "B", "C"])
    snap = await status_manager.write(job_id, JobStatus.failed, 30, error="boom", artifact_id="ignored")

    assert snap.error == "boom"
    assert snap.output_file_id is None
    assert snap.completed_at is None


@pytest.mark.asyncio
async def test_read_hit_skips_durable_store(status_manager, jobs_repo, job_id):
    await status_manager.create(job_id, ["A", "B", "C"])
    reads_before = jobs_repo.reads

    snap = await status_manager.read(job_id)

    assert snap.job_id == job_id
    assert jobs_repo.reads == reads_before


@pytest.mark.asyncio
async def test_read_miss_repopulates_cache(status_manager, jobs_repo, fake_redis, job_id):
    await status_manager.create(job_id, ["A", "B", "C"])
    await status_manager.write(job_id, JobStatus.processing, 30)
    fake_redis.data.clear()

    snap = await status_manager.read(job_id)

    assert snap.status_fields() == (JobStatus.processing, 30, None, None)
    assert jobs_repo.reads == 1
    restored = JobSnapshot.model_validate_json(fake_redis.data[f"job:{job_id}"])
    assert restored.status_fields() == snap.status_fields()


@pytest.mark.asyncio
async def test_read_unknown_job_is_none(status_manager):
    assert await status_manager.read(str(uuid.uuid4())) is None


@pytest.mark.asyncio
async def test_write_unknown_job_is_none(status_manager):
    assert await status_manager.write(str(uuid.uuid4()), JobStatus.processing, 10) is None


@pytest.mark.asyncio
async def test_malformed_cache_entry_is_a_miss(status_manager, fake_redis, job_id):
    await status_manager.create(job_id, ["A", "B", "C"])
    fake_redis.data[f"job:{job_id}"] = '{"jobId": "x", "status": "exploded"}'

    snap = await status_manager.read(job_id)

    assert snap.status == JobStatus.pending
    restored = JobSnapshot.model_validate_json(fake_redis.data[f"job:{job_id}"])
    assert restored.job_id == job_id


@pytest.mark.asyncio
async def test_cache_outage_does_not_fail_writes_or_reads(status_manager, fake_redis, jobs_repo, job_id):
    fake_redis.broken = True

    await status_manager.create(job_id, ["A", "B", "C"])
    snap = await status_manager.write(job_id, JobStatus.processing, 10)
    read = await status_manager.read(job_id)

    assert snap.progress == 10
    assert read.status_fields() == snap.status_fields()
    assert jobs_repo.rows[job_id]["progress"] == 10


@pytest.mark.asyncio
async def test_works_without_cache(jobs_repo, job_id):
    from medley.services.job_status_manager import JobStatusManager

    mgr = JobStatusManager(jobs_repo, None)
    await mgr.create(job_id, ["A", "B", "C"])
    snap = await mgr.read(job_id)
    assert snap.status == JobStatus.pending
