import asyncio
import uuid

import pytest

from medley.domain.enums import JobStatus
from medley.errors import JobNotCancellableError, JobNotFoundError, ServiceBusyError
from medley.services.job_orchestrator import CANCELLED_MESSAGE, INTERRUPTED_MESSAGE, JobOrchestrator
from medley.services.task_supervisor import TaskSupervisor
from tests.fakes import FakeFetcher, generation_timeout


async def _run_to_end(orchestrator, titles):
    job_id = str(uuid.uuid4())
    await orchestrator.status.create(job_id, titles)
    await orchestrator.run(job_id, titles)
    return await orchestrator.status.read_durable(job_id)


@pytest.mark.asyncio
async def test_submit_returns_pending_then_completes(orchestrator, supervisor, output_store):
    snap = await orchestrator.submit(["Clair de Lune", "Gymnopedie", "Ode to Joy"])

    assert snap.status == JobStatus.pending
    assert snap.progress == 0
    polled = await orchestrator.get(snap.job_id)
    assert (polled.status, polled.progress) == (JobStatus.pending, 0)

    await supervisor.shutdown(timeout=5)

    final = await orchestrator.get(snap.job_id)
    assert final.status == JobStatus.completed
    assert final.progress == 100
    assert final.output_file_id
    assert final.completed_at is not None
    assert final.error is None
    assert output_store.files[final.output_file_id] == b"ID3-mp3-bytes"


@pytest.mark.asyncio
async def test_progress_never_decreases(orchestrator, jobs_repo):
    snap = await _run_to_end(orchestrator, ["Fugue", "Gymnopedie", "Ode to Joy"])

    progress = [p for (jid, _, p) in jobs_repo.history if jid == snap.job_id]
    assert progress == sorted(progress)
    assert progress == [10, 30, 50, 80, 95, 100]


@pytest.mark.asyncio
async def test_subset_of_titles_still_completes(orchestrator, generator):
    snap = await _run_to_end(orchestrator, ["Clair de Lune", "no such song", "also missing"])

    assert snap.status == JobStatus.completed
    assert len(generator.transform_inputs[0]) == 1


@pytest.mark.asyncio
async def test_versions_are_all_sent_to_generation(orchestrator, fetcher, generator):
    await _run_to_end(orchestrator, ["Fugue", "missing", "missing too"])

    assert sorted(fetcher.fetched) == ["midi/Fugue.1.mid", "midi/Fugue.2.mid"]
    assert len(generator.transform_inputs[0]) == 2


@pytest.mark.asyncio
async def test_nothing_resolved_fails_at_resolve_checkpoint(orchestrator, generator):
    snap = await _run_to_end(orchestrator, ["xx1", "xx2", "xx3"])

    assert snap.status == JobStatus.failed
    assert snap.progress == 30
    assert "no assets found" in snap.error
    assert snap.output_file_id is None
    assert generator.transform_inputs == []


@pytest.mark.asyncio
async def test_generation_timeout_fails_at_fetch_checkpoint(orchestrator, generator):
    generator.transform_error = generation_timeout()

    snap = await _run_to_end(orchestrator, ["Clair de Lune", "Gymnopedie", "Ode to Joy"])

    assert snap.status == JobStatus.failed
    assert snap.progress == 50
    assert snap.error == "generation service timed out"
    assert snap.output_file_id is None
    assert snap.completed_at is None


@pytest.mark.asyncio
async def test_one_failed_fetch_fails_the_stage(status_manager, resolver, generator, output_store, supervisor):
    fetcher = FakeFetcher({"midi/Gymnopedie.mid": b"MThd"}, default=None)
    orch = JobOrchestrator(status_manager, resolver, fetcher, generator, output_store, supervisor)

    snap = await _run_to_end(orch, ["Clair de Lune", "Gymnopedie", "Ode to Joy"])

    assert snap.status == JobStatus.failed
    assert snap.progress == 30
    assert "failed to fetch asset" in snap.error
    assert len(fetcher.fetched) == 3
    assert generator.transform_inputs == []


@pytest.mark.asyncio
async def test_encode_failure_keeps_generate_checkpoint(orchestrator, generator):
    generator.encode_error = RuntimeError("encoder crashed")

    snap = await _run_to_end(orchestrator, ["Clair de Lune", "Gymnopedie", "Ode to Joy"])

    assert snap.status == JobStatus.failed
    assert snap.progress == 80
    assert snap.error == "encoder crashed"


@pytest.mark.asyncio
async def test_run_skips_missing_job(orchestrator, jobs_repo):
    await orchestrator.run(str(uuid.uuid4()), ["A", "B", "C"])
    assert jobs_repo.history == []


@pytest.mark.asyncio
async def test_run_skips_job_cancelled_while_pending(orchestrator, generator):
    job_id = str(uuid.uuid4())
    await orchestrator.status.create(job_id, ["Clair de Lune", "Gymnopedie", "Ode to Joy"])
    await orchestrator.cancel(job_id)

    await orchestrator.run(job_id, ["Clair de Lune", "Gymnopedie", "Ode to Joy"])

    snap = await orchestrator.status.read_durable(job_id)
    assert snap.status == JobStatus.failed
    assert snap.error == CANCELLED_MESSAGE
    assert generator.transform_inputs == []


@pytest.mark.asyncio
async def test_cancel_keeps_progress(orchestrator, jobs_repo):
    job_id = jobs_repo.seed(status="processing", progress=50)

    snap = await orchestrator.cancel(job_id)

    assert snap.status == JobStatus.failed
    assert snap.progress == 50
    assert snap.error == CANCELLED_MESSAGE


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["completed", "failed"])
async def test_cancel_terminal_job_is_rejected(orchestrator, jobs_repo, status):
    job_id = jobs_repo.seed(status=status, progress=100 if status == "completed" else 30)
    before = dict(jobs_repo.rows[job_id])

    with pytest.raises(JobNotCancellableError):
        await orchestrator.cancel(job_id)

    assert jobs_repo.rows[job_id] == before


@pytest.mark.asyncio
async def test_cancel_unknown_job(orchestrator):
    with pytest.raises(JobNotFoundError):
        await orchestrator.cancel(str(uuid.uuid4()))


@pytest.mark.asyncio
async def test_get_unknown_job(orchestrator):
    with pytest.raises(JobNotFoundError):
        await orchestrator.get(str(uuid.uuid4()))


@pytest.mark.asyncio
async def test_submit_rejected_when_supervisor_full(
    status_manager, resolver, fetcher, generator, output_store, jobs_repo
):
    supervisor = TaskSupervisor(max_running=1, max_pending=1)
    orch = JobOrchestrator(status_manager, resolver, fetcher, generator, output_store, supervisor)

    await orch.submit(["Clair de Lune", "Gymnopedie", "Ode to Joy"])
    with pytest.raises(ServiceBusyError):
        await orch.submit(["Clair de Lune", "Gymnopedie", "Ode to Joy"])

    assert len(jobs_repo.rows) == 1
    await supervisor.shutdown(timeout=5)


@pytest.mark.asyncio
async def test_list_jobs(orchestrator, jobs_repo):
    for _ in range(3):
        jobs_repo.seed()

    jobs, total = await orchestrator.list_jobs(limit=2, offset=0)

    assert total == 3
    assert len(jobs) == 2


@pytest.mark.asyncio
async def test_shutdown_fails_running_and_queued_jobs(status_manager, resolver, fetcher, generator, output_store):
    supervisor = TaskSupervisor(max_running=1, max_pending=4)
    orch = JobOrchestrator(status_manager, resolver, fetcher, generator, output_store, supervisor)

    async def stall(midi_files):
        await asyncio.sleep(10)

    generator.transform = stall
    titles = ["Clair de Lune", "Gymnopedie", "Ode to Joy"]
    first = await orch.submit(titles)
    second = await orch.submit(titles)

    await supervisor.shutdown(timeout=0.1)

    running = await orch.get(first.job_id)
    queued = await orch.get(second.job_id)
    assert (running.status, running.progress, running.error) == (JobStatus.failed, 50, INTERRUPTED_MESSAGE)
    assert (queued.status, queued.progress, queued.error) == (JobStatus.failed, 0, INTERRUPTED_MESSAGE)


@pytest.mark.asyncio
async def test_abandon_leaves_cancelled_job_alone(orchestrator):
    job_id = str(uuid.uuid4())
    await orchestrator.status.create(job_id, ["A", "B", "C"])
    await orchestrator.cancel(job_id)

    await orchestrator._abandon(job_id)

    snap = await orchestrator.get(job_id)
    assert snap.error == CANCELLED_MESSAGE
