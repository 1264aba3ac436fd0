from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from medley.domain.enums import STAGE_PROGRESS, JobStatus, PipelineStage, can_transition
from medley.domain.models import SONGS_PER_JOB, JobSnapshot
from medley.errors import (
    JobNotCancellableError,
    JobNotFoundError,
    NoAssetsFoundError,
    PipelineError,
    ServiceBusyError,
)
from medley.services.job_status_manager import JobStatusManager
from medley.services.song_resolver import SongResolver
from medley.services.task_supervisor import TaskSupervisor

logger = logging.getLogger("job_orchestrator")

CANCELLED_MESSAGE = "cancelled by caller"
INTERRUPTED_MESSAGE = "pipeline interrupted by shutdown"


class BlobFetcher(Protocol):
    async def fetch(self, ref: str) -> bytes: ...


class Generator(Protocol):
    async def transform(self, midi_files: List[bytes]) -> bytes: ...

    async def encode(self, midi: bytes) -> bytes: ...


class OutputStore(Protocol):
    async def put(self, file_id: str, data: bytes) -> str: ...


@dataclass
class PipelineRun:
    job_id: str
    titles: List[str]
    progress: int = 0
    stage: Optional[PipelineStage] = None


class JobOrchestrator:
    """
    Owns a job from submission to a terminal state.

    submit() records the job and hands run() to the supervisor. run() walks the
    stages in order, writing a checkpoint after each; the first failure marks
    the job failed at the last checkpoint and stops the pipeline.
    """

    def __init__(
        self,
        status: JobStatusManager,
        resolver: SongResolver,
        fetcher: BlobFetcher,
        generator: Generator,
        output: OutputStore,
        supervisor: TaskSupervisor,
    ):
        self.status = status
        self.resolver = resolver
        self.fetcher = fetcher
        self.generator = generator
        self.output = output
        self.supervisor = supervisor

    async def submit(self, songs: List[str], job_id: Optional[str] = None) -> JobSnapshot:
        if not self.supervisor.has_capacity():
            raise ServiceBusyError()

        job_id = job_id or str(uuid.uuid4())
        titles = list(songs)
        snap = await self.status.create(job_id, titles)
        logger.info("job_submitted", extra={"job_id": job_id, "songs": titles})

        try:
            self.supervisor.spawn(
                f"pipeline:{job_id}",
                lambda: self.run(job_id, titles),
                on_cancelled=lambda: self._abandon(job_id),
            )
        except ServiceBusyError:
            # filled up while the row was being written
            await self.status.write(job_id, JobStatus.failed, 0, error="service busy, job was not started")
            raise
        return snap

    async def _checkpoint(self, run: PipelineRun, stage: PipelineStage) -> None:
        progress = STAGE_PROGRESS[stage]
        snap = await self.status.write(run.job_id, JobStatus.processing, progress)
        if snap is None:
            raise PipelineError("job record no longer exists")
        run.stage = stage
        run.progress = progress

    async def _fetch_assets(self, refs: List[str]) -> List[bytes]:
        results = await asyncio.gather(*(self.fetcher.fetch(r) for r in refs), return_exceptions=True)
        for r in results:
            if isinstance(r, BaseException):
                raise r
        return list(results)

    async def run(self, job_id: str, titles: List[str]) -> None:
        current = await self.status.read_durable(job_id)
        if current is None:
            logger.warning("job_run_skipped_missing", extra={"job_id": job_id})
            return
        if current.status.is_terminal:
            logger.info("job_run_skipped_terminal", extra={"job_id": job_id, "status": current.status.value})
            return

        run = PipelineRun(job_id=job_id, titles=list(titles), progress=current.progress)
        logger.info("job_started", extra={"job_id": job_id, "songs": run.titles})

        try:
            await self._checkpoint(run, PipelineStage.start)

            songs = await self.resolver.resolve(run.titles)
            await self._checkpoint(run, PipelineStage.resolve)
            if not songs:
                raise NoAssetsFoundError()
            if len(songs) < SONGS_PER_JOB:
                logger.warning(
                    "job_partial_resolution",
                    extra={"job_id": job_id, "found": len(songs), "songs": [s.label for s in songs]},
                )

            midi_files = await self._fetch_assets([s.midi_key for s in songs])
            await self._checkpoint(run, PipelineStage.fetch)

            generated = await self.generator.transform(midi_files)
            await self._checkpoint(run, PipelineStage.generate)

            mp3 = await self.generator.encode(generated)
            await self._checkpoint(run, PipelineStage.encode)

            file_id = str(uuid.uuid4())
            await self.output.put(file_id, mp3)
            await self.status.write(
                job_id,
                JobStatus.completed,
                STAGE_PROGRESS[PipelineStage.persist],
                artifact_id=file_id,
            )
            run.stage = PipelineStage.persist
            logger.info(
                "job_completed",
                extra={"job_id": job_id, "output_file_id": file_id, "songs_found": len(songs)},
            )

        except asyncio.CancelledError:
            await self._mark_failed(run, INTERRUPTED_MESSAGE)
            raise
        except Exception as e:
            logger.error(
                "job_failed",
                extra={"job_id": job_id, "stage": run.stage.value if run.stage else None, "error": str(e)},
                exc_info=True,
            )
            await self._mark_failed(run, str(e) or type(e).__name__)

    async def _mark_failed(self, run: PipelineRun, message: str) -> None:
        try:
            await self.status.write(run.job_id, JobStatus.failed, run.progress, error=message)
        except Exception:
            logger.exception("job_fail_marking_failed", extra={"job_id": run.job_id})

    async def _abandon(self, job_id: str) -> None:
        """Fails a job whose pipeline was cancelled before it got a slot."""
        try:
            current = await self.status.read_durable(job_id)
        except Exception:
            logger.exception("job_abandon_read_failed", extra={"job_id": job_id})
            return
        if current is None or current.status.is_terminal:
            return
        logger.warning("job_abandoned", extra={"job_id": job_id})
        run = PipelineRun(job_id=job_id, titles=list(current.songs), progress=current.progress)
        await self._mark_failed(run, INTERRUPTED_MESSAGE)

    async def get(self, job_id: str) -> JobSnapshot:
        snap = await self.status.read(job_id)
        if snap is None:
            raise JobNotFoundError(job_id)
        return snap

    async def cancel(self, job_id: str) -> JobSnapshot:
        """
        Marks a live job failed. An in-flight pipeline is not interrupted and
        its next checkpoint overwrites the cancellation (last write wins).
        """
        current = await self.status.read_durable(job_id)
        if current is None:
            raise JobNotFoundError(job_id)
        if not can_transition(current.status, JobStatus.failed):
            raise JobNotCancellableError(job_id, current.status.value)

        snap = await self.status.write(job_id, JobStatus.failed, current.progress, error=CANCELLED_MESSAGE)
        if snap is None:
            raise JobNotFoundError(job_id)
        logger.info("job_cancelled", extra={"job_id": job_id, "progress": snap.progress})
        return snap

    async def list_jobs(self, limit: int = 10, offset: int = 0) -> Tuple[List[JobSnapshot], int]:
        return await self.status.list_recent(limit, offset)
