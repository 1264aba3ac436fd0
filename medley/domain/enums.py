from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.pending: frozenset({JobStatus.processing, JobStatus.failed}),
    JobStatus.processing: frozenset({JobStatus.processing, JobStatus.completed, JobStatus.failed}),
    JobStatus.completed: frozenset(),
    JobStatus.failed: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class PipelineStage(str, Enum):
    start = "start"
    resolve = "resolve"
    fetch = "fetch"
    generate = "generate"
    encode = "encode"
    persist = "persist"


# progress recorded once each stage has finished
STAGE_PROGRESS: dict[PipelineStage, int] = {
    PipelineStage.start: 10,
    PipelineStage.resolve: 30,
    PipelineStage.fetch: 50,
    PipelineStage.generate: 80,
    PipelineStage.encode: 95,
    PipelineStage.persist: 100,
}
