from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from medley.api.deps import get_orchestrator
from medley.domain.models import CancelOut, JobListOut, Pagination
from medley.domain.validators import clamp_count, require_job_id
from medley.services.job_orchestrator import JobOrchestrator

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("", response_model=JobListOut, response_model_exclude_none=True)
async def list_jobs(
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    n = clamp_count(limit, 10)
    skip = clamp_count(offset, 0, maximum=2**31 - 1, minimum=0)
    jobs, total = await orch.list_jobs(limit=n, offset=skip)
    return JobListOut(jobs=jobs, pagination=Pagination(limit=n, offset=skip, total=total))


@router.delete("/{job_id}", response_model=CancelOut)
async def cancel(job_id: str, orch: JobOrchestrator = Depends(get_orchestrator)):
    snap = await orch.cancel(require_job_id(job_id))
    return CancelOut(job_id=snap.job_id)
