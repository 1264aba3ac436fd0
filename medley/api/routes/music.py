from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from medley.api.deps import get_orchestrator, get_output_store, get_resolver
from medley.domain.models import GenerateIn, GenerateOut, JobSnapshot, SongItem, SongListOut
from medley.domain.validators import clamp_count, require_file_id, require_job_id
from medley.services.blob_storage import OUTPUT_CONTENT_TYPE
from medley.services.job_orchestrator import JobOrchestrator
from medley.services.song_resolver import SongResolver

router = APIRouter(tags=["music"])


@router.post("/generate", response_model=GenerateOut, status_code=202)
async def generate(payload: GenerateIn, orch: JobOrchestrator = Depends(get_orchestrator)):
    snap = await orch.submit(payload.songs)
    return GenerateOut(job_id=snap.job_id, status=snap.status)


@router.get("/status/{job_id}", response_model=JobSnapshot, response_model_exclude_none=True)
async def status(job_id: str, orch: JobOrchestrator = Depends(get_orchestrator)):
    return await orch.get(require_job_id(job_id))


@router.get("/search", response_model=SongListOut)
async def search(
    q: str = Query(""),
    limit: Optional[str] = Query(None),
    resolver: SongResolver = Depends(get_resolver),
):
    songs = await resolver.search(q, clamp_count(limit, 20))
    items = [SongItem.from_song(s) for s in songs]
    return SongListOut(songs=items, total=len(items))


@router.get("/songs", response_model=SongListOut)
async def songs(resolver: SongResolver = Depends(get_resolver)):
    items = sorted((SongItem.from_song(s) for s in await resolver.all_songs()), key=lambda i: i.label.lower())
    return SongListOut(songs=items, total=len(items))


@router.get("/download/{file_id}")
async def download(file_id: str, output=Depends(get_output_store)):
    artifact = await output.open(require_file_id(file_id))
    headers = {
        "Content-Disposition": f'attachment; filename="{artifact.filename}"',
        "Cache-Control": "no-cache",
    }
    if artifact.size:
        headers["Content-Length"] = str(artifact.size)
    return StreamingResponse(artifact.chunks, media_type=OUTPUT_CONTENT_TYPE, headers=headers)
