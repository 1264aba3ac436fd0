from __future__ import annotations

from fastapi import APIRouter

from medley.api.health import router as health_router
from medley.api.routes.jobs import router as jobs_router
from medley.api.routes.music import router as music_router


def build_router() -> APIRouter:
    r = APIRouter()
    r.include_router(health_router)
    r.include_router(music_router)
    r.include_router(jobs_router)
    return r
