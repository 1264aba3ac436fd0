from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from medley.api.deps import get_services
from medley.services.container import Services

logger = logging.getLogger("medley.health")

router = APIRouter(prefix="/health", tags=["health"])

_STARTED = time.monotonic()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _check(name: str, probe: Callable[[], Awaitable[bool]]) -> str:
    try:
        return "healthy" if await probe() else "unhealthy"
    except Exception as e:
        logger.warning("health_check_failed", extra={"dependency": name, "error": str(e)})
        return "unhealthy"


def _base(services: Services, status: str) -> Dict[str, Any]:
    return {
        "status": status,
        "timestamp": _now(),
        "uptime": round(time.monotonic() - _STARTED, 3),
        "version": services.settings.SERVICE_VERSION,
        "environment": services.settings.ENVIRONMENT,
    }


@router.get("")
async def health(services: Services = Depends(get_services)):
    return _base(services, "healthy")


@router.get("/detailed")
async def detailed(services: Services = Depends(get_services)):
    checks = {
        "database": await _check("database", services.jobs.ping),
        "redis": await _check("redis", services.cache.ping) if services.cache is not None else "disabled",
        "generation": await _check("generation", services.generator.health),
        "storage": await _check("storage", services.output.ping),
    }

    # only the durable store is fatal; everything else degrades
    if checks["database"] != "healthy":
        status = "unhealthy"
    elif any(v == "unhealthy" for v in checks.values()):
        status = "degraded"
    else:
        status = "healthy"

    body = _base(services, status)
    body["services"] = checks
    body["pipeline"] = services.supervisor.stats()
    if checks["generation"] == "healthy":
        info = await services.generator.info()
        if info is not None:
            body["generationModel"] = info
    return JSONResponse(status_code=503 if status == "unhealthy" else 200, content=body)


@router.get("/ready")
async def ready(services: Services = Depends(get_services)):
    if await _check("database", services.jobs.ping) != "healthy":
        return JSONResponse(status_code=503, content={"status": "not_ready", "timestamp": _now()})
    return {"status": "ready", "timestamp": _now()}


@router.get("/live")
async def live():
    return {"status": "alive", "timestamp": _now()}
