from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medley.api import build_router
from medley.api.errors import install_error_handlers
from medley.config import Settings, get_settings
from medley.db import ensure_schema, init_pool
from medley.logging import configure_logging
from medley.services.container import Services, build_services
from medley.workers import cleanup_worker

logger = logging.getLogger("medley.main")


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    services: prebuilt container (tests). When omitted the lifespan builds
    the real one from settings and tears it down on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        if services is not None:
            yield
            return

        pool = await init_pool(settings)
        await ensure_schema(pool)
        built = build_services(settings, pool)
        app.state.services = built

        stop = asyncio.Event()
        cleanup_task: Optional[asyncio.Task] = None
        if settings.CLEANUP_ENABLED:
            cleanup_task = asyncio.create_task(
                cleanup_worker.run_forever(
                    built.status,
                    built.output,
                    interval_seconds=settings.CLEANUP_INTERVAL_SECONDS,
                    job_hours=settings.JOB_RETENTION_HOURS,
                    output_hours=settings.OUTPUT_RETENTION_HOURS,
                    stop=stop,
                ),
                name="cleanup_worker",
            )

        logger.info("service_started", extra={"service": settings.SERVICE_NAME, "env": settings.ENVIRONMENT})
        try:
            yield
        finally:
            stop.set()
            if cleanup_task is not None:
                cleanup_task.cancel()
                with suppress(asyncio.CancelledError):
                    await cleanup_task
            await built.close()
            logger.info("service_stopped", extra={"service": settings.SERVICE_NAME})

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app, settings)
    app.include_router(build_router(), prefix=settings.API_PREFIX)

    @app.get("/")
    async def root():
        return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION, "status": "ok"}

    return app


app = create_app()
