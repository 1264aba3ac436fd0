from __future__ import annotations

from fastapi import Depends, Request

from medley.services.container import Services
from medley.services.job_orchestrator import JobOrchestrator
from medley.services.song_resolver import SongResolver


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("services are not initialized")
    return services


def get_orchestrator(services: Services = Depends(get_services)) -> JobOrchestrator:
    return services.orchestrator


def get_resolver(services: Services = Depends(get_services)) -> SongResolver:
    return services.resolver


def get_output_store(services: Services = Depends(get_services)):
    return services.output
