from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from medley.config import Settings
from medley.errors import AppError

logger = logging.getLogger("medley.api")

_PYDANTIC_PREFIX = "Value error, "


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    msg = str(first.get("msg") or "Invalid request")
    if msg.startswith(_PYDANTIC_PREFIX):
        msg = msg[len(_PYDANTIC_PREFIX):]
    # missing / wrongly typed fields: name the field
    if first.get("type") in ("missing", "list_type", "string_type"):
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        if loc:
            msg = f"{loc}: {msg}"
    return msg


def install_error_handlers(app: FastAPI, settings: Settings) -> None:
    """
    Every error leaves as {"error", "status", "timestamp"}; path/method are
    added outside production. Non-operational messages are masked in production.
    """

    def respond(request: Request, status_code: int, message: str, *, operational: bool) -> JSONResponse:
        if settings.is_production and not operational:
            message = "Internal Server Error"

        body: Dict[str, Any] = {
            "error": message,
            "status": status_code,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if not settings.is_production:
            body["path"] = request.url.path
            body["method"] = request.method
        return JSONResponse(status_code=status_code, content=body)

    def log(request: Request, status_code: int, message: str, exc: BaseException) -> None:
        extra = {"method": request.method, "path": request.url.path, "status": status_code}
        if status_code >= 500:
            logger.error(f"Error {status_code}: {message}", extra=extra, exc_info=exc)
        else:
            logger.warning(f"Error {status_code}: {message}", extra=extra)

    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError) -> JSONResponse:
        log(request, exc.status_code, exc.message, exc)
        return respond(request, exc.status_code, exc.message, operational=exc.is_operational)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = _first_validation_message(exc)
        log(request, 400, message, exc)
        return respond(request, 400, message, operational=True)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = str(exc.detail)
        if exc.status_code == 404 and message == "Not Found":
            message = f"Route {request.url.path} not found"
        log(request, exc.status_code, message, exc)
        return respond(request, exc.status_code, message, operational=True)

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        log(request, 500, str(exc) or type(exc).__name__, exc)
        return respond(request, 500, str(exc) or "Internal Server Error", operational=False)
