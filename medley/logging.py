from __future__ import annotations

import logging
import os
from typing import Dict, Optional

from pythonjsonlogger import jsonlogger

from medley.config import Settings, settings as default_settings

# logger name -> env var that overrides its WARNING default
QUIET_LOGGERS: Dict[str, str] = {
    "httpx": "HTTPX_LOG_LEVEL",
    "uvicorn.access": "UVICORN_ACCESS_LOG_LEVEL",
    "azure": "AZURE_LOG_LEVEL",
    "asyncpg": "ASYNCPG_LOG_LEVEL",
}

_HANDLER_NAME = "medley-json"


def build_handler(cfg: Settings) -> logging.Handler:
    """stdout JSON lines; every record carries the service name and environment."""
    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
            static_fields={"service": cfg.SERVICE_NAME, "env": cfg.ENVIRONMENT},
        )
    )
    return handler


def configure_logging(cfg: Optional[Settings] = None) -> None:
    cfg = cfg or default_settings
    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO))

    if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        return
    root.addHandler(build_handler(cfg))

    for name, env in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(os.getenv(env, "WARNING").upper())
