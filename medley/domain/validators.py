from __future__ import annotations

import uuid
from typing import Optional

from medley.errors import BadRequestError


def _is_uuid(s: str) -> bool:
    try:
        uuid.UUID(str(s))
        return True
    except (ValueError, TypeError):
        return False


def require_job_id(job_id: str) -> str:
    s = (job_id or "").strip()
    if not _is_uuid(s):
        raise BadRequestError("Invalid job ID")
    return str(uuid.UUID(s))


def require_file_id(file_id: str) -> str:
    s = (file_id or "").strip()
    if not _is_uuid(s):
        raise BadRequestError("Invalid file ID")
    return str(uuid.UUID(s))


def clamp_count(raw: Optional[str], default: int, maximum: int = 100, minimum: int = 1) -> int:
    """Lenient query-string integer: bad or out-of-range input falls back, never errors."""
    try:
        n = int(str(raw).strip())
    except (ValueError, TypeError):
        return default
    if n < minimum:
        return default
    return min(n, maximum)
