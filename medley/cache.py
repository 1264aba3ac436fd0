from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from pydantic import ValidationError

from medley.domain.models import JobSnapshot

logger = logging.getLogger("medley.cache")


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def search_key(query: str) -> str:
    return f"search:{(query or '').strip().lower()}"


class RedisCache:
    """
    Expiring projection of job rows plus search results.

    Never authoritative. Callers decide whether a RedisError is fatal
    (it never is for job status or search).
    """

    def __init__(self, client: redis.Redis, *, job_ttl: int, search_ttl: int):
        self.client = client
        self.job_ttl = int(job_ttl)
        self.search_ttl = int(search_ttl)

    @classmethod
    def from_url(cls, url: str, *, job_ttl: int, search_ttl: int) -> "RedisCache":
        client = redis.Redis.from_url(url, decode_responses=True)
        return cls(client, job_ttl=job_ttl, search_ttl=search_ttl)

    # ---- jobs ---------------------------------------------------------------

    async def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        key = job_key(job_id)
        raw = await self.client.get(key)
        if raw is None:
            return None
        try:
            return JobSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("cache_entry_malformed", extra={"key": key, "error": str(e)})
            await self.client.delete(key)
            return None

    async def set_job(self, snap: JobSnapshot) -> None:
        payload = snap.model_dump_json(by_alias=True)
        await self.client.set(job_key(snap.job_id), payload, ex=self.job_ttl)

    async def delete_job(self, job_id: str) -> None:
        await self.client.delete(job_key(job_id))

    # ---- search -------------------------------------------------------------

    async def get_search(self, query: str) -> Optional[Dict[str, Any]]:
        key = search_key(query)
        raw = await self.client.get(key)
        if raw is None:
            return None
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError:
            obj = None
        if not isinstance(obj, dict) or not isinstance(obj.get("songs"), list):
            logger.warning("cache_entry_malformed", extra={"key": key})
            await self.client.delete(key)
            return None
        return obj

    async def set_search(self, query: str, limit: int, songs: List[Dict[str, Any]]) -> None:
        payload = json.dumps({"limit": int(limit), "songs": songs})
        await self.client.set(search_key(query), payload, ex=self.search_ttl)

    # ---- lifecycle ----------------------------------------------------------

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()
