from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from medley.cache import RedisCache
from medley.domain.models import Song
from medley.repos.songs_repo import SongsRepo

logger = logging.getLogger("song_resolver")

MIN_SEARCH_CHARS = 2


class SongResolver:
    """
    Maps free-text titles onto catalog rows.

    Exact title hits are widened to every version sharing the base title
    ("Fugue" -> "Fugue.1", "Fugue.2"). Misses fall back to ranked fuzzy
    matching, whose top candidates are widened the same way.
    """

    def __init__(self, songs: SongsRepo, cache: Optional[RedisCache] = None, *, fuzzy_candidates: int = 5):
        self.songs = songs
        self.cache = cache
        self.fuzzy_candidates = max(1, int(fuzzy_candidates))

    async def _expand_versions(self, matches: Iterable[Song]) -> List[Song]:
        out: List[Song] = []
        seen_bases: set[str] = set()
        for m in matches:
            out.append(m)
            key = m.base_title.lower()
            if key in seen_bases:
                continue
            seen_bases.add(key)
            rows = await self.songs.find_versions(m.base_title)
            out.extend(Song.from_row(r) for r in rows)
        return out

    async def resolve(self, titles: List[str]) -> List[Song]:
        resolved: Dict[str, Song] = {}

        for raw in titles:
            title = (raw or "").strip()
            if not title:
                continue

            exact = [Song.from_row(r) for r in await self.songs.find_by_title(title)]
            if exact:
                found = await self._expand_versions(exact)
                how = "exact"
            else:
                fuzzy = await self.songs.search_ranked(title, self.fuzzy_candidates)
                found = await self._expand_versions(Song.from_row(r) for r in fuzzy)
                how = "fuzzy"

            if not found:
                logger.warning("song_not_resolved", extra={"title": title})
                continue

            for s in found:
                resolved.setdefault(s.id, s)
            logger.info("song_resolved", extra={"title": title, "match": how, "count": len(found)})

        return list(resolved.values())

    async def search(self, query: str, limit: int = 20) -> List[Song]:
        q = (query or "").strip()
        if len(q) < MIN_SEARCH_CHARS:
            return []

        cached = await self._cached_search(q, limit)
        if cached is not None:
            return cached

        rows = await self.songs.search_distinct(q, limit)
        # one row per base title; show the base title, not the versioned one
        results = [Song.from_row({**r, "title": r["base_title"]}) for r in rows]

        if self.cache is not None:
            try:
                await self.cache.set_search(q, limit, [s.model_dump() for s in results])
            except RedisError as e:
                logger.warning("search_cache_write_failed", extra={"query": q, "error": str(e)})
        return results

    async def _cached_search(self, q: str, limit: int) -> Optional[List[Song]]:
        if self.cache is None:
            return None
        try:
            hit = await self.cache.get_search(q)
        except RedisError as e:
            logger.warning("search_cache_read_failed", extra={"query": q, "error": str(e)})
            return None
        # a smaller cached page can't answer a bigger request
        if hit is None or int(hit.get("limit") or 0) < limit:
            return None
        try:
            return [Song.model_validate(s) for s in hit["songs"][:limit]]
        except ValidationError:
            return None

    async def all_songs(self) -> List[Song]:
        return [Song.from_row(r) for r in await self.songs.list_all()]
