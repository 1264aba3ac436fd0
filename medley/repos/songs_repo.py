from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import asyncpg

from medley.domain.titles import escape_like, parse_title

logger = logging.getLogger("songs_repo")

_SONG_COLUMNS = "id::text AS id, title, artist, midi_key, token_key, base_title"

# $1 = escaped '%query%' (lowercased), $2 = lowercased query
_MATCH_WHERE = """
lower(title) LIKE $1 ESCAPE '\\'
OR lower(artist) LIKE $1 ESCAPE '\\'
OR lower(title || ' - ' || artist) LIKE $1 ESCAPE '\\'
"""

_MATCH_RANK = """
CASE
  WHEN lower(base_title) = $2 THEN 1
  WHEN lower(title || ' - ' || artist) = $2 THEN 2
  WHEN lower(title) LIKE $1 ESCAPE '\\' THEN 3
  ELSE 4
END
"""


def _match_params(query: str) -> tuple[str, str]:
    q = (query or "").strip().lower()
    return f"%{escape_like(q)}%", q


class SongsRepo:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def find_by_title(self, title: str) -> List[Dict[str, Any]]:
        sql = f"SELECT {_SONG_COLUMNS} FROM songs WHERE lower(title) = lower($1) ORDER BY title"
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, (title or "").strip())
        return [dict(r) for r in rows]

    async def find_versions(self, base_title: str) -> List[Dict[str, Any]]:
        sql = f"SELECT {_SONG_COLUMNS} FROM songs WHERE lower(base_title) = lower($1) ORDER BY title"
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, (base_title or "").strip())
        return [dict(r) for r in rows]

    async def search_ranked(self, query: str, limit: int) -> List[Dict[str, Any]]:
        pattern, q = _match_params(query)
        sql = f"""
        SELECT {_SONG_COLUMNS}
        FROM songs
        WHERE {_MATCH_WHERE}
        ORDER BY {_MATCH_RANK}, title
        LIMIT $3
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, pattern, q, int(limit))
        return [dict(r) for r in rows]

    async def search_distinct(self, query: str, limit: int) -> List[Dict[str, Any]]:
        """One row per base title, best-ranked version wins."""
        pattern, q = _match_params(query)
        sql = f"""
        SELECT DISTINCT ON (lower(base_title)) {_SONG_COLUMNS}
        FROM songs
        WHERE {_MATCH_WHERE}
        ORDER BY lower(base_title), {_MATCH_RANK}, title
        LIMIT $3
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql, pattern, q, int(limit))
        return [dict(r) for r in rows]

    async def list_all(self) -> List[Dict[str, Any]]:
        sql = f"SELECT {_SONG_COLUMNS} FROM songs ORDER BY title, artist"
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(sql)
        return [dict(r) for r in rows]

    async def bulk_insert(self, songs: Iterable[Dict[str, Optional[str]]], batch_size: int = 100) -> int:
        """
        Insert catalog rows in batches; each batch is its own transaction.
        A failing batch is logged and skipped.
        """
        sql = """
        INSERT INTO songs (title, base_title, artist, midi_key, token_key)
        VALUES ($1, $2, $3, $4, $5)
        """
        rows = [
            (
                s["title"],
                parse_title(str(s["title"])).base_title,
                s["artist"],
                s["midi_key"],
                s.get("token_key") or None,
            )
            for s in songs
        ]

        inserted = 0
        for i in range(0, len(rows), batch_size):
            batch = rows[i : i + batch_size]
            try:
                async with self.pool.acquire() as conn:
                    async with conn.transaction():
                        await conn.executemany(sql, batch)
                inserted += len(batch)
            except asyncpg.PostgresError as e:
                logger.error("catalog_batch_failed", extra={"offset": i, "size": len(batch), "error": str(e)})
            if i % 1000 == 0:
                logger.info("catalog_import_progress", extra={"processed": min(i + batch_size, len(rows)), "total": len(rows)})
        return inserted
