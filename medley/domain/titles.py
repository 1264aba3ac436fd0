from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

# "Fugue.2" -> ("Fugue", 2). Must stay in sync with the backfill in db.SCHEMA_SQL.
_VERSION_SUFFIX = re.compile(r"\.(\d+)$")


@dataclass(frozen=True)
class SongTitle:
    title: str
    base_title: str
    version: Optional[int] = None


def parse_title(title: str) -> SongTitle:
    raw = (title or "").strip()
    m = _VERSION_SUFFIX.search(raw)
    if not m:
        return SongTitle(title=raw, base_title=raw)
    return SongTitle(title=raw, base_title=raw[: m.start()].strip(), version=int(m.group(1)))


def song_label(title: str, artist: str) -> str:
    return f"{title} - {artist}"


def escape_like(q: str) -> str:
    """Escape LIKE wildcards so user input matches literally (ESCAPE '\\')."""
    return q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
