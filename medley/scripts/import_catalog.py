from __future__ import annotations

import asyncio
import csv
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from medley.config import settings
from medley.db import ensure_schema, init_pool
from medley.logging import configure_logging
from medley.repos.songs_repo import SongsRepo

logger = logging.getLogger("import_catalog")

# column order of the catalog export (no header row)
CATALOG_COLUMNS = ("midi_key", "token_key", "artist", "title")


def read_catalog_csv(path: Path) -> List[Dict[str, Optional[str]]]:
    """Parse catalog rows, trimming fields and dropping rows without midi/artist/title."""
    rows: List[Dict[str, Optional[str]]] = []
    with path.open("r", encoding="utf-8", newline="") as f:
        for lineno, rec in enumerate(csv.reader(f), start=1):
            vals = [(v or "").strip() for v in rec] + [""] * len(CATALOG_COLUMNS)
            row = dict(zip(CATALOG_COLUMNS, vals))
            if not row["midi_key"] or not row["artist"] or not row["title"]:
                logger.warning("catalog_row_skipped", extra={"line": lineno, "row": row})
                continue
            row["token_key"] = row["token_key"] or None
            rows.append(row)
    return rows


async def import_catalog(path: Path) -> int:
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    rows = read_catalog_csv(path)
    logger.info("catalog_parsed", extra={"path": str(path), "rows": len(rows)})
    if not rows:
        logger.warning("catalog_empty", extra={"path": str(path)})
        return 0

    pool = await init_pool(settings)
    try:
        await ensure_schema(pool)
        inserted = await SongsRepo(pool).bulk_insert(rows)
    finally:
        await pool.close()

    logger.info("catalog_imported", extra={"inserted": inserted, "parsed": len(rows)})
    return inserted


def main() -> int:
    if len(sys.argv) != 2:
        print("Usage:")
        print("  python -m medley.scripts.import_catalog <path-to-csv>")
        return 2

    configure_logging()
    try:
        inserted = asyncio.run(import_catalog(Path(sys.argv[1])))
    except FileNotFoundError as e:
        print(f"FAIL: {e}")
        return 1

    print(f"OK: inserted {inserted} songs")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
