"""SQLite probe — open the database file and run a trivial query."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from bootgate.probes.base import BaseProbe, DEFAULT_PROBE_TIMEOUT


class SQLiteProbe(BaseProbe):
    """Ready once the file exists and answers ``SELECT 1``.

    The file is opened read-only so probing never creates an empty database.
    """

    kind = "sqlite"

    def __init__(self, target: str, timeout: float = DEFAULT_PROBE_TIMEOUT) -> None:
        super().__init__(target=target, timeout=timeout)

    async def _attempt(self) -> bool:
        path = Path(self.target)
        if not path.exists():
            raise FileNotFoundError(f"database file {path} does not exist")
        uri = f"{path.resolve().as_uri()}?mode=ro"
        async with aiosqlite.connect(uri, uri=True) as db:
            cursor = await db.execute("SELECT 1")
            row = await cursor.fetchone()
        return row is not None and row[0] == 1
