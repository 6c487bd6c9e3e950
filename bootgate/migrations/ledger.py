"""Migration ledger — the durable record of applied steps, and the lock around it.

Lives in a SQLite database (usually the application's own) in two tables:

  bootgate_ledger(step_id PRIMARY KEY, checksum, applied_at)
  bootgate_lock(id = 1, holder, acquired_at, expires_at)

The connection runs in autocommit mode and every write goes through an
explicit ``BEGIN IMMEDIATE`` so a step's effect and its ledger row commit
together. The lock is a single row: whoever inserts it owns migrations
until they delete it. A row whose lease has expired belongs to a runner
that died and may be taken over.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

import aiosqlite

from bootgate.exceptions import LockLostError, LockTimeoutError
from bootgate.types import LedgerEntry, utcnow

_logger = logging.getLogger(__name__)

LEDGER_TABLE = "bootgate_ledger"
LOCK_TABLE = "bootgate_lock"

_SCHEMA = [
    f"CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} ("
    "step_id TEXT PRIMARY KEY, checksum TEXT NOT NULL, applied_at TEXT NOT NULL)",
    f"CREATE TABLE IF NOT EXISTS {LOCK_TABLE} ("
    "id INTEGER PRIMARY KEY CHECK (id = 1), holder TEXT NOT NULL, "
    "acquired_at TEXT NOT NULL, expires_at REAL NOT NULL)",
]


class MigrationLedger:
    """Applied-step ledger backed by one aiosqlite connection."""

    def __init__(self, location: str, busy_timeout: float = 30.0) -> None:
        self.location = location
        self._busy_timeout = busy_timeout
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(
            self.location, isolation_level=None, timeout=self._busy_timeout,
        )
        for ddl in _SCHEMA:
            await self._db.execute(ddl)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> MigrationLedger:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("ledger is not initialized")
        return self._db

    # ── Entries ──────────────────────────────────────────────────

    async def load(self) -> dict[str, LedgerEntry]:
        """All recorded steps, keyed by id, in id order."""
        cursor = await self.db.execute(
            f"SELECT step_id, checksum, applied_at FROM {LEDGER_TABLE} ORDER BY step_id"
        )
        rows = await cursor.fetchall()
        return {
            row[0]: LedgerEntry(
                step_id=row[0],
                checksum=row[1],
                applied_at=datetime.fromisoformat(row[2]),
            )
            for row in rows
        }

    async def record(self, step_id: str, checksum: str, applied_at: datetime | None = None) -> None:
        """Append a row. Call inside ``transaction()`` alongside the step's effect."""
        await self.db.execute(
            f"INSERT INTO {LEDGER_TABLE} (step_id, checksum, applied_at) VALUES (?, ?, ?)",
            (step_id, checksum, (applied_at or utcnow()).isoformat()),
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Everything inside commits together, or not at all."""
        db = self.db
        await db.execute("BEGIN IMMEDIATE")
        try:
            yield db
            await db.execute("COMMIT")
        except BaseException:
            if db.in_transaction:
                await db.execute("ROLLBACK")
            raise

    # ── Lock ─────────────────────────────────────────────────────

    async def try_acquire(self, holder: str, lease: float) -> str | None:
        """Take the lock if free (or abandoned). Returns None on success, else the current holder."""
        now = time.time()
        try:
            async with self.transaction() as db:
                cursor = await db.execute(
                    f"SELECT holder, expires_at FROM {LOCK_TABLE} WHERE id = 1"
                )
                row = await cursor.fetchone()
                if row is not None:
                    current, expires_at = row
                    if current == holder:
                        return None
                    if expires_at > now:
                        return current
                    _logger.warning(
                        "Taking over ledger lock abandoned by %s (lease expired %.1fs ago)",
                        current, now - expires_at,
                    )
                    await db.execute(f"DELETE FROM {LOCK_TABLE} WHERE id = 1")
                await db.execute(
                    f"INSERT INTO {LOCK_TABLE} (id, holder, acquired_at, expires_at) "
                    "VALUES (1, ?, ?, ?)",
                    (holder, utcnow().isoformat(), now + lease),
                )
        except sqlite3.OperationalError as e:
            # Another writer kept the database busy past the busy timeout
            _logger.debug("Ledger busy while acquiring lock: %s", e)
            return "(busy)"
        return None

    async def refresh(self, holder: str, lease: float) -> None:
        """Extend our lease so a long migration is not mistaken for a dead one.

        Raises LockLostError if the row is no longer ours (the lease ran out
        and another runner took over).
        """
        async with self.transaction() as db:
            cursor = await db.execute(
                f"UPDATE {LOCK_TABLE} SET expires_at = ? WHERE id = 1 AND holder = ?",
                (time.time() + lease, holder),
            )
            updated = cursor.rowcount
        if updated == 0:
            raise LockLostError(holder, await self.current_holder())

    async def release(self, holder: str) -> None:
        async with self.transaction() as db:
            await db.execute(f"DELETE FROM {LOCK_TABLE} WHERE id = 1 AND holder = ?", (holder,))

    async def _set_busy_timeout(self, seconds: float) -> None:
        await self.db.execute(f"PRAGMA busy_timeout = {int(seconds * 1000)}")

    async def current_holder(self) -> str | None:
        cursor = await self.db.execute(f"SELECT holder FROM {LOCK_TABLE} WHERE id = 1")
        row = await cursor.fetchone()
        return row[0] if row else None

    @asynccontextmanager
    async def lock(
        self,
        holder: str,
        timeout: float,
        lease: float = 300.0,
        poll_interval: float = 0.25,
    ) -> AsyncIterator[None]:
        """Hold the ledger lock for the duration of the block."""
        started = time.monotonic()
        try:
            while True:
                # Each attempt blocks in the busy handler for at most the remaining budget
                remaining = timeout - (time.monotonic() - started)
                await self._set_busy_timeout(min(self._busy_timeout, max(remaining, 0.0)))
                current = await self.try_acquire(holder, lease)
                if current is None:
                    break
                waited = time.monotonic() - started
                if waited >= timeout:
                    raise LockTimeoutError(current, waited)
                _logger.debug("Ledger lock held by %s, waiting (%.1fs so far)", current, waited)
                await asyncio.sleep(min(poll_interval, timeout - waited))
        finally:
            await self._set_busy_timeout(self._busy_timeout)

        _logger.debug("Ledger lock acquired by %s", holder)
        try:
            yield
        finally:
            await self.release(holder)
            _logger.debug("Ledger lock released by %s", holder)
