"""Migration runner — applies pending steps exactly once across the fleet.

Only one runner at a time holds the ledger lock. Everyone else waits for
it, then finds their steps already recorded and does nothing. Inside the
lock, each pending step runs in its own transaction together with its
ledger row, so the ledger never claims a step that did not commit.

A step that was recorded under a different checksum is drift: we stop
before applying anything rather than guess which definition is right.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from bootgate.config import settings
from bootgate.events.bus import MIGRATION_APPLIED
from bootgate.exceptions import DriftError, MigrationCancelledError, StepFailedError
from bootgate.migrations.ledger import MigrationLedger
from bootgate.migrations.step import MigrationStep, validate_steps
from bootgate.types import holder_id, utcnow

_logger = logging.getLogger(__name__)


class MigrationRunner:
    """Sequences migration steps against one ledger."""

    def __init__(
        self,
        ledger: MigrationLedger,
        lock_timeout: float | None = None,
        lock_lease: float | None = None,
        poll_interval: float | None = None,
        holder: str | None = None,
        event_bus: Any | None = None,
    ) -> None:
        self.ledger = ledger
        self.holder = holder or holder_id()
        self._lock_timeout = settings.lock_timeout if lock_timeout is None else lock_timeout
        self._lock_lease = settings.lock_lease if lock_lease is None else lock_lease
        self._poll_interval = settings.lock_poll_interval if poll_interval is None else poll_interval
        self._bus = event_bus

    async def run(
        self,
        steps: Sequence[MigrationStep],
        cancel: asyncio.Event | None = None,
    ) -> int:
        """Apply every unrecorded step in id order. Returns how many were applied."""
        validate_steps(steps)
        if not steps:
            return 0

        await self.ledger.initialize()
        async with self.ledger.lock(
            self.holder,
            timeout=self._lock_timeout,
            lease=self._lock_lease,
            poll_interval=self._poll_interval,
        ):
            recorded = await self.ledger.load()
            self._check_drift(steps, recorded)

            known = {s.id for s in steps}
            for step_id in recorded:
                if step_id not in known:
                    _logger.warning("Ledger has step '%s' with no current definition", step_id)

            pending = [s for s in steps if s.id not in recorded]
            if not pending:
                _logger.info("Ledger up to date (%d step(s) recorded), nothing to apply", len(recorded))
                return 0

            latest = max(recorded) if recorded else None
            applied = 0
            for step in pending:
                if cancel is not None and cancel.is_set():
                    raise MigrationCancelledError(step.id, applied)
                if latest is not None and step.id < latest:
                    _logger.warning(
                        "Applying step '%s' out of order (ledger already has '%s')",
                        step.id, latest,
                    )
                await self._apply(step)
                applied += 1
                await self.ledger.refresh(self.holder, self._lock_lease)

            _logger.info("Applied %d migration step(s)", applied)
            return applied

    def _check_drift(self, steps: Sequence[MigrationStep], recorded: dict) -> None:
        for step in steps:
            entry = recorded.get(step.id)
            if entry is not None and entry.checksum != step.checksum:
                raise DriftError(step.id, entry.checksum, step.checksum)

    async def _apply(self, step: MigrationStep) -> None:
        _logger.info("Applying migration step '%s'", step.id)
        try:
            async with self.ledger.transaction() as db:
                await step.apply(db)
                await self.ledger.record(step.id, step.checksum, utcnow())
        except Exception as e:
            _logger.error("Migration step '%s' failed, rolled back: %s", step.id, e)
            raise StepFailedError(step.id, e) from e

        if self._bus:
            await self._bus.emit(MIGRATION_APPLIED, {
                "step_id": step.id,
                "source_ref": step.source_ref,
            }, source="migration_runner")
