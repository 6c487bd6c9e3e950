"""Shared test fixtures — scripted probes and recording migration steps."""

from __future__ import annotations

import asyncio
import os
import tempfile

import pytest

from bootgate.migrations.ledger import MigrationLedger
from bootgate.migrations.runner import MigrationRunner
from bootgate.migrations.step import MigrationStep, compute_checksum
from bootgate.probes.base import BaseProbe
from bootgate.readiness.backoff import BackoffPolicy
from bootgate.readiness.gate import Dependency

FAST_BACKOFF = BackoffPolicy(base=0.01, cap=0.05, jitter=0)


class ScriptedProbe(BaseProbe):
    """Fails ``failures`` times, then succeeds. ``failures=None`` never succeeds."""

    kind = "scripted"

    def __init__(self, failures: int | None = 0, exc: Exception | None = None, delay: float = 0.0):
        super().__init__(target="fake", timeout=1.0)
        self.failures = failures
        self.calls = 0
        self._exc = exc or ConnectionRefusedError("connection refused")
        self._delay = delay

    async def _attempt(self) -> bool:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self.failures is None or self.calls <= self.failures:
            raise self._exc
        return True


def make_dependency(name: str = "db", failures: int | None = 0, timeout: float = 2.0, **kwargs) -> Dependency:
    probe = kwargs.pop("probe", None) or ScriptedProbe(failures=failures)
    return Dependency(
        name=name,
        probe=probe,
        timeout=timeout,
        probe_timeout=kwargs.pop("probe_timeout", 0.5),
        backoff=kwargs.pop("backoff", FAST_BACKOFF),
        **kwargs,
    )


class StepRecorder:
    """Builds steps that create a table each and remember which ones ran."""

    def __init__(self) -> None:
        self.applied: list[str] = []

    def step(self, step_id: str, fail: bool = False, checksum: str | None = None) -> MigrationStep:
        table = "t_" + "".join(c if c.isalnum() else "_" for c in step_id)

        async def apply(db) -> None:
            self.applied.append(step_id)
            await db.execute(f"CREATE TABLE {table} (id INTEGER PRIMARY KEY)")
            if fail:
                raise RuntimeError(f"{step_id} exploded")

        return MigrationStep(
            id=step_id,
            apply=apply,
            checksum=checksum or compute_checksum(step_id),
            source_ref=f"test:{step_id}",
        )

    def steps(self, *ids: str, fail_on: str | None = None) -> list[MigrationStep]:
        return [self.step(i, fail=(i == fail_on)) for i in ids]


@pytest.fixture
def db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    for suffix in ("", "-journal", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def recorder():
    return StepRecorder()


@pytest.fixture
async def ledger(db_path):
    led = MigrationLedger(db_path)
    await led.initialize()
    yield led
    await led.close()


@pytest.fixture
async def make_runner(db_path):
    """Factory for runners on the shared ledger file; closes every ledger afterwards."""
    created: list[MigrationLedger] = []

    def _factory(**kwargs) -> MigrationRunner:
        led = MigrationLedger(db_path)
        created.append(led)
        kwargs.setdefault("lock_timeout", 5.0)
        kwargs.setdefault("poll_interval", 0.01)
        return MigrationRunner(led, **kwargs)

    yield _factory

    for led in created:
        await led.close()
