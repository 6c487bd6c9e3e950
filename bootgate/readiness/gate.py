"""Readiness Gate — block until a dependency answers, or give up at its deadline.

A gate drives one dependency's probe sequentially: probe, and on failure
sleep for the backoff delay, then probe again. Failed attempts are absorbed
(logged at DEBUG). The gate ends in exactly one of three ways:

  - the probe reports ok          -> returns a GateReport
  - elapsed time passes timeout   -> DeadlineExceededError (last result attached)
  - the cancel event is set       -> GateCancelledError

Cancellation is looked at before every probe and every sleep, and wakes a
sleeping gate at once. A probe that has started is never interrupted; its
own timeout bounds it instead.

Usage:
    gate = ReadinessGate()
    dep = Dependency(name="db", probe=TCPProbe("db:5432"), timeout=30)
    report = await gate.wait(dep, cancel=shutdown_event)
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from bootgate.config import DependencyConfig, settings
from bootgate.events.bus import GATE_ATTEMPT
from bootgate.exceptions import DeadlineExceededError, GateCancelledError
from bootgate.probes.base import BaseProbe
from bootgate.probes.registry import build_probe
from bootgate.readiness.backoff import BackoffPolicy
from bootgate.types import ProbeResult

_logger = logging.getLogger(__name__)


class Dependency(BaseModel):
    """Something the service cannot start without. Immutable once built."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    probe: BaseProbe
    timeout: float = 30.0
    probe_timeout: float = 5.0
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    required: bool = True

    @classmethod
    def from_config(cls, config: DependencyConfig) -> Dependency:
        probe_timeout = config.probe_timeout or settings.probe_timeout
        return cls(
            name=config.name,
            probe=build_probe(config.probe_kind, config.target, probe_timeout),
            timeout=config.timeout,
            probe_timeout=probe_timeout,
            backoff=config.backoff,
            required=config.required,
        )


class GateReport(BaseModel):
    """How a successful gate got there."""

    dependency: str
    attempts: int
    failures: int
    elapsed: float
    result: ProbeResult


class ReadinessGate:
    """Retry-with-backoff wrapper around a Probe, bounded by a deadline."""

    def __init__(
        self,
        rng: random.Random | None = None,
        event_bus: Any | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rng = rng or random.Random()
        self._bus = event_bus
        self._clock = clock

    async def wait(
        self,
        dependency: Dependency,
        cancel: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> GateReport:
        """Wait for ``dependency``; ``deadline`` (seconds) overrides its timeout."""
        limit = dependency.timeout if deadline is None else deadline
        started = self._clock()
        attempts = 0
        last: ProbeResult | None = None

        while True:
            if _is_set(cancel):
                raise GateCancelledError(dependency.name)

            remaining = limit - (self._clock() - started)
            if attempts and remaining <= 0:
                raise DeadlineExceededError(dependency.name, self._clock() - started, last)

            probe_timeout = min(dependency.probe_timeout, max(remaining, 0.01))
            result = await dependency.probe.check(timeout=probe_timeout)
            attempts += 1
            await self._emit(dependency.name, attempts, result)

            if result.ok:
                elapsed = self._clock() - started
                _logger.info(
                    "Dependency '%s' ready after %d attempt(s) in %.2fs",
                    dependency.name, attempts, elapsed,
                )
                return GateReport(
                    dependency=dependency.name,
                    attempts=attempts,
                    failures=attempts - 1,
                    elapsed=elapsed,
                    result=result,
                )

            last = result
            _logger.debug(
                "Dependency '%s' not ready (attempt %d): %s %s",
                dependency.name, attempts, result.error.value if result.error else "?", result.detail,
            )

            elapsed = self._clock() - started
            if elapsed >= limit:
                raise DeadlineExceededError(dependency.name, elapsed, last)

            if _is_set(cancel):
                raise GateCancelledError(dependency.name)

            delay = min(dependency.backoff.delay(attempts - 1, self._rng), limit - elapsed)
            if await _sleep(delay, cancel):
                raise GateCancelledError(dependency.name)

    async def _emit(self, name: str, attempt: int, result: ProbeResult) -> None:
        if self._bus is None:
            return
        await self._bus.emit(GATE_ATTEMPT, {
            "dependency": name,
            "attempt": attempt,
            "ok": result.ok,
            "error": result.error.value if result.error else None,
            "detail": result.detail,
        }, source="readiness_gate")


def _is_set(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


async def _sleep(delay: float, cancel: asyncio.Event | None) -> bool:
    """Sleep for ``delay`` seconds. Returns True if woken by cancellation."""
    if cancel is None:
        await asyncio.sleep(delay)
        return False
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True
