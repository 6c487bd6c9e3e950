"""Probe base — one bounded check of one dependency.

Concrete probes implement ``_attempt()``: return normally (or ``True``) when
the dependency is usable, return ``False`` or raise when it is not. The base
class enforces the timeout and turns every outcome into a ``ProbeResult``,
so ``check()`` itself never raises for resource-level failures.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from bootgate.types import ErrorKind, ProbeResult

DEFAULT_PROBE_TIMEOUT = 5.0


class BaseProbe(ABC):
    """Abstract probe with a per-call timeout."""

    kind: str = "base"

    def __init__(self, target: str = "", timeout: float = DEFAULT_PROBE_TIMEOUT) -> None:
        self.target = target
        self.timeout = timeout

    async def check(self, timeout: float | None = None) -> ProbeResult:
        limit = self.timeout if timeout is None else timeout
        started = time.monotonic()
        try:
            outcome = await asyncio.wait_for(self._attempt(), timeout=limit)
        except asyncio.TimeoutError:
            return ProbeResult.failure(
                ErrorKind.TIMEOUT,
                detail=f"no answer from {self.describe()} within {limit:.2f}s",
                latency_ms=_elapsed_ms(started),
            )
        except Exception as e:
            return ProbeResult.failure(
                ErrorKind.UNREACHABLE,
                detail=f"{type(e).__name__}: {e}",
                latency_ms=_elapsed_ms(started),
            )

        if outcome is False:
            return ProbeResult.failure(
                ErrorKind.UNREACHABLE,
                detail=f"{self.describe()} reported not ready",
                latency_ms=_elapsed_ms(started),
            )
        return ProbeResult.success(latency_ms=_elapsed_ms(started))

    @abstractmethod
    async def _attempt(self) -> bool | None:
        """Touch the resource once. Subclasses implement this."""
        ...

    def describe(self) -> str:
        return f"{self.kind}:{self.target}" if self.target else self.kind

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.describe()}>"


class FunctionProbe(BaseProbe):
    """Wraps a plain callable (sync or async) that returns a truthy readiness flag."""

    kind = "callable"

    def __init__(
        self,
        fn: Callable[[], bool | Awaitable[bool]],
        target: str = "",
        timeout: float = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        super().__init__(target=target or getattr(fn, "__qualname__", "fn"), timeout=timeout)
        self._fn = fn

    async def _attempt(self) -> bool:
        result: Any = self._fn()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)
