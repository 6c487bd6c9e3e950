"""Backoff policy — how long a gate sleeps between probe attempts."""

from __future__ import annotations

import random

from pydantic import BaseModel, ConfigDict, Field


class BackoffPolicy(BaseModel):
    """Exponential backoff with jitter.

    The n-th delay (0-based) is ``min(cap, base * multiplier**n)``, then
    shortened by a random fraction of at most ``jitter``. With ``jitter=0``
    the sequence is deterministic.
    """

    model_config = ConfigDict(frozen=True)

    base: float = Field(default=0.2, gt=0)
    cap: float = Field(default=10.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.5, ge=0.0, le=1.0)

    def ceiling(self, attempt: int) -> float:
        """Delay before jitter is applied."""
        # Exponent is bounded so huge attempt counts do not overflow
        exponent = min(attempt, 64)
        return min(self.cap, self.base * self.multiplier**exponent)

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        ceiling = self.ceiling(attempt)
        if self.jitter == 0:
            return ceiling
        r = (rng or random).random()
        return ceiling * (1.0 - self.jitter * r)
