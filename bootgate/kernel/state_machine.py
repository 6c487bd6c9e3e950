"""Coordinator state machine — enforces valid startup phase transitions."""

from __future__ import annotations

import asyncio
from typing import Callable, Awaitable

from bootgate.types import CoordinatorPhase, CoordinatorState, FailureReason
from bootgate.exceptions import CoordinatorStateError

TransitionCallback = Callable[[CoordinatorState, CoordinatorState], Awaitable[None]]

# Valid phase transitions: forward only, FAILED from anywhere non-terminal
VALID_TRANSITIONS: dict[CoordinatorPhase, set[CoordinatorPhase]] = {
    CoordinatorPhase.INITIALIZING: {
        CoordinatorPhase.WAITING_ON_DEPENDENCIES,
        CoordinatorPhase.FAILED,
    },
    CoordinatorPhase.WAITING_ON_DEPENDENCIES: {
        CoordinatorPhase.MIGRATING,
        CoordinatorPhase.FAILED,
    },
    CoordinatorPhase.MIGRATING: {
        CoordinatorPhase.READY,
        CoordinatorPhase.FAILED,
    },
    CoordinatorPhase.READY: set(),  # terminal
    CoordinatorPhase.FAILED: set(),  # terminal
}


class CoordinatorStateMachine:
    """Holds the coordinator's current state and notifies listeners on change.

    The state is a value, never a process-wide flag: callers read it from
    the machine they were handed.
    """

    def __init__(self) -> None:
        self._state = CoordinatorState(phase=CoordinatorPhase.INITIALIZING)
        self._history: list[CoordinatorState] = [self._state]
        self._listeners: list[TransitionCallback] = []
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def phase(self) -> CoordinatorPhase:
        return self._state.phase

    @property
    def history(self) -> list[CoordinatorState]:
        return list(self._history)

    async def transition(self, target: CoordinatorPhase, detail: str = "") -> CoordinatorState:
        if target == CoordinatorPhase.FAILED:
            raise CoordinatorStateError("use fail() to enter the failed phase")
        return await self._move(CoordinatorState(phase=target, detail=detail))

    async def fail(self, reason: FailureReason, detail: str = "") -> CoordinatorState:
        return await self._move(
            CoordinatorState(phase=CoordinatorPhase.FAILED, reason=reason, detail=detail)
        )

    async def _move(self, new: CoordinatorState) -> CoordinatorState:
        async with self._lock:
            valid = VALID_TRANSITIONS.get(self._state.phase, set())
            if new.phase not in valid:
                raise CoordinatorStateError(
                    f"Cannot transition coordinator from {self._state} to {new.phase.value}"
                )
            old = self._state
            self._state = new
            self._history.append(new)
        # Notify listeners outside the lock
        for listener in self._listeners:
            await listener(old, new)
        return new

    def on_transition(self, callback: TransitionCallback) -> None:
        self._listeners.append(callback)
