"""Core types shared across all bootgate subsystems."""

from __future__ import annotations

import os
import socket
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ── ID Types ──────────────────────────────────────────────────────────────────


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def holder_id() -> str:
    """Identity used when taking the ledger lock: host, pid and a random suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{new_id()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Probes ───────────────────────────────────────────────────────────────────


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"


class ProbeResult(BaseModel):
    """Outcome of one probe attempt. Superseded, never mutated."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    error: ErrorKind | None = None
    observed_at: datetime = Field(default_factory=utcnow)
    detail: str = ""
    latency_ms: float = 0.0

    @classmethod
    def success(cls, latency_ms: float = 0.0) -> ProbeResult:
        return cls(ok=True, latency_ms=latency_ms)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str = "", latency_ms: float = 0.0) -> ProbeResult:
        return cls(ok=False, error=error, detail=detail, latency_ms=latency_ms)


# ── Coordinator States ───────────────────────────────────────────────────────


class CoordinatorPhase(str, Enum):
    INITIALIZING = "initializing"
    WAITING_ON_DEPENDENCIES = "waiting_on_dependencies"
    MIGRATING = "migrating"
    READY = "ready"
    FAILED = "failed"


class FailureReason(str, Enum):
    CONFIG_INVALID = "config_invalid"
    DEPENDENCY_UNREADY = "dependency_unready"
    MIGRATION_FAILED = "migration_failed"
    DRIFT = "drift"
    LOCK_TIMEOUT = "lock_timeout"
    CANCELLED = "cancelled"


# Process exit code per terminal outcome (one-shot bootstrap mode)
EXIT_CODES: dict[FailureReason | None, int] = {
    None: 0,
    FailureReason.CONFIG_INVALID: 2,
    FailureReason.DEPENDENCY_UNREADY: 3,
    FailureReason.MIGRATION_FAILED: 4,
    FailureReason.DRIFT: 5,
    FailureReason.LOCK_TIMEOUT: 6,
    FailureReason.CANCELLED: 7,
}


class CoordinatorState(BaseModel):
    """Current coordinator phase, plus the failure reason once FAILED."""

    model_config = ConfigDict(frozen=True)

    phase: CoordinatorPhase
    reason: FailureReason | None = None
    detail: str = ""
    changed_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _reason_only_when_failed(self) -> CoordinatorState:
        if (self.phase == CoordinatorPhase.FAILED) != (self.reason is not None):
            raise ValueError("reason must be set exactly when phase is FAILED")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.phase in (CoordinatorPhase.READY, CoordinatorPhase.FAILED)

    @property
    def exit_code(self) -> int:
        if self.phase == CoordinatorPhase.READY:
            return 0
        if self.phase == CoordinatorPhase.FAILED:
            return EXIT_CODES[self.reason]
        return 1

    def __str__(self) -> str:
        if self.reason is not None:
            return f"{self.phase.value}({self.reason.value})"
        return self.phase.value


# ── Ledger ───────────────────────────────────────────────────────────────────


class LedgerEntry(BaseModel):
    """One durable record of an applied migration step."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    checksum: str
    applied_at: datetime
