"""Custom exception hierarchy for bootgate."""

from __future__ import annotations

from typing import Any


class BootgateError(Exception):
    """Base for all bootgate errors."""


class ConfigInvalidError(BootgateError):
    """Coordinator configuration is inconsistent. Fix the config, do not retry."""


class CoordinatorStateError(BootgateError):
    """Invalid coordinator phase transition."""


# ── Readiness ────────────────────────────────────────────────────────────────


class GateError(BootgateError):
    """A readiness gate gave up on its dependency."""

    def __init__(self, dependency: str, message: str) -> None:
        super().__init__(message)
        self.dependency = dependency


class DeadlineExceededError(GateError):
    """Dependency did not become ready before its timeout."""

    def __init__(self, dependency: str, elapsed: float, last_result: Any = None) -> None:
        last_error = getattr(last_result, "error", None)
        detail = getattr(last_result, "detail", "")
        kind = last_error.value if last_error is not None else "none"
        super().__init__(
            dependency,
            f"dependency '{dependency}' not ready after {elapsed:.1f}s "
            f"(last error: {kind}{': ' + detail if detail else ''})",
        )
        self.elapsed = elapsed
        self.last_result = last_result


class GateCancelledError(GateError):
    """Gate aborted by an external cancellation signal."""

    def __init__(self, dependency: str) -> None:
        super().__init__(dependency, f"gate for '{dependency}' cancelled")


# ── Migrations ───────────────────────────────────────────────────────────────


class MigrationError(BootgateError):
    """Base for migration runner failures."""


class DriftError(MigrationError):
    """A recorded step no longer matches its current definition."""

    def __init__(self, step_id: str, recorded: str, current: str) -> None:
        super().__init__(
            f"step '{step_id}' drifted: recorded checksum {recorded[:12]} "
            f"!= current {current[:12]}"
        )
        self.step_id = step_id
        self.recorded = recorded
        self.current = current


class StepFailedError(MigrationError):
    """A step's apply operation failed and was rolled back."""

    def __init__(self, step_id: str, cause: BaseException) -> None:
        super().__init__(f"step '{step_id}' failed: {cause!r}")
        self.step_id = step_id
        self.cause = cause


class LockTimeoutError(MigrationError):
    """Another runner held the ledger lock for longer than we were willing to wait."""

    def __init__(self, holder: str | None, waited: float) -> None:
        super().__init__(
            f"ledger lock not acquired after {waited:.1f}s (held by {holder or 'unknown'})"
        )
        self.holder = holder
        self.waited = waited


class MigrationCancelledError(MigrationError):
    """Cancellation observed between two steps."""

    def __init__(self, next_step: str, applied: int) -> None:
        super().__init__(
            f"migration cancelled before step '{next_step}' ({applied} applied)"
        )
        self.next_step = next_step
        self.applied = applied


class LockLostError(MigrationError):
    """Our lease on the ledger lock expired and another runner took it over."""

    def __init__(self, holder: str, current: str | None) -> None:
        super().__init__(
            f"ledger lock held by {holder} was lost (now held by {current or 'nobody'})"
        )
        self.holder = holder
        self.current = current
