"""Service Coordinator — one startup sequence, one "ready" signal.

    INITIALIZING -> WAITING_ON_DEPENDENCIES -> MIGRATING -> READY
          \\                  \\                     \\
           `------------------`---------------------`--> FAILED(reason)

Initializing validates configuration. Waiting runs one readiness gate per
dependency, all at once, and moves on only when every required gate has
passed; the first required gate to give up stops the others. Migrating
invokes the runner exactly once. READY and FAILED are terminal: asking
again returns the same answer, and recovery means a fresh coordinator.

Usage:
    coordinator = ServiceCoordinator.from_config(load_config("bootgate.json"))
    state = await coordinator.run()
    sys.exit(state.exit_code)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from bootgate.config import CoordinatorConfig
from bootgate.events.bus import TRANSITION
from bootgate.exceptions import (
    ConfigInvalidError,
    DeadlineExceededError,
    DriftError,
    GateError,
    LockLostError,
    LockTimeoutError,
    MigrationCancelledError,
    StepFailedError,
)
from bootgate.kernel.state_machine import CoordinatorStateMachine
from bootgate.migrations.ledger import MigrationLedger
from bootgate.migrations.runner import MigrationRunner
from bootgate.migrations.step import MigrationStep, discover_steps, load_step, validate_steps
from bootgate.readiness.gate import Dependency, GateReport, ReadinessGate
from bootgate.types import CoordinatorPhase, CoordinatorState, FailureReason

_logger = logging.getLogger(__name__)


class ServiceCoordinator:
    """Sequences readiness gates, then migrations, then the ready signal."""

    def __init__(
        self,
        dependencies: Sequence[Dependency] = (),
        steps: Sequence[MigrationStep] = (),
        runner: MigrationRunner | None = None,
        gate: ReadinessGate | None = None,
        event_bus: Any | None = None,
        config_errors: Sequence[str] = (),
        owns_ledger: bool = False,
    ) -> None:
        self.dependencies = list(dependencies)
        self.steps = list(steps)
        self._runner = runner
        self._gate = gate or ReadinessGate(event_bus=event_bus)
        self._bus = event_bus
        self._config_errors = list(config_errors)
        self._owns_ledger = owns_ledger

        self._machine = CoordinatorStateMachine()
        self._machine.on_transition(self._on_transition)
        self._cancel = asyncio.Event()
        self._gates_stop = asyncio.Event()
        self._run_lock = asyncio.Lock()

        self.gate_reports: dict[str, GateReport] = {}
        self.gate_errors: dict[str, str] = {}
        self.applied_count: int | None = None

    @classmethod
    def from_config(
        cls,
        config: CoordinatorConfig,
        event_bus: Any | None = None,
        **runner_options: Any,
    ) -> ServiceCoordinator:
        """Build from declarative config.

        Problems found while building (unknown probe kinds, unreadable step
        sources) do not raise here; they make ``run()`` fail with CONFIG_INVALID.
        """
        errors: list[str] = []

        dependencies: list[Dependency] = []
        for dep_config in config.dependencies:
            try:
                dependencies.append(Dependency.from_config(dep_config))
            except ConfigInvalidError as e:
                errors.append(f"dependency '{dep_config.name}': {e}")

        steps: list[MigrationStep] = []
        try:
            validate_steps([s.id for s in config.migration_steps])
        except ConfigInvalidError as e:
            errors.append(str(e))
        for step_config in config.migration_steps:
            try:
                steps.append(load_step(step_config.id, step_config.source_ref, step_config.checksum))
            except ConfigInvalidError as e:
                errors.append(str(e))
        if config.migrations_dir is not None:
            try:
                steps.extend(discover_steps(config.migrations_dir))
            except ConfigInvalidError as e:
                errors.append(str(e))
        steps.sort(key=lambda s: s.id)

        runner = None
        if config.ledger_location:
            runner = MigrationRunner(
                MigrationLedger(config.ledger_location), event_bus=event_bus, **runner_options,
            )

        return cls(
            dependencies=dependencies,
            steps=steps,
            runner=runner,
            event_bus=event_bus,
            config_errors=errors,
            owns_ledger=runner is not None,
        )

    # ── Observation ──────────────────────────────────────────────

    @property
    def state(self) -> CoordinatorState:
        return self._machine.state

    @property
    def runner(self) -> MigrationRunner | None:
        return self._runner

    @property
    def history(self) -> list[CoordinatorState]:
        return self._machine.history

    def status(self) -> dict[str, Any]:
        """Snapshot for health endpoints. Pure read, never triggers work."""
        state = self.state
        deps: dict[str, dict[str, Any]] = {}
        for dep in self.dependencies:
            report = self.gate_reports.get(dep.name)
            deps[dep.name] = {
                "required": dep.required,
                "ready": report is not None,
                "attempts": report.attempts if report else None,
                "error": self.gate_errors.get(dep.name),
            }
        return {
            "phase": state.phase.value,
            "reason": state.reason.value if state.reason else None,
            "detail": state.detail,
            "changed_at": state.changed_at.isoformat(),
            "ready": state.phase == CoordinatorPhase.READY,
            "dependencies": deps,
            "migration_steps": len(self.steps),
            "applied_count": self.applied_count,
            "history": [str(s) for s in self.history],
        }

    # ── Control ──────────────────────────────────────────────────

    def cancel(self) -> None:
        """Request shutdown. Gates stop at once; migrations stop between steps."""
        self._cancel.set()
        self._gates_stop.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    async def run(self) -> CoordinatorState:
        """Drive the startup sequence to a terminal state and return it."""
        async with self._run_lock:
            if not self.state.is_terminal:
                await self._sequence()
        return self.state

    async def _sequence(self) -> None:
        try:
            self.validate()
        except ConfigInvalidError as e:
            await self._fail(FailureReason.CONFIG_INVALID, str(e))
            return

        if self.cancelled:
            await self._fail(FailureReason.CANCELLED, "cancelled before start")
            return

        await self._machine.transition(
            CoordinatorPhase.WAITING_ON_DEPENDENCIES,
            detail=f"{len(self.dependencies)} dependency gate(s)",
        )
        try:
            await self._await_dependencies()
        except GateError as e:
            reason = FailureReason.CANCELLED if self.cancelled else FailureReason.DEPENDENCY_UNREADY
            await self._fail(reason, str(e))
            return

        if self.cancelled:
            await self._fail(FailureReason.CANCELLED, "cancelled before migrations")
            return

        await self._machine.transition(
            CoordinatorPhase.MIGRATING, detail=f"{len(self.steps)} step(s) defined",
        )
        try:
            applied = await self._migrate()
        except DriftError as e:
            await self._fail(FailureReason.DRIFT, str(e))
            return
        except LockTimeoutError as e:
            await self._fail(FailureReason.LOCK_TIMEOUT, str(e))
            return
        except MigrationCancelledError as e:
            await self._fail(FailureReason.CANCELLED, str(e))
            return
        except (StepFailedError, LockLostError) as e:
            await self._fail(FailureReason.MIGRATION_FAILED, str(e))
            return
        except Exception as e:
            # Anything else (unreadable ledger, corrupt rows) must still end in a terminal phase
            _logger.exception("Migration phase raised unexpectedly")
            await self._fail(FailureReason.MIGRATION_FAILED, f"{type(e).__name__}: {e}")
            return

        self.applied_count = applied
        await self._machine.transition(
            CoordinatorPhase.READY, detail=f"{applied} migration step(s) applied",
        )

    def validate(self) -> None:
        """Raise ConfigInvalidError if the configuration cannot work. Does not change state."""
        if self._config_errors:
            raise ConfigInvalidError("; ".join(self._config_errors))

        seen: set[str] = set()
        for dep in self.dependencies:
            if not dep.name:
                raise ConfigInvalidError("dependency name must not be empty")
            if dep.name in seen:
                raise ConfigInvalidError(f"duplicate dependency name '{dep.name}'")
            if dep.timeout <= 0 or dep.probe_timeout <= 0:
                raise ConfigInvalidError(f"dependency '{dep.name}' needs positive timeouts")
            seen.add(dep.name)

        validate_steps(self.steps)
        if self.steps and self._runner is None:
            raise ConfigInvalidError("migration steps are defined but no ledger location is set")

    async def _await_dependencies(self) -> None:
        """Run every gate concurrently. Raises the first required gate's error."""
        if not self.dependencies:
            return

        tasks = {
            asyncio.create_task(self._gate.wait(dep, cancel=self._gates_stop)): dep
            for dep in self.dependencies
        }
        pending = set(tasks)
        failure: GateError | None = None
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    dep = tasks[task]
                    exc = task.exception()
                    if exc is None:
                        self.gate_reports[dep.name] = task.result()
                        continue
                    if not isinstance(exc, GateError):
                        raise exc
                    self.gate_errors[dep.name] = str(exc)
                    if not dep.required and isinstance(exc, DeadlineExceededError):
                        _logger.warning("Optional dependency '%s' not ready, continuing: %s", dep.name, exc)
                        continue
                    if failure is None:
                        failure = exc
                        # Partial readiness is never enough: stop the other gates
                        self._gates_stop.set()
        finally:
            if pending:
                self._gates_stop.set()
                await asyncio.gather(*pending, return_exceptions=True)

        if failure is not None:
            raise failure

    async def _migrate(self) -> int:
        if not self.steps or self._runner is None:
            return 0
        try:
            return await self._runner.run(self.steps, cancel=self._cancel)
        finally:
            if self._owns_ledger:
                await self._runner.ledger.close()

    async def _fail(self, reason: FailureReason, detail: str) -> None:
        await self._machine.fail(reason, detail)

    async def _on_transition(self, old: CoordinatorState, new: CoordinatorState) -> None:
        if new.phase == CoordinatorPhase.FAILED:
            _logger.error(
                "Coordinator failed from %s [reason=%s]: %s",
                old.phase.value, new.reason.value if new.reason else "?", new.detail,
            )
        else:
            _logger.info("Coordinator %s -> %s (%s)", old.phase.value, new.phase.value, new.detail)

        if self._bus:
            await self._bus.emit(TRANSITION, {
                "from": old.phase.value,
                "to": new.phase.value,
                "reason": new.reason.value if new.reason else None,
                "detail": new.detail,
            }, source="coordinator")
