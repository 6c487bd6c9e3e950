"""bootgate — live demo of a full startup sequence.

A fake database that refuses the first two connections, two migration
steps, and three replicas racing for the same ledger.
"""

import asyncio
import tempfile
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


async def full_demo():
    from bootgate.events.bus import EventBus
    from bootgate.kernel.coordinator import ServiceCoordinator
    from bootgate.migrations.ledger import MigrationLedger
    from bootgate.migrations.runner import MigrationRunner
    from bootgate.migrations.step import sql_step
    from bootgate.probes.base import FunctionProbe
    from bootgate.readiness.backoff import BackoffPolicy
    from bootgate.readiness.gate import Dependency

    workdir = Path(tempfile.mkdtemp(prefix="bootgate-demo-"))
    ledger_path = str(workdir / "app.db")

    steps = [
        sql_step("0001_init", "CREATE TABLE settings (key TEXT PRIMARY KEY, value TEXT);"),
        sql_step("0002_add_users", "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT);"),
    ]

    console.print(Panel(
        "[bold]bootgate demo[/bold]\n"
        "3 replicas, 1 flaky database, 2 migration steps",
        border_style="cyan",
    ))

    def flaky_db():
        calls = {"n": 0}

        def check() -> bool:
            calls["n"] += 1
            return calls["n"] > 2

        return check

    bus = EventBus()
    coordinators = []
    for i in range(3):
        dep = Dependency(
            name="db",
            probe=FunctionProbe(flaky_db(), target="db:5432"),
            timeout=10,
            backoff=BackoffPolicy(base=0.05, jitter=0),
        )
        runner = MigrationRunner(
            MigrationLedger(ledger_path), lock_timeout=10, poll_interval=0.05, holder=f"replica-{i}",
        )
        coordinators.append(ServiceCoordinator([dep], steps, runner=runner, event_bus=bus))

    states = await asyncio.gather(*(c.run() for c in coordinators))

    table = Table(title="Replicas")
    table.add_column("Replica", style="cyan")
    table.add_column("Final state", style="green")
    table.add_column("Probe attempts", style="white")
    table.add_column("Steps applied", style="yellow")
    table.add_column("Trace", style="dim")
    for i, (c, state) in enumerate(zip(coordinators, states)):
        table.add_row(
            f"replica-{i}",
            str(state),
            str(c.gate_reports["db"].attempts),
            str(c.applied_count),
            " -> ".join(str(s) for s in c.history),
        )
    console.print(table)

    for c in coordinators:
        await c.runner.ledger.close()

    async with MigrationLedger(ledger_path) as ledger:
        entries = await ledger.load()
    console.print(f"[bold]Ledger:[/bold] {', '.join(entries)}")
    console.print(f"[dim]{len(bus.history('gate.*', limit=500))} probe events, "
                  f"{len(bus.history('migration.*'))} migration events[/dim]")


if __name__ == "__main__":
    asyncio.run(full_demo())
