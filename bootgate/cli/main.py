"""bootgate CLI — run the startup sequence as a one-shot step or embedded.

`bootgate run` waits for dependencies, migrates, and exits:
    0 ready, 2 config invalid, 3 dependency unready, 4 migration failed,
    5 drift, 6 lock timeout, 7 cancelled.
`bootgate serve` does the same while serving /healthz and /readyz.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from bootgate.config import load_config, settings
from bootgate.exceptions import ConfigInvalidError
from bootgate.types import EXIT_CODES, FailureReason

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="bootgate",
    help="bootgate -- wait for dependencies, migrate exactly once, then report ready.",
    no_args_is_help=True,
)

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Coordinator file (JSON)")


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load(config_path: Path | None):
    from bootgate.kernel.coordinator import ServiceCoordinator
    from bootgate.events.bus import EventBus

    path = config_path or settings.config_path
    config = load_config(path)
    bus = EventBus()
    return ServiceCoordinator.from_config(config, event_bus=bus), bus


def _install_signal_handlers(coordinator) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, coordinator.cancel)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers
            pass


def _finish(state) -> None:
    if state.reason is None:
        console.print(f"[green]ready[/green] [dim]{state.detail}[/dim]")
    else:
        err_console.print(f"[red]failed[/red] reason={state.reason.value}: {state.detail}")
    raise typer.Exit(state.exit_code)


@app.command("run")
def run(
    config: Path = _CONFIG_OPTION,
    log_level: str = typer.Option(None, "--log-level", "-l", help="Override BOOTGATE_LOG_LEVEL"),
):
    """Run the startup sequence once and exit with its outcome."""
    setup_logging(log_level)
    try:
        coordinator, _bus = _load(config)
    except ConfigInvalidError as e:
        err_console.print(f"[red]failed[/red] reason={FailureReason.CONFIG_INVALID.value}: {e}")
        raise typer.Exit(EXIT_CODES[FailureReason.CONFIG_INVALID])

    async def _run():
        _install_signal_handlers(coordinator)
        return await coordinator.run()

    _finish(asyncio.run(_run()))


@app.command("serve")
def serve(
    config: Path = _CONFIG_OPTION,
    host: str = typer.Option(None, "--host", help="Bind address (default BOOTGATE_HEALTH_HOST)"),
    port: int = typer.Option(None, "--port", "-p", help="Port (default BOOTGATE_HEALTH_PORT)"),
    exit_on_failure: bool = typer.Option(
        True, "--exit-on-failure/--keep-serving",
        help="Stop serving when the coordinator fails",
    ),
    log_level: str = typer.Option(None, "--log-level", "-l", help="Override BOOTGATE_LOG_LEVEL"),
):
    """Run the startup sequence while serving health endpoints."""
    import uvicorn
    from bootgate.health.app import health_app, configure

    setup_logging(log_level)
    try:
        coordinator, bus = _load(config)
    except ConfigInvalidError as e:
        err_console.print(f"[red]failed[/red] reason={FailureReason.CONFIG_INVALID.value}: {e}")
        raise typer.Exit(EXIT_CODES[FailureReason.CONFIG_INVALID])
    configure(coordinator=coordinator, event_bus=bus)

    async def _serve():
        server = uvicorn.Server(uvicorn.Config(
            health_app,
            host=host or settings.health_host,
            port=port or settings.health_port,
            log_level="warning",
        ))
        server_task = asyncio.create_task(server.serve())
        # uvicorn installs its own signal handlers once started
        while not server.started and not server_task.done():
            await asyncio.sleep(0.05)
        _install_signal_handlers(coordinator)

        state = await coordinator.run()
        if state.reason is not None and exit_on_failure:
            server.should_exit = True
        await server_task
        return state

    console.print(
        f"[bold cyan]bootgate[/bold cyan] health at "
        f"http://{host or settings.health_host}:{port or settings.health_port}/readyz"
    )
    _finish(asyncio.run(_serve()))


@app.command("check")
def check(config: Path = _CONFIG_OPTION):
    """Validate a coordinator file without touching any dependency."""
    setup_logging("WARNING")
    try:
        coordinator, _bus = _load(config)
        coordinator.validate()
    except ConfigInvalidError as e:
        err_console.print(f"[red]invalid[/red]: {e}")
        raise typer.Exit(EXIT_CODES[FailureReason.CONFIG_INVALID])

    table = Table(title="Dependencies")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Probe", style="white")
    table.add_column("Timeout", style="dim")
    table.add_column("Required", style="yellow")
    for dep in coordinator.dependencies:
        table.add_row(dep.name, dep.probe.describe(), f"{dep.timeout:g}s", "yes" if dep.required else "no")
    console.print(table)

    table = Table(title="Migration steps")
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Source", style="white", overflow="fold")
    table.add_column("Checksum", style="dim")
    for step in coordinator.steps:
        table.add_row(step.id, step.source_ref, step.checksum[:12])
    console.print(table)
    console.print("[green]configuration ok[/green]")


@app.command("ledger")
def ledger(
    config: Path = _CONFIG_OPTION,
    location: str = typer.Option("", "--location", help="Ledger database (overrides the config file)"),
):
    """Show which migration steps the ledger has recorded."""
    from bootgate.migrations.ledger import MigrationLedger

    if not location:
        try:
            location = load_config(config or settings.config_path).ledger_location or ""
        except ConfigInvalidError as e:
            err_console.print(f"[red]invalid[/red]: {e}")
            raise typer.Exit(EXIT_CODES[FailureReason.CONFIG_INVALID])
    if not location:
        err_console.print("[red]no ledger location[/red] (use --location or set ledger_location)")
        raise typer.Exit(EXIT_CODES[FailureReason.CONFIG_INVALID])
    if not Path(location).exists():
        console.print(f"[dim]No ledger at {location} yet.[/dim]")
        return

    async def _entries():
        async with MigrationLedger(location) as led:
            return await led.load(), await led.current_holder()

    entries, holder = asyncio.run(_entries())
    if not entries:
        console.print("[dim]No steps recorded yet.[/dim]")
    else:
        table = Table(title=f"Ledger: {location}")
        table.add_column("Step", style="cyan", no_wrap=True)
        table.add_column("Applied", style="dim", no_wrap=True)
        table.add_column("Checksum", style="white")
        for entry in entries.values():
            table.add_row(
                entry.step_id,
                entry.applied_at.strftime("%Y-%m-%d %H:%M:%S"),
                entry.checksum[:12],
            )
        console.print(table)
    if holder:
        console.print(f"[yellow]lock held by {holder}[/yellow]")


@app.command("version")
def version():
    """Show version."""
    from bootgate import __version__
    console.print(f"bootgate v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
