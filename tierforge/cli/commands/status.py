"""``tierforge status`` and ``tierforge list`` — read-only views."""

from __future__ import annotations

from pathlib import Path

import typer

from tierforge.cli.commands._engine import (
    STATE_DB_OPTION,
    build_engine,
    cli_errors,
    console,
    load_settings,
)
from tierforge.core.errors import LedgerIntegrityError
from tierforge.monitor.projection import MonitorProjection
from tierforge.monitor.renderer import MonitorRenderer


def status_cmd(
    execution_id: str = typer.Argument(..., help="Execution id."),
    verify: bool = typer.Option(
        False, "--verify", help="Verify the stage history hash chain."
    ),
    state_db: Path = STATE_DB_OPTION,
) -> None:
    """Show an execution with its full stage history."""
    engine = build_engine(load_settings(state_db))
    renderer = MonitorRenderer(console=console)
    with cli_errors():
        snapshot = MonitorProjection(engine.ledger, engine.store).snapshot(execution_id)
    renderer.print_snapshot(snapshot)

    if verify:
        try:
            valid = engine.verify_history(execution_id)
        except LedgerIntegrityError as exc:
            renderer.print_chain_verification(execution_id, False)
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1) from exc
        renderer.print_chain_verification(execution_id, valid)


def list_cmd(
    service_name: str = typer.Argument(..., help="Service name."),
    environment: str = typer.Argument(..., help="develop, test, qa or prod."),
    state_db: Path = STATE_DB_OPTION,
) -> None:
    """List every execution of a service in an environment."""
    engine = build_engine(load_settings(state_db))
    with cli_errors():
        executions = engine.list_executions(service_name, environment)
        ready = engine.ready_revision(service_name, environment)

    if not executions:
        console.print(f"[dim]No executions for {service_name} in {environment}.[/dim]")
    else:
        renderer = MonitorRenderer(console=console)
        console.print(
            renderer.render_executions(f"{service_name} / {environment}", executions)
        )
    if ready:
        console.print(f"[cyan]Ready for manual start:[/cyan] {ready}")
