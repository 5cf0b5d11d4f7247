"""``tierforge approve`` and ``tierforge reject`` — production approval gate."""

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
from tierforge.monitor.projection import MonitorProjection
from tierforge.monitor.renderer import MonitorRenderer


def approve_cmd(
    execution_id: str = typer.Argument(..., help="Execution awaiting approval."),
    actor: str = typer.Option(..., "--actor", "-a", help="Approver identity."),
    state_db: Path = STATE_DB_OPTION,
) -> None:
    """Approve a production execution and continue it into Deploy."""
    engine = build_engine(load_settings(state_db))
    with cli_errors():
        engine.approve(execution_id, actor)
    MonitorRenderer(console=console).print_snapshot(
        MonitorProjection(engine.ledger, engine.store).snapshot(execution_id)
    )


def reject_cmd(
    execution_id: str = typer.Argument(..., help="Execution awaiting approval."),
    actor: str = typer.Option(..., "--actor", "-a", help="Reviewer identity."),
    reason: str = typer.Option("", "--reason", help="Why the release is rejected."),
    state_db: Path = STATE_DB_OPTION,
) -> None:
    """Reject a production execution."""
    engine = build_engine(load_settings(state_db))
    with cli_errors():
        execution = engine.reject(execution_id, actor, reason)
    console.print(
        f"[bold red]Rejected[/bold red] {execution.execution_id}: "
        f"{execution.failure_detail}"
    )
