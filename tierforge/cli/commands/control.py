"""``tierforge cancel`` and ``tierforge tick``."""

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


def cancel_cmd(
    execution_id: str = typer.Argument(..., help="Execution to cancel."),
    actor: str = typer.Option("operator", "--actor", help="Who cancels."),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Confirm a destructive action in a protected tier."
    ),
    state_db: Path = STATE_DB_OPTION,
) -> None:
    """Cancel an execution.  A running deploy is cancelled once it settles."""
    engine = build_engine(load_settings(state_db))
    with cli_errors():
        execution = engine.cancel_execution(execution_id, actor, confirm=yes)
    if execution.is_terminal:
        console.print(f"[bold]{execution_id}[/bold] is {execution.status.value}")
    else:
        console.print(
            f"[yellow]{execution_id} is {execution.current_stage.value}; "
            f"cancellation will apply when the rollout settles[/yellow]"
        )


def tick_cmd(state_db: Path = STATE_DB_OPTION) -> None:
    """Expire overdue approvals and resume interrupted executions."""
    engine = build_engine(load_settings(state_db))
    with cli_errors():
        report = engine.tick()
    console.print(
        f"expired approvals: {len(report.expired_approvals)}  |  "
        f"resumed: {len(report.resumed)}  |  promoted: {len(report.promoted)}"
    )
    for execution_id in report.expired_approvals:
        console.print(f"  [red]expired[/red] {execution_id}")
    for execution_id in report.resumed:
        console.print(f"  [yellow]resumed[/yellow] {execution_id}")
    for execution_id in report.promoted:
        console.print(f"  [cyan]promoted[/cyan] {execution_id}")
