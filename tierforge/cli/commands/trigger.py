"""``tierforge register``, ``push-event`` and ``start`` — admitting revisions."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from tierforge.cli.commands._engine import (
    STATE_DB_OPTION,
    build_engine,
    cli_errors,
    console,
    load_settings,
)
from tierforge.models.services import Runtime, Service, ServiceType
from tierforge.monitor.projection import MonitorProjection
from tierforge.monitor.renderer import MonitorRenderer


def register_cmd(
    service_name: str = typer.Argument(..., help="Service name."),
    runtime: Runtime = typer.Option(Runtime.COMPILED_WEB, "--runtime"),
    service_type: ServiceType = typer.Option(ServiceType.PUBLIC, "--type"),
    port: int = typer.Option(8080, "--port", help="Container port."),
    state_db: Path = STATE_DB_OPTION,
) -> None:
    """Register a service with the engine."""
    engine = build_engine(load_settings(state_db))
    with cli_errors():
        service = engine.register_service(
            Service(
                name=service_name,
                runtime=runtime,
                service_type=service_type,
                container_port=port,
            )
        )
    console.print(
        f"[bold green]Registered[/bold green] {service.name} "
        f"({service.runtime.value}, {service.service_type.value}, port "
        f"{service.container_port})"
    )


def push_event_cmd(
    service_name: str = typer.Argument(..., help="Registered service name."),
    branch: str = typer.Argument(..., help="Branch that received the push."),
    revision: str = typer.Argument(..., help="Source revision id."),
    state_db: Path = STATE_DB_OPTION,
) -> None:
    """Submit a source event, as a repository webhook would."""
    engine = build_engine(load_settings(state_db))
    with cli_errors():
        outcomes = engine.submit_source_event(service_name, branch, revision)

    if not outcomes:
        console.print(f"[dim]{branch}: no matching tier, event ignored[/dim]")
        return

    table = Table(title=f"{service_name} {branch}@{revision}", header_style="bold cyan")
    table.add_column("Environment")
    table.add_column("Decision")
    table.add_column("Execution", style="cyan")
    table.add_column("Status")
    for outcome in outcomes:
        status = ""
        if outcome.execution_id:
            status = engine.get_status(outcome.execution_id).status.value
        table.add_row(
            outcome.environment.value,
            outcome.decision.value,
            outcome.execution_id or "[dim]-[/dim]",
            status,
        )
    console.print(table)


def start_cmd(
    service_name: str = typer.Argument(..., help="Registered service name."),
    environment: str = typer.Argument(..., help="develop, test, qa or prod."),
    revision: str = typer.Option(
        None, "--revision", "-r", help="Revision to start (default: the ready one)."
    ),
    actor: str = typer.Option("operator", "--actor", help="Who starts the release."),
    state_db: Path = STATE_DB_OPTION,
) -> None:
    """Explicitly start a pipeline (the manual release click)."""
    engine = build_engine(load_settings(state_db))
    with cli_errors():
        execution = engine.start_execution(
            service_name, environment, revision, actor=actor
        )
    renderer = MonitorRenderer(console=console)
    renderer.print_snapshot(
        MonitorProjection(engine.ledger, engine.store).snapshot(execution.execution_id)
    )
