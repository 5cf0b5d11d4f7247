"""``tierforge demo`` — run the main pipeline scenarios against simulators.

Uses a throwaway state database unless ``--state-db`` is given, and prints
each execution's stage history as it completes.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

import typer
from rich.panel import Panel

from tierforge.bridge.simulated import (
    SimulatedBuilder,
    SimulatedClock,
    SimulatedComputePlatform,
)
from tierforge.cli.commands._engine import build_engine, console, load_settings
from tierforge.models.services import Runtime, Service, ServiceType
from tierforge.monitor.projection import MonitorProjection
from tierforge.monitor.renderer import MonitorRenderer
from tierforge.routing.sinks.memory import MemorySink

_UNHEALTHY_REVISION = "bad0001"


def demo_cmd(
    state_db: Path = typer.Option(
        None, "--state-db", "-s", help="Keep demo state in this database."
    ),
) -> None:
    """Run release, production-approval, and rollback scenarios."""
    with tempfile.TemporaryDirectory(prefix="tierforge-demo-") as tmp:
        settings = load_settings(state_db or Path(tmp) / "state.db")
        settings = settings.model_copy(
            update={"events_path": Path(tmp) / "events", "push_backoff_initial_seconds": 0}
        )
        clock = SimulatedClock()
        platform = SimulatedComputePlatform(
            clock,
            unhealthy_artifacts={SimulatedBuilder.artifact_ref_for(_UNHEALTHY_REVISION)},
        )
        sink = MemorySink()
        engine = build_engine(settings, sinks=[sink], clock=clock, platform=platform)
        projection = MonitorProjection(engine.ledger, engine.store)
        renderer = MonitorRenderer(console=console)

        def show(execution_id: str) -> None:
            renderer.print_snapshot(projection.snapshot(execution_id))

        console.print()
        console.print(
            Panel(
                "[bold]Tierforge Demo[/bold]\n\n"
                "Release push to test/qa, a production release with approval,\n"
                "and an unhealthy release that rolls back.",
                border_style="cyan",
                padding=(1, 2),
            )
        )

        engine.register_service(
            Service(name="api", runtime=Runtime.COMPILED_WEB, service_type=ServiceType.PUBLIC)
        )

        console.rule("[bold]1. release/1.2.0 @ abc1234[/bold]")
        for outcome in engine.submit_source_event("api", "release/1.2.0", "abc1234"):
            if outcome.execution_id:
                show(outcome.execution_id)

        console.rule("[bold]2. prod/1.2.0 @ abc1234 (manual start + approval)[/bold]")
        engine.submit_source_event("api", "prod/1.2.0", "abc1234")
        console.print(
            f"Ready for manual start: [cyan]{engine.ready_revision('api', 'prod')}[/cyan]"
        )
        execution = engine.start_execution("api", "prod", actor="release-manager")
        show(execution.execution_id)
        engine.approve(execution.execution_id, actor="change-board")
        show(execution.execution_id)

        console.rule(f"[bold]3. release/1.2.1 @ {_UNHEALTHY_REVISION} (rollback)[/bold]")
        for outcome in engine.submit_source_event(
            "api", "release/1.2.1", _UNHEALTHY_REVISION
        ):
            if outcome.execution_id:
                show(outcome.execution_id)

        for environment in ("test", "qa", "prod"):
            for execution in engine.list_executions("api", environment):
                engine.verify_history(execution.execution_id)

        console.print()
        console.print(
            f"[bold]{len(sink.events)}[/bold] notifications dispatched; "
            f"every stage history chain verified."
        )
