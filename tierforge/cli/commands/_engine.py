"""Shared wiring for CLI commands.

The CLI drives the engine against the in-process simulated collaborators
and records notifications through the local file sink, so every command
works without external build or compute infrastructure.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console

from tierforge.bridge.simulated import (
    SimulatedBuilder,
    SimulatedClock,
    SimulatedComputePlatform,
    SimulatedRegistry,
    SimulatedScanner,
)
from tierforge.config import EngineSettings
from tierforge.core.errors import PipelineError
from tierforge.core.orchestrator import Orchestrator
from tierforge.models.environments import Environment
from tierforge.routing.sinks import BaseSink
from tierforge.routing.sinks.local_file import LocalFileSink

console = Console()

STATE_DB_OPTION = typer.Option(
    None,
    "--state-db",
    "-s",
    help="Path to the state SQLite database (default: TIERFORGE_STATE_DB_PATH).",
)


def load_settings(state_db: Path | None = None) -> EngineSettings:
    """Load settings from the environment, overriding the state path if given."""
    settings = EngineSettings()
    if state_db is not None:
        settings = settings.model_copy(update={"state_db_path": state_db})
    return settings


def build_engine(
    settings: EngineSettings,
    *,
    sinks: list[BaseSink] | None = None,
    clock: SimulatedClock | None = None,
    platform: SimulatedComputePlatform | None = None,
    builder: SimulatedBuilder | None = None,
    scanner: SimulatedScanner | None = None,
) -> Orchestrator:
    """Build an orchestrator over simulated collaborators.

    The simulated fleet is seeded with each pair's last known-good
    artifact, so a deploy started by a later command rolls over it.
    """
    clock = clock or SimulatedClock()
    platform = platform or SimulatedComputePlatform(clock)
    engine = Orchestrator(
        settings,
        builder=builder or SimulatedBuilder(),
        scanner=scanner or SimulatedScanner(),
        registry=SimulatedRegistry(),
        platform=platform,
        sinks=[LocalFileSink(settings.events_path), *(sinks or [])],
        clock=clock,
    )
    for service in engine.store.list_services():
        for environment in Environment:
            pair = engine.store.get_pair(service.name, environment)
            if pair.last_good_artifact_ref:
                platform.seed(
                    engine.resolve(service.name, environment).pipeline_name,
                    pair.last_good_artifact_ref,
                )
    return engine


@contextmanager
def cli_errors() -> Iterator[None]:
    """Turn engine errors into a red message and exit code 1."""
    try:
        yield
    except (PipelineError, ValueError) as exc:
        console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
