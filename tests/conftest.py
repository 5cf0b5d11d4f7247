"""Shared test fixtures for Tierforge."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from tierforge.bridge.simulated import (
    SimulatedBuilder,
    SimulatedClock,
    SimulatedComputePlatform,
    SimulatedRegistry,
    SimulatedScanner,
)
from tierforge.config import EngineSettings
from tierforge.core.execution_store import ExecutionStore
from tierforge.core.orchestrator import Orchestrator
from tierforge.core.resolver import resolve_pipeline_spec
from tierforge.core.run_ledger import RunLedger
from tierforge.core.stage_machine import StageMachine
from tierforge.models.environments import Environment
from tierforge.models.pipeline import PipelineExecution
from tierforge.models.services import Runtime, Service, ServiceType
from tierforge.routing.dispatcher import NotificationDispatcher
from tierforge.routing.sinks.memory import MemorySink

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    """Settings with temp storage and zero push backoff."""
    return EngineSettings(
        _env_file=None,
        state_db_path=tmp_path / "state.db",
        events_path=tmp_path / "events",
        push_backoff_initial_seconds=0,
        push_backoff_max_seconds=0,
    )


@pytest.fixture
def clock() -> SimulatedClock:
    return SimulatedClock(START)


@pytest.fixture
def builder() -> SimulatedBuilder:
    return SimulatedBuilder()


@pytest.fixture
def scanner() -> SimulatedScanner:
    return SimulatedScanner()


@pytest.fixture
def registry() -> SimulatedRegistry:
    return SimulatedRegistry()


@pytest.fixture
def platform(clock: SimulatedClock) -> SimulatedComputePlatform:
    return SimulatedComputePlatform(clock)


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def ledger(settings: EngineSettings) -> RunLedger:
    return RunLedger(settings.state_db_path)


@pytest.fixture
def store(settings: EngineSettings) -> ExecutionStore:
    return ExecutionStore(settings.state_db_path)


@pytest.fixture
def dispatcher(settings: EngineSettings, sink: MemorySink) -> NotificationDispatcher:
    return NotificationDispatcher(settings, [sink])


@pytest.fixture
def stage_machine(
    ledger: RunLedger,
    store: ExecutionStore,
    dispatcher: NotificationDispatcher,
    clock: SimulatedClock,
) -> StageMachine:
    return StageMachine(ledger, store, dispatcher, clock)


@pytest.fixture
def api_service() -> Service:
    return Service(
        name="api",
        runtime=Runtime.COMPILED_WEB,
        service_type=ServiceType.PUBLIC,
        container_port=8080,
    )


@pytest.fixture
def make_execution(
    api_service: Service, settings: EngineSettings
) -> Callable[..., PipelineExecution]:
    """Factory fixture: an unsaved execution of ``api`` in a tier."""

    def _factory(
        environment: Environment = Environment.TEST,
        revision: str = "abc1234",
        **overrides,
    ) -> PipelineExecution:
        spec = resolve_pipeline_spec(api_service, environment, settings)
        return PipelineExecution(
            pipeline_spec=spec,
            source_revision=revision,
            created_at=START,
            updated_at=START,
            **overrides,
        )

    return _factory


@pytest.fixture
def make_engine(
    settings: EngineSettings,
    builder: SimulatedBuilder,
    scanner: SimulatedScanner,
    registry: SimulatedRegistry,
    platform: SimulatedComputePlatform,
    sink: MemorySink,
    clock: SimulatedClock,
) -> Callable[..., Orchestrator]:
    """Factory fixture: an orchestrator over the shared simulators.

    Keyword overrides replace individual collaborators, e.g. a second
    engine on the same database after a simulated restart.
    """

    def _factory(**overrides) -> Orchestrator:
        kwargs = {
            "builder": builder,
            "scanner": scanner,
            "registry": registry,
            "platform": platform,
            "sinks": [sink],
            "clock": clock,
        }
        kwargs.update(overrides)
        return Orchestrator(settings, **kwargs)

    return _factory


@pytest.fixture
def engine(make_engine: Callable[..., Orchestrator], api_service: Service) -> Orchestrator:
    """An orchestrator with ``api`` registered."""
    orchestrator = make_engine()
    orchestrator.register_service(api_service)
    return orchestrator
