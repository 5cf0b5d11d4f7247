"""Fixtures for engine-level integration tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from tierforge.bridge.simulated import SimulatedComputePlatform
from tierforge.core.orchestrator import Orchestrator


class EngineCrash(RuntimeError):
    """Stands in for the engine process dying mid-call."""


class HookedPlatform(SimulatedComputePlatform):
    """Simulated platform with a one-shot hook at the next rollout.

    The hook runs after the rollout is issued, while the execution is in
    ``deploying``.  With ``crash_on_rollout`` set, the rollout raises
    ``EngineCrash`` after the hook instead of returning a health stream.
    """

    def __init__(self, clock, **kwargs) -> None:
        super().__init__(clock, **kwargs)
        self.on_rollout: Callable[[str], None] | None = None
        self.crash_on_rollout = False

    def rollout(self, service_id, artifact_ref, *args, **kwargs):
        stream = super().rollout(service_id, artifact_ref, *args, **kwargs)
        hook, self.on_rollout = self.on_rollout, None
        if hook is not None:
            hook(artifact_ref)
        if self.crash_on_rollout:
            self.crash_on_rollout = False
            raise EngineCrash(f"engine died while rolling out {artifact_ref}")
        return stream


@pytest.fixture
def hooked_platform(clock) -> HookedPlatform:
    return HookedPlatform(clock)


@pytest.fixture
def hooked_engine(make_engine, hooked_platform, api_service) -> Orchestrator:
    orchestrator = make_engine(platform=hooked_platform)
    orchestrator.register_service(api_service)
    return orchestrator
