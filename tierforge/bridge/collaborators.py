"""Collaborator contracts consumed by the engine.

The container build toolchain, the vulnerability scanner, the image
registry, and the compute platform are external systems.  Any object that
satisfies these Protocols can be plugged into the ``Orchestrator``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta
from typing import Protocol, runtime_checkable

from tierforge.core.errors import PipelineError
from tierforge.models.artifacts import BuildResult, HealthSnapshot, ScanFinding


class BuildError(PipelineError):
    """Raised by a build collaborator when the toolchain itself errors."""


class ComputePlatformError(PipelineError):
    """Raised by a compute platform when a rollout cannot be issued."""


@runtime_checkable
class BuildCollaborator(Protocol):
    """Produces a container image from a source revision."""

    def build(self, source_revision: str) -> BuildResult:
        """Build *source_revision*.

        Returns a ``BuildResult``; ``success=False`` or a raised
        ``BuildError`` both mean no artifact exists.
        """
        ...


@runtime_checkable
class ScanCollaborator(Protocol):
    """Scans an image for known vulnerabilities."""

    def scan(self, artifact_ref: str) -> list[ScanFinding]:
        ...


@runtime_checkable
class RegistryCollaborator(Protocol):
    """Stores and serves tagged images.

    Tags are idempotent: re-pushing the same tag to the same content is a
    no-op success.
    """

    def push(self, artifact_ref: str, tag: str) -> None:
        """Point *tag* at *artifact_ref*.  Raises ``PushError`` on failure."""
        ...


@runtime_checkable
class ComputePlatform(Protocol):
    """Runs service instances and reports their health."""

    def rollout(
        self,
        service_id: str,
        artifact_ref: str,
        min_healthy_pct: int,
        max_pct: int,
        timeout: timedelta,
        *,
        poll_interval: timedelta,
    ) -> Iterable[HealthSnapshot]:
        """Start rolling *artifact_ref* in; yield one snapshot per poll."""
        ...

    def rollback(
        self,
        service_id: str,
        previous_artifact_ref: str,
        min_healthy_pct: int,
        max_pct: int,
        timeout: timedelta,
        *,
        poll_interval: timedelta,
    ) -> Iterable[HealthSnapshot]:
        """Redeploy *previous_artifact_ref*; same contract as ``rollout``."""
        ...
