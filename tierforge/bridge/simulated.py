"""In-process simulated collaborators.

Used by the ``demo`` command and the test suite.  Behaviour is scripted
through constructor arguments; time is driven by a ``SimulatedClock`` that
the compute platform advances by one poll interval per health snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone

from tierforge.core.errors import PushError
from tierforge.core.hasher import content_address
from tierforge.models.artifacts import BuildResult, HealthSnapshot, ScanFinding

logger = logging.getLogger(__name__)


class SimulatedClock:
    """A manually advanced UTC clock.  Call the instance to read it."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        self._now += delta
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment


class SimulatedBuilder:
    """Builds succeed unless the revision is listed in *failing_revisions*.

    ``on_build`` is called with the revision before the result is produced,
    which lets tests interleave other engine calls with an in-flight build.
    """

    def __init__(
        self,
        failing_revisions: set[str] | None = None,
        on_build: Callable[[str], None] | None = None,
    ) -> None:
        self.failing_revisions = set(failing_revisions or ())
        self.on_build = on_build
        self.builds: list[str] = []

    @staticmethod
    def artifact_ref_for(source_revision: str) -> str:
        return content_address({"image": source_revision})

    def build(self, source_revision: str) -> BuildResult:
        self.builds.append(source_revision)
        if self.on_build is not None:
            self.on_build(source_revision)
        if source_revision in self.failing_revisions:
            return BuildResult(
                success=False, log_excerpt=f"compile error in {source_revision}"
            )
        return BuildResult(
            success=True, artifact_ref=self.artifact_ref_for(source_revision)
        )


class SimulatedScanner:
    """Returns the findings registered for an artifact (none by default)."""

    def __init__(self, findings: dict[str, list[ScanFinding]] | None = None) -> None:
        self.findings = dict(findings or {})
        self.scanned: list[str] = []

    def add_findings(self, artifact_ref: str, findings: list[ScanFinding]) -> None:
        self.findings.setdefault(artifact_ref, []).extend(findings)

    def scan(self, artifact_ref: str) -> list[ScanFinding]:
        self.scanned.append(artifact_ref)
        return list(self.findings.get(artifact_ref, []))


class SimulatedRegistry:
    """Tag -> artifact map.  Push calls listed in *fail_on_calls* raise.

    Call numbers are 1-based across the registry's lifetime, so
    ``fail_on_calls={3}`` makes the third push fail once (two of four
    tags pushed, then an error).
    """

    def __init__(self, fail_on_calls: set[int] | None = None) -> None:
        self.fail_on_calls = set(fail_on_calls or ())
        self.tags: dict[str, str] = {}
        self.push_calls = 0
        self.attempted: list[str] = []

    def push(self, artifact_ref: str, tag: str) -> None:
        self.push_calls += 1
        self.attempted.append(tag)
        if self.push_calls in self.fail_on_calls:
            raise PushError(f"registry unavailable while pushing {tag}")
        self.tags[tag] = artifact_ref

    def tags_for(self, artifact_ref: str) -> set[str]:
        return {tag for tag, ref in self.tags.items() if ref == artifact_ref}


class SimulatedComputePlatform:
    """Rolling-update simulator.

    Artifacts in *unhealthy_artifacts* never pass health checks, both on
    rollout and on rollback.  Healthy rollouts start new instances, wait
    *warmup_polls* polls, then drain the old ones.

    Parameters
    ----------
    clock:
        Advanced by ``poll_interval`` before every snapshot.
    desired_count:
        Desired instance count of every simulated service.
    """

    def __init__(
        self,
        clock: SimulatedClock,
        *,
        desired_count: int = 2,
        unhealthy_artifacts: set[str] | None = None,
        warmup_polls: int = 2,
    ) -> None:
        self.clock = clock
        self.desired_count = desired_count
        self.unhealthy_artifacts = set(unhealthy_artifacts or ())
        self.warmup_polls = warmup_polls
        self.current: dict[str, str] = {}
        self.rollouts: list[tuple[str, str]] = []
        self.rollbacks: list[tuple[str, str]] = []

    def seed(self, service_id: str, artifact_ref: str) -> None:
        """Mark *artifact_ref* as already running at full capacity."""
        self.current[service_id] = artifact_ref

    def rollout(
        self,
        service_id: str,
        artifact_ref: str,
        min_healthy_pct: int,
        max_pct: int,
        timeout: timedelta,
        *,
        poll_interval: timedelta,
    ) -> Iterator[HealthSnapshot]:
        self.rollouts.append((service_id, artifact_ref))
        return self._drive(service_id, artifact_ref, max_pct, timeout, poll_interval)

    def rollback(
        self,
        service_id: str,
        previous_artifact_ref: str,
        min_healthy_pct: int,
        max_pct: int,
        timeout: timedelta,
        *,
        poll_interval: timedelta,
    ) -> Iterator[HealthSnapshot]:
        self.rollbacks.append((service_id, previous_artifact_ref))
        return self._drive(
            service_id, previous_artifact_ref, max_pct, timeout, poll_interval
        )

    def _drive(
        self,
        service_id: str,
        artifact_ref: str,
        max_pct: int,
        timeout: timedelta,
        poll_interval: timedelta,
    ) -> Iterator[HealthSnapshot]:
        desired = self.desired_count
        old = desired if self.current.get(service_id) else 0
        surge = min(desired, desired * max_pct // 100 - old)
        healthy_target = artifact_ref not in self.unhealthy_artifacts
        started = self.clock()
        poll = 0

        # One poll past the timeout so the caller observes the deadline.
        while self.clock() - started <= timeout:
            poll += 1
            now = self.clock.advance(poll_interval)
            if not healthy_target or poll <= self.warmup_polls:
                running, healthy, target = old + surge, old, 0
            elif poll == self.warmup_polls + 1:
                running, healthy, target = old + surge, old + surge, surge
            else:
                running, healthy, target = desired, desired, desired
                self.current[service_id] = artifact_ref
            yield HealthSnapshot(
                observed_at=now,
                artifact_ref=artifact_ref,
                desired_count=desired,
                running_count=running,
                healthy_count=healthy,
                target_healthy_count=target,
            )
