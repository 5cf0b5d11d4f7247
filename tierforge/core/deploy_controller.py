"""Deploy & Rollback Controller — rolling update with a health circuit breaker.

The controller drives the compute platform and reads its health stream.
Progress is persisted as a ``DeploymentRecord`` after every snapshot, and
the deadline is stored as an absolute timestamp, so an interrupted deploy
can be resumed by a later ``tick`` without extending its timeout.

Rollback is the same loop pointed at the previous known-good artifact.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from tierforge.bridge.collaborators import ComputePlatform, ComputePlatformError
from tierforge.core.errors import DeploymentHealthCheckFailure, RollbackFailure
from tierforge.core.execution_store import ExecutionStore
from tierforge.models.artifacts import HealthSnapshot
from tierforge.models.pipeline import (
    DeploymentPhase,
    DeploymentRecord,
    PipelineExecution,
    PipelineSpec,
)

logger = logging.getLogger(__name__)


class _HealthNotConverged(Exception):
    """Internal signal from ``_drive``; carries the persisted record."""

    def __init__(self, record: DeploymentRecord, detail: str) -> None:
        super().__init__(detail)
        self.record = record
        self.detail = detail


class DeployController:
    """Rolls artifacts in and, when health fails, rolls the previous one back.

    Parameters
    ----------
    platform:
        The compute platform collaborator.
    store:
        Persists ``DeploymentRecord`` progress.
    clock:
        Returns the current UTC time; used to stamp deadlines.
    """

    def __init__(
        self,
        platform: ComputePlatform,
        store: ExecutionStore,
        clock: Callable[[], datetime],
    ) -> None:
        self._platform = platform
        self._store = store
        self._clock = clock

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def roll_forward(
        self,
        execution: PipelineExecution,
        previous_artifact_ref: str | None,
    ) -> DeploymentRecord:
        """Deploy the execution's artifact and wait for steady state.

        Calling this again for an execution with an in-progress record
        re-issues the rollout (the platform treats it idempotently) and
        keeps the original deadline.

        Raises
        ------
        DeploymentHealthCheckFailure
            If steady state was not reached before the deadline.  The
            caller is expected to invoke ``roll_back``.
        """
        if execution.artifact is None:
            raise ValueError(f"{execution.execution_id} has no artifact to deploy")

        spec = execution.pipeline_spec
        record = self._store.get_deployment(execution.execution_id)
        if record is None:
            now = self._clock()
            record = DeploymentRecord(
                execution_id=execution.execution_id,
                artifact_ref=execution.artifact.artifact_ref,
                previous_artifact_ref=previous_artifact_ref,
                started_at=now,
                deadline=now + spec.deploy_timeout,
            )
            self._store.save_deployment(record)
            logger.info(
                "%s [%s] rolling out %s (min %d%%, max %d%%, deadline %s)",
                spec.pipeline_name,
                execution.execution_id,
                record.artifact_ref,
                spec.deploy_min_healthy_percent,
                spec.deploy_max_percent,
                record.deadline.isoformat(),
            )
        elif record.phase == DeploymentPhase.STEADY:
            return record
        elif record.phase != DeploymentPhase.ROLLING_OUT:
            raise DeploymentHealthCheckFailure(
                record.failure_detail or f"deployment is {record.phase.value}"
            )
        else:
            logger.info(
                "%s [%s] resuming rollout of %s, deadline %s",
                spec.pipeline_name,
                execution.execution_id,
                record.artifact_ref,
                record.deadline.isoformat(),
            )

        try:
            snapshots = self._platform.rollout(
                spec.pipeline_name,
                record.artifact_ref,
                spec.deploy_min_healthy_percent,
                spec.deploy_max_percent,
                self._remaining(record),
                poll_interval=spec.health_poll_interval,
            )
            record = self._drive(
                snapshots,
                record,
                spec,
                enforce_min_healthy=record.previous_artifact_ref is not None,
            )
        except (_HealthNotConverged, ComputePlatformError) as exc:
            failed_record = getattr(exc, "record", record)
            detail = getattr(exc, "detail", f"rollout could not be issued: {exc}")
            self._store.save_deployment(
                failed_record.model_copy(
                    update={
                        "phase": DeploymentPhase.HEALTH_FAILED,
                        "failure_detail": detail,
                    }
                )
            )
            logger.error(
                "%s [%s] health check failed: %s",
                spec.pipeline_name,
                execution.execution_id,
                detail,
            )
            raise DeploymentHealthCheckFailure(detail) from exc

        record = record.model_copy(update={"phase": DeploymentPhase.STEADY})
        self._store.save_deployment(record)
        logger.info(
            "%s [%s] %s reached steady state",
            spec.pipeline_name,
            execution.execution_id,
            record.artifact_ref,
        )
        return record

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def roll_back(self, execution: PipelineExecution) -> DeploymentRecord:
        """Redeploy the previous known-good artifact.

        Uses the same min/max constraints and health loop as
        ``roll_forward``, with a fresh deadline.

        Raises
        ------
        RollbackFailure
            If there is no previous artifact, or it does not reach steady
            state.  The fleet state is unknown at that point.
        """
        spec = execution.pipeline_spec
        record = self._store.get_deployment(execution.execution_id)
        if record is None:
            raise RollbackFailure(
                f"no deployment record for {execution.execution_id}"
            )
        if record.phase == DeploymentPhase.ROLLED_BACK:
            return record
        if record.phase == DeploymentPhase.ROLLBACK_FAILED:
            raise RollbackFailure(record.failure_detail)

        previous = record.previous_artifact_ref
        if previous is None:
            return self._fail_rollback(
                execution,
                record,
                "no previous known-good artifact to roll back to",
            )

        if record.phase != DeploymentPhase.ROLLING_BACK:
            now = self._clock()
            record = record.model_copy(
                update={
                    "phase": DeploymentPhase.ROLLING_BACK,
                    "started_at": now,
                    "deadline": now + spec.deploy_timeout,
                    "steady_since": None,
                }
            )
            self._store.save_deployment(record)

        logger.warning(
            "%s [%s] rolling back to %s",
            spec.pipeline_name,
            execution.execution_id,
            previous,
        )
        try:
            snapshots = self._platform.rollback(
                spec.pipeline_name,
                previous,
                spec.deploy_min_healthy_percent,
                spec.deploy_max_percent,
                self._remaining(record),
                poll_interval=spec.health_poll_interval,
            )
            record = self._drive(
                snapshots, record, spec, enforce_min_healthy=True
            )
        except _HealthNotConverged as exc:
            return self._fail_rollback(
                execution, exc.record, f"rollback did not converge: {exc.detail}"
            )
        except ComputePlatformError as exc:
            return self._fail_rollback(
                execution, record, f"rollback could not be issued: {exc}"
            )

        record = record.model_copy(update={"phase": DeploymentPhase.ROLLED_BACK})
        self._store.save_deployment(record)
        logger.info(
            "%s [%s] rolled back to %s",
            spec.pipeline_name,
            execution.execution_id,
            previous,
        )
        return record

    def _fail_rollback(
        self,
        execution: PipelineExecution,
        record: DeploymentRecord,
        detail: str,
    ) -> DeploymentRecord:
        self._store.save_deployment(
            record.model_copy(
                update={
                    "phase": DeploymentPhase.ROLLBACK_FAILED,
                    "failure_detail": detail,
                }
            )
        )
        logger.critical(
            "%s [%s] ROLLBACK FAILED: %s; fleet state unknown",
            execution.pipeline_spec.pipeline_name,
            execution.execution_id,
            detail,
        )
        raise RollbackFailure(detail)

    # ------------------------------------------------------------------
    # Health loop
    # ------------------------------------------------------------------

    def _remaining(self, record: DeploymentRecord) -> timedelta:
        return max(record.deadline - self._clock(), timedelta(0))

    def _drive(
        self,
        snapshots: Iterable[HealthSnapshot],
        record: DeploymentRecord,
        spec: PipelineSpec,
        *,
        enforce_min_healthy: bool,
    ) -> DeploymentRecord:
        """Consume health snapshots until steady state or the deadline.

        Steady state means the desired number of healthy target instances,
        with old instances drained, held for ``steady_state_dwell``.
        """
        for snapshot in snapshots:
            desired = snapshot.desired_count
            max_running = desired * spec.deploy_max_percent // 100
            min_healthy = math.ceil(desired * spec.deploy_min_healthy_percent / 100)
            record = record.model_copy(
                update={"last_observed_at": snapshot.observed_at}
            )

            if snapshot.running_count > max_running:
                raise _HealthNotConverged(
                    record,
                    f"{snapshot.running_count} instances running exceeds "
                    f"{spec.deploy_max_percent}% of desired {desired}",
                )
            if enforce_min_healthy and snapshot.healthy_count < min_healthy:
                raise _HealthNotConverged(
                    record,
                    f"healthy capacity {snapshot.healthy_count} fell below "
                    f"{spec.deploy_min_healthy_percent}% of desired {desired}",
                )

            at_capacity = (
                snapshot.target_healthy_count >= desired
                and snapshot.running_count <= desired
            )
            if at_capacity:
                steady_since = record.steady_since or snapshot.observed_at
                record = record.model_copy(update={"steady_since": steady_since})
                if snapshot.observed_at - steady_since >= spec.steady_state_dwell:
                    return record
            elif record.steady_since is not None:
                record = record.model_copy(update={"steady_since": None})

            if snapshot.observed_at >= record.deadline:
                raise _HealthNotConverged(
                    record,
                    f"steady state not reached by {record.deadline.isoformat()} "
                    f"({snapshot.target_healthy_count}/{desired} healthy)",
                )
            self._store.save_deployment(record)

        raise _HealthNotConverged(
            record, "health stream ended before steady state was reached"
        )
