"""Pipeline definition and execution models.

A ``PipelineSpec`` is the immutable, tier-derived shape of a pipeline for
one (Service, Environment) pair.  A ``PipelineExecution`` is one run of
that pipeline; its stage history lives in the Run Ledger.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tierforge.models.artifacts import Artifact
from tierforge.models.environments import Environment


class PipelineType(str, Enum):
    """Pipeline topology, derived from the environment tier."""

    FEATURE = "feature"
    RELEASE = "release"
    PRODUCTION = "production"


class TriggerMode(str, Enum):
    """How a detected source change starts an execution."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"


class PipelineStage(str, Enum):
    """Stage of an execution.

    ``SCANNING`` only appears where the scan gate is blocking, and
    ``AWAITING_APPROVAL`` only for production pipelines.
    """

    PENDING = "pending"
    TRIGGERED = "triggered"
    BUILDING = "building"
    SCANNING = "scanning"
    AWAITING_APPROVAL = "awaiting_approval"
    DEPLOYING = "deploying"
    ROLLING_BACK = "rolling_back"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUPERSEDED = "superseded"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES


TERMINAL_STAGES: frozenset[PipelineStage] = frozenset({
    PipelineStage.SUCCEEDED,
    PipelineStage.FAILED,
    PipelineStage.SUPERSEDED,
    PipelineStage.CANCELLED,
})


class ExecutionStatus(str, Enum):
    """Coarse status of an execution.

    ``QUEUED`` marks an execution admitted behind an in-flight deploy of
    the same pair; it is not ``RUNNING`` until promoted.
    """

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUPERSEDED = "superseded"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.SUCCEEDED,
            ExecutionStatus.FAILED,
            ExecutionStatus.SUPERSEDED,
            ExecutionStatus.CANCELLED,
        )


class FailureReason(str, Enum):
    """Why an execution ended in ``failed``."""

    BUILD_FAILURE = "BuildFailure"
    SCAN_CRITICAL_FINDING = "ScanCriticalFinding"
    PUSH_ERROR = "PushError"
    APPROVAL_REJECTED = "ApprovalRejected"
    APPROVAL_TIMEOUT = "ApprovalTimeout"
    DEPLOYMENT_ROLLBACK = "DeploymentRollback"
    ROLLBACK_FAILURE = "RollbackFailure"


class PipelineSpec(BaseModel):
    """Immutable pipeline definition for one (Service, Environment) pair."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    environment: Environment
    pipeline_name: str
    pipeline_type: PipelineType
    trigger_mode: TriggerMode
    requires_approval: bool
    approval_timeout: timedelta = timedelta(days=7)
    deploy_min_healthy_percent: int = Field(ge=0, le=100)
    deploy_max_percent: int = Field(ge=100)
    deploy_timeout: timedelta = timedelta(minutes=15)
    health_poll_interval: timedelta = timedelta(seconds=15)
    steady_state_dwell: timedelta = timedelta(seconds=60)
    desired_count: int = Field(default=1, ge=1)
    scan_gate_blocking: bool = False

    @model_validator(mode="after")
    def _approval_only_for_production(self) -> PipelineSpec:
        expected = self.pipeline_type == PipelineType.PRODUCTION
        if self.requires_approval != expected:
            raise ValueError(
                f"requires_approval must be {expected} for "
                f"{self.pipeline_type.value} pipelines"
            )
        return self

    @property
    def spec_ref(self) -> str:
        return f"{self.service_name}:{self.environment.value}"


class StageTransition(BaseModel):
    """One entry of an execution's stage history (projected from the ledger)."""

    model_config = ConfigDict(frozen=True)

    stage: PipelineStage
    from_stage: PipelineStage | None = None
    entered_at: datetime
    detail: str = ""
    actor: str = ""
    entry_hash: str = ""


class PipelineExecution(BaseModel):
    """One run of a pipeline.

    Instances are frozen; the execution store persists a new copy on every
    change.  ``stage_history`` is filled from the Run Ledger when read
    through the control surface.
    """

    model_config = ConfigDict(frozen=True)

    execution_id: str = Field(
        default_factory=lambda: f"tf-{uuid.uuid4().hex[:12]}"
    )
    pipeline_spec: PipelineSpec
    source_revision: str
    current_stage: PipelineStage = PipelineStage.TRIGGERED
    status: ExecutionStatus = ExecutionStatus.RUNNING
    failure_reason: FailureReason | None = None
    failure_detail: str = ""
    artifact: Artifact | None = None
    cancel_requested: bool = False
    superseded_by: str | None = None
    started_by: str = "source-event"
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    stage_history: list[StageTransition] = []

    @property
    def service_name(self) -> str:
        return self.pipeline_spec.service_name

    @property
    def environment(self) -> Environment:
        return self.pipeline_spec.environment

    @property
    def pair_key(self) -> tuple[str, Environment]:
        return (self.pipeline_spec.service_name, self.pipeline_spec.environment)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def stages_visited(self) -> list[PipelineStage]:
        return [t.stage for t in self.stage_history]

    def notification_payload(self) -> dict[str, Any]:
        """Base payload shared by every notification about this execution."""
        payload: dict[str, Any] = {
            "execution_id": self.execution_id,
            "service": self.service_name,
            "environment": self.environment.value,
            "pipeline": self.pipeline_spec.pipeline_name,
            "pipeline_type": self.pipeline_spec.pipeline_type.value,
            "revision": self.source_revision,
            "stage": self.current_stage.value,
            "status": self.status.value,
        }
        if self.failure_reason is not None:
            payload["failure_reason"] = self.failure_reason.value
            payload["failure_detail"] = self.failure_detail
        if self.artifact is not None:
            payload["artifact_ref"] = self.artifact.artifact_ref
            payload["tags"] = self.artifact.sorted_tags
            if self.artifact.findings:
                payload["findings"] = [
                    f"{f.finding_id}:{f.severity.value}" for f in self.artifact.findings
                ]
        return payload


class PairState(BaseModel):
    """Per-(Service, Environment) registry row.

    ``active_execution_id`` is the single "latest execution" pointer; it is
    only ever changed through a compare-and-swap in the execution store.
    """

    model_config = ConfigDict(frozen=True)

    service_name: str
    environment: Environment
    active_execution_id: str | None = None
    queued_execution_id: str | None = None
    last_good_artifact_ref: str | None = None
    ready_revision: str | None = None


class DeploymentPhase(str, Enum):
    """Progress of a rollout, persisted so the health wait survives restarts."""

    ROLLING_OUT = "rolling_out"
    STEADY = "steady"
    HEALTH_FAILED = "health_failed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


class DeploymentRecord(BaseModel):
    """Durable state of the Deploy stage for one execution."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    artifact_ref: str
    previous_artifact_ref: str | None = None
    phase: DeploymentPhase = DeploymentPhase.ROLLING_OUT
    started_at: datetime
    deadline: datetime
    steady_since: datetime | None = None
    last_observed_at: datetime | None = None
    failure_detail: str = ""

    @property
    def is_settled(self) -> bool:
        return self.phase in (
            DeploymentPhase.STEADY,
            DeploymentPhase.ROLLED_BACK,
            DeploymentPhase.ROLLBACK_FAILED,
        )
