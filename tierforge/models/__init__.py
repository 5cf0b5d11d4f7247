"""Tierforge data models — all frozen Pydantic v2 models with strict typing."""

from tierforge.models.approvals import Approval, ApprovalDecision
from tierforge.models.artifacts import (
    Artifact,
    BuildResult,
    HealthSnapshot,
    ScanFinding,
    Severity,
)
from tierforge.models.environments import (
    ENVIRONMENT_ORDER,
    TIER_DEFAULTS,
    Environment,
    TierDefaults,
)
from tierforge.models.events import EventSeverity, EventType, NotificationEvent
from tierforge.models.ledger import LedgerEntry
from tierforge.models.pipeline import (
    DeploymentPhase,
    DeploymentRecord,
    ExecutionStatus,
    FailureReason,
    PairState,
    PipelineExecution,
    PipelineSpec,
    PipelineStage,
    PipelineType,
    StageTransition,
    TriggerMode,
)
from tierforge.models.services import Runtime, Service, ServiceType

__all__ = [
    "Approval",
    "ApprovalDecision",
    "Artifact",
    "BuildResult",
    "DeploymentPhase",
    "DeploymentRecord",
    "ENVIRONMENT_ORDER",
    "Environment",
    "EventSeverity",
    "EventType",
    "ExecutionStatus",
    "FailureReason",
    "HealthSnapshot",
    "LedgerEntry",
    "NotificationEvent",
    "PairState",
    "PipelineExecution",
    "PipelineSpec",
    "PipelineStage",
    "PipelineType",
    "Runtime",
    "ScanFinding",
    "Service",
    "ServiceType",
    "Severity",
    "StageTransition",
    "TIER_DEFAULTS",
    "TierDefaults",
    "TriggerMode",
]
