"""Error taxonomy for the pipeline engine.

Stage-local errors carry the ``FailureReason`` recorded on the execution
when the orchestrator converts them into a terminal ``failed`` state.
Control-surface errors propagate to the caller unchanged.
"""

from __future__ import annotations

from tierforge.models.pipeline import FailureReason


class PipelineError(RuntimeError):
    """Base class for every error raised by the engine."""


class StageFailure(PipelineError):
    """A stage-local failure that ends the execution in ``failed``."""

    failure_reason: FailureReason

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class UnknownEnvironment(PipelineError, ValueError):
    """Raised at resolve time for an environment outside the tier set."""


class ProductionConfigError(PipelineError):
    """Raised when production configuration constraints are violated.

    The engine cannot safely start with the current configuration; the
    process should exit.
    """


# ---------------------------------------------------------------------------
# Stage-local failures
# ---------------------------------------------------------------------------


class BuildFailure(StageFailure):
    failure_reason = FailureReason.BUILD_FAILURE


class ScanCriticalFinding(StageFailure):
    failure_reason = FailureReason.SCAN_CRITICAL_FINDING


class PushError(StageFailure):
    """A registry push failed.  Retried as a unit before surfacing."""

    failure_reason = FailureReason.PUSH_ERROR


class ApprovalRejected(StageFailure):
    failure_reason = FailureReason.APPROVAL_REJECTED


class ApprovalTimeout(StageFailure):
    failure_reason = FailureReason.APPROVAL_TIMEOUT


class DeploymentHealthCheckFailure(PipelineError):
    """Health did not converge; triggers rollback rather than failure."""


class DeploymentRollback(StageFailure):
    failure_reason = FailureReason.DEPLOYMENT_ROLLBACK


class RollbackFailure(StageFailure):
    """Rollback itself failed.  Fleet state is unknown; page an operator."""

    failure_reason = FailureReason.ROLLBACK_FAILURE


# ---------------------------------------------------------------------------
# Control surface
# ---------------------------------------------------------------------------


class ExecutionNotFound(PipelineError, KeyError):
    """Raised when an execution ID is not in the store."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "execution not found"


class ServiceNotRegistered(PipelineError, KeyError):
    """Raised when a source event names a service the engine does not know."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "service not registered"


class ServiceDefinitionConflict(PipelineError):
    """Raised when re-registering a service with a different definition."""


class ExecutionConflict(PipelineError):
    """Raised when a manual start collides with a running execution."""


class ApprovalNotPending(PipelineError):
    """Raised when approving or rejecting an already-decided approval."""


class ConfirmationRequired(PipelineError):
    """Raised when a destructive action in a protected tier lacks confirmation."""


class InvalidTransitionError(PipelineError):
    """Raised when a requested stage transition is not valid."""


class LedgerIntegrityError(PipelineError):
    """Raised when the stage history hash chain is broken."""


class SinkDispatchError(PipelineError):
    """Raised when every registered notification sink fails for one event."""
