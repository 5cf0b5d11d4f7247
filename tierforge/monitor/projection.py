"""MonitorProjection — pure read-only view of an execution.

Stage rows come from the Run Ledger; the execution store only supplies the
current status, artifact, and approval.  Nothing here is persisted.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from tierforge.core.errors import ExecutionNotFound, LedgerIntegrityError
from tierforge.core.execution_store import ExecutionStore
from tierforge.core.run_ledger import RunLedger
from tierforge.models.approvals import Approval
from tierforge.models.pipeline import (
    DeploymentRecord,
    ExecutionStatus,
    FailureReason,
    PipelineStage,
    StageTransition,
)


class ExecutionSnapshot(BaseModel):
    """A frozen, point-in-time view of one execution."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    pipeline_name: str
    service_name: str
    environment: str
    revision: str
    current_stage: PipelineStage
    status: ExecutionStatus
    failure_reason: FailureReason | None = None
    failure_detail: str = ""
    tags: list[str] = []
    history: list[StageTransition] = []
    approval: Approval | None = None
    deployment: DeploymentRecord | None = None
    chain_valid: bool = True
    chain_error: str = ""
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_seconds(self) -> float | None:
        if len(self.history) < 2:
            return None
        delta = self.history[-1].entered_at - self.history[0].entered_at
        return delta.total_seconds()


class MonitorProjection:
    """Builds ``ExecutionSnapshot`` models from the ledger and store.

    Parameters
    ----------
    ledger:
        The Run Ledger to project stage history from.
    store:
        The execution store for current status and side records.
    """

    def __init__(self, ledger: RunLedger, store: ExecutionStore) -> None:
        self._ledger = ledger
        self._store = store

    def snapshot(self, execution_id: str) -> ExecutionSnapshot:
        execution = self._store.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFound(f"Execution {execution_id!r} not found")

        chain_valid, chain_error = True, ""
        try:
            self._ledger.verify_chain(execution_id)
        except LedgerIntegrityError as exc:
            chain_valid, chain_error = False, str(exc)

        return ExecutionSnapshot(
            execution_id=execution.execution_id,
            pipeline_name=execution.pipeline_spec.pipeline_name,
            service_name=execution.service_name,
            environment=execution.environment.value,
            revision=execution.source_revision,
            current_stage=execution.current_stage,
            status=execution.status,
            failure_reason=execution.failure_reason,
            failure_detail=execution.failure_detail,
            tags=execution.artifact.sorted_tags if execution.artifact else [],
            history=self._ledger.stage_history(execution_id),
            approval=self._store.get_approval(execution_id),
            deployment=self._store.get_deployment(execution_id),
            chain_valid=chain_valid,
            chain_error=chain_error,
        )
