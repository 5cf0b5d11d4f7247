"""Execution stage state machine.

Enforces:
- Valid stage transitions only (VALID_TRANSITIONS table)
- Every transition recorded in the Run Ledger before it becomes visible
- A notification at every stage boundary
- Terminal stages have no outgoing transitions
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from tierforge.core.errors import InvalidTransitionError
from tierforge.core.execution_store import ExecutionStore
from tierforge.core.run_ledger import RunLedger
from tierforge.models.events import EventSeverity, EventType
from tierforge.models.ledger import LedgerEntry
from tierforge.models.pipeline import (
    ExecutionStatus,
    FailureReason,
    PipelineExecution,
    PipelineStage,
)
from tierforge.routing.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

_ABSORBING = {
    PipelineStage.FAILED,
    PipelineStage.SUPERSEDED,
    PipelineStage.CANCELLED,
}

# Failed / Superseded / Cancelled are reachable from every non-terminal
# stage.  Terminal stages have no outgoing transitions.
VALID_TRANSITIONS: dict[PipelineStage, set[PipelineStage]] = {
    PipelineStage.PENDING: {PipelineStage.TRIGGERED} | _ABSORBING,
    PipelineStage.TRIGGERED: {PipelineStage.BUILDING} | _ABSORBING,
    PipelineStage.BUILDING: {
        PipelineStage.SCANNING,
        PipelineStage.AWAITING_APPROVAL,
        PipelineStage.DEPLOYING,
    } | _ABSORBING,
    PipelineStage.SCANNING: {
        PipelineStage.AWAITING_APPROVAL,
        PipelineStage.DEPLOYING,
    } | _ABSORBING,
    PipelineStage.AWAITING_APPROVAL: {PipelineStage.DEPLOYING} | _ABSORBING,
    PipelineStage.DEPLOYING: {
        PipelineStage.SUCCEEDED,
        PipelineStage.ROLLING_BACK,
    } | _ABSORBING,
    PipelineStage.ROLLING_BACK: set(_ABSORBING),
    PipelineStage.SUCCEEDED: set(),
    PipelineStage.FAILED: set(),
    PipelineStage.SUPERSEDED: set(),
    PipelineStage.CANCELLED: set(),
}

_STATUS_FOR_STAGE: dict[PipelineStage, ExecutionStatus] = {
    PipelineStage.PENDING: ExecutionStatus.QUEUED,
    PipelineStage.SUCCEEDED: ExecutionStatus.SUCCEEDED,
    PipelineStage.FAILED: ExecutionStatus.FAILED,
    PipelineStage.SUPERSEDED: ExecutionStatus.SUPERSEDED,
    PipelineStage.CANCELLED: ExecutionStatus.CANCELLED,
}

_TERMINAL_EVENTS: dict[PipelineStage, EventType] = {
    PipelineStage.SUCCEEDED: EventType.EXECUTION_SUCCEEDED,
    PipelineStage.SUPERSEDED: EventType.EXECUTION_SUPERSEDED,
    PipelineStage.CANCELLED: EventType.EXECUTION_CANCELLED,
}


class StageMachine:
    """Moves executions between stages and records every move.

    Parameters
    ----------
    ledger:
        The Run Ledger that holds stage history.
    store:
        The execution store that holds the current execution copy.
    dispatcher:
        Notification dispatcher; receives stage boundary events.
    clock:
        Returns the current UTC time.
    """

    def __init__(
        self,
        ledger: RunLedger,
        store: ExecutionStore,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime],
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock

    def record_entry(self, execution: PipelineExecution, *, actor: str = "") -> None:
        """Record the initial stage of a newly created execution."""
        self._ledger.append(
            LedgerEntry(
                execution_id=execution.execution_id,
                to_stage=execution.current_stage,
                recorded_at=self._clock(),
                detail=f"revision {execution.source_revision}",
                actor=actor or execution.started_by,
            )
        )
        if execution.current_stage == PipelineStage.TRIGGERED:
            self._announce_started(execution)

    def transition(
        self,
        execution: PipelineExecution,
        target: PipelineStage,
        *,
        detail: str = "",
        actor: str = "",
        failure_reason: FailureReason | None = None,
        **updates: object,
    ) -> PipelineExecution:
        """Move *execution* to *target*, returning the persisted copy.

        Extra keyword arguments are applied to the execution as field
        updates in the same write.
        """
        current = execution.current_stage
        allowed = VALID_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {execution.execution_id} from "
                f"{current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        now = self._clock()
        artifact_refs = (
            [execution.artifact.artifact_ref] if execution.artifact else []
        )
        self._ledger.append(
            LedgerEntry(
                execution_id=execution.execution_id,
                from_stage=current,
                to_stage=target,
                recorded_at=now,
                detail=detail,
                actor=actor,
                artifact_refs=artifact_refs,
            )
        )

        fields: dict[str, object] = {
            "current_stage": target,
            "status": _STATUS_FOR_STAGE.get(target, ExecutionStatus.RUNNING),
            "updated_at": now,
            **updates,
        }
        if failure_reason is not None:
            fields["failure_reason"] = failure_reason
            fields["failure_detail"] = detail
        updated = execution.model_copy(update=fields)
        self._store.save_execution(updated)

        logger.info(
            "%s [%s] %s -> %s%s",
            updated.pipeline_spec.pipeline_name,
            updated.execution_id,
            current.value,
            target.value,
            f" ({detail})" if detail else "",
        )
        self._announce(execution, updated, detail)
        return updated

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _announce_started(self, execution: PipelineExecution) -> None:
        self._dispatcher.emit(
            EventType.EXECUTION_STARTED, execution.notification_payload()
        )
        self._dispatcher.emit(
            EventType.STAGE_STARTED, execution.notification_payload()
        )

    def _announce(
        self,
        before: PipelineExecution,
        after: PipelineExecution,
        detail: str,
    ) -> None:
        previous = before.current_stage
        target = after.current_stage
        payload = after.notification_payload()

        if previous == PipelineStage.PENDING and target == PipelineStage.TRIGGERED:
            self._announce_started(after)
            return

        if target == PipelineStage.FAILED:
            self._dispatcher.emit(
                EventType.STAGE_FAILED,
                {**payload, "failed_stage": previous.value, "detail": detail},
                severity=(
                    EventSeverity.URGENT
                    if after.failure_reason == FailureReason.ROLLBACK_FAILURE
                    else EventSeverity.WARNING
                ),
            )
            return

        if target == PipelineStage.ROLLING_BACK:
            # Health failure: the deploy stage failed but the execution
            # is not terminal until rollback settles.
            self._dispatcher.emit(
                EventType.STAGE_FAILED,
                {**payload, "failed_stage": previous.value, "detail": detail},
                severity=EventSeverity.WARNING,
            )
            self._dispatcher.emit(EventType.STAGE_STARTED, payload)
            return

        if previous != PipelineStage.PENDING and target not in _ABSORBING:
            self._dispatcher.emit(
                EventType.STAGE_SUCCEEDED,
                {**payload, "completed_stage": previous.value},
            )

        terminal_event = _TERMINAL_EVENTS.get(target)
        if terminal_event is not None:
            self._dispatcher.emit(terminal_event, {**payload, "detail": detail})
        else:
            self._dispatcher.emit(EventType.STAGE_STARTED, payload)
