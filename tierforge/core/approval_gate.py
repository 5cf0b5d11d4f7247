"""Approval Gate — durable human approval in front of production deploys.

The wait is not a blocked thread: opening the gate persists an
``Approval`` with an absolute deadline, and every later interaction
(approve, reject, or a scheduler tick) re-evaluates that stored record.
A decision is recorded with a compare-and-swap on the pending row, so
exactly one resolution wins and its notification fires exactly once.
"""

from __future__ import annotations

import logging
from datetime import datetime

from tierforge.config import EngineSettings
from tierforge.core.errors import ApprovalNotPending, ApprovalTimeout
from tierforge.core.execution_store import ExecutionStore
from tierforge.models.approvals import Approval, ApprovalDecision
from tierforge.models.events import EventType
from tierforge.models.pipeline import PipelineExecution
from tierforge.routing.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


class ApprovalGate:
    """Opens, decides, and expires approvals.

    Parameters
    ----------
    store:
        Persists approvals.
    dispatcher:
        Receives ``approval.*`` events.
    settings:
        Supplies the review link base URL.
    """

    def __init__(
        self,
        store: ExecutionStore,
        dispatcher: NotificationDispatcher,
        settings: EngineSettings | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._settings = settings or EngineSettings()

    def review_link(self, execution_id: str) -> str:
        base = self._settings.review_base_url.rstrip("/")
        return f"{base}/{execution_id}/approval"

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    def open(self, execution: PipelineExecution, now: datetime) -> Approval:
        """Create the approval for *execution* and announce it.

        Opening twice returns the existing approval without re-notifying.
        """
        existing = self._store.get_approval(execution.execution_id)
        if existing is not None:
            return existing

        approval = Approval(
            execution_id=execution.execution_id,
            requested_at=now,
            deadline=now + execution.pipeline_spec.approval_timeout,
            review_link=self.review_link(execution.execution_id),
        )
        self._store.insert_approval(approval)
        logger.info(
            "%s [%s] approval requested, deadline %s",
            execution.pipeline_spec.pipeline_name,
            execution.execution_id,
            approval.deadline.isoformat(),
        )
        self._dispatcher.emit(
            EventType.APPROVAL_REQUESTED,
            {
                **execution.notification_payload(),
                "review_link": approval.review_link,
                "deadline": approval.deadline.isoformat(),
            },
        )
        return approval

    # ------------------------------------------------------------------
    # Decide
    # ------------------------------------------------------------------

    def approve(
        self, execution: PipelineExecution, actor: str, now: datetime
    ) -> Approval:
        """Record an approval.

        Raises
        ------
        ApprovalTimeout
            If the deadline has already passed (the approval is expired
            as a side effect).
        ApprovalNotPending
            If the approval was already decided.
        """
        return self._decide(
            execution, ApprovalDecision.APPROVED, actor, "", now
        )

    def reject(
        self,
        execution: PipelineExecution,
        actor: str,
        reason: str,
        now: datetime,
    ) -> Approval:
        """Record a rejection.  Same error contract as ``approve``."""
        return self._decide(
            execution, ApprovalDecision.REJECTED, actor, reason, now
        )

    def _decide(
        self,
        execution: PipelineExecution,
        decision: ApprovalDecision,
        actor: str,
        reason: str,
        now: datetime,
    ) -> Approval:
        approval, _ = self.evaluate(execution, now)
        if approval.decision == ApprovalDecision.EXPIRED:
            raise ApprovalTimeout(
                f"approval for {execution.execution_id} expired at "
                f"{approval.deadline.isoformat()}"
            )
        if not approval.is_pending:
            raise ApprovalNotPending(
                f"approval for {execution.execution_id} is already "
                f"{approval.decision.value}"
            )

        decided = approval.model_copy(
            update={
                "decision": decision,
                "decided_by": actor,
                "decided_at": now,
                "reason": reason,
            }
        )
        if not self._store.decide_approval(decided):
            current = self._require(execution.execution_id)
            raise ApprovalNotPending(
                f"approval for {execution.execution_id} is already "
                f"{current.decision.value}"
            )

        event_type = (
            EventType.APPROVAL_GRANTED
            if decision == ApprovalDecision.APPROVED
            else EventType.APPROVAL_REJECTED
        )
        logger.info(
            "%s [%s] approval %s by %s",
            execution.pipeline_spec.pipeline_name,
            execution.execution_id,
            decision.value,
            actor,
        )
        self._dispatcher.emit(
            event_type,
            {
                **execution.notification_payload(),
                "decided_by": actor,
                "reason": reason,
            },
        )
        return decided

    # ------------------------------------------------------------------
    # Deadline evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self, execution: PipelineExecution, now: datetime
    ) -> tuple[Approval, bool]:
        """Expire the approval if its deadline has passed.

        Returns ``(approval, changed)`` where *changed* is True only for
        the evaluation that performed the expiry.  Re-evaluating an
        expired approval is a no-op.
        """
        approval = self._require(execution.execution_id)
        if not approval.is_overdue(now):
            return approval, False

        expired = approval.model_copy(
            update={"decision": ApprovalDecision.EXPIRED, "decided_at": now}
        )
        if not self._store.decide_approval(expired):
            return self._require(execution.execution_id), False

        logger.warning(
            "%s [%s] approval expired (deadline %s)",
            execution.pipeline_spec.pipeline_name,
            execution.execution_id,
            approval.deadline.isoformat(),
        )
        self._dispatcher.emit(
            EventType.APPROVAL_EXPIRED,
            {
                **execution.notification_payload(),
                "deadline": approval.deadline.isoformat(),
            },
        )
        return expired, True

    def withdraw(
        self, execution: PipelineExecution, actor: str, now: datetime
    ) -> bool:
        """Close a still-pending approval of an execution that ended elsewhere.

        No ``approval.*`` event is emitted; the execution's own terminal
        notification already covers it.  Returns whether a pending row was
        closed.
        """
        approval = self._store.get_approval(execution.execution_id)
        if approval is None or not approval.is_pending:
            return False
        withdrawn = approval.model_copy(
            update={
                "decision": ApprovalDecision.WITHDRAWN,
                "decided_by": actor,
                "decided_at": now,
            }
        )
        if not self._store.decide_approval(withdrawn):
            return False
        logger.info(
            "%s [%s] approval withdrawn (%s)",
            execution.pipeline_spec.pipeline_name,
            execution.execution_id,
            execution.current_stage.value,
        )
        return True

    def get(self, execution_id: str) -> Approval | None:
        return self._store.get_approval(execution_id)

    def _require(self, execution_id: str) -> Approval:
        approval = self._store.get_approval(execution_id)
        if approval is None:
            raise ApprovalNotPending(f"no approval exists for {execution_id}")
        return approval
