"""Pipeline orchestrator — the control surface of the deployment engine.

The Orchestrator wires together the RunLedger, ExecutionStore, StageMachine,
TriggerEvaluator, BuildAndTagStage, ApprovalGate, DeployController, and
NotificationDispatcher into one engine.

Executions run synchronously in the calling thread until they finish or
reach a durable wait (awaiting approval).  Work that was interrupted, and
approvals that passed their deadline, are picked up by ``tick``.

Per-pair serialization: every stage transition happens under the pair's
lock after re-reading the execution, so a supersession or cancellation
recorded by another caller is observed at the next stage boundary.  The
lock is not held while a build or deploy is in progress.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

from tierforge.bridge.collaborators import (
    BuildCollaborator,
    ComputePlatform,
    RegistryCollaborator,
    ScanCollaborator,
)
from tierforge.config import EngineSettings
from tierforge.core.approval_gate import ApprovalGate
from tierforge.core.build_stage import BuildAndTagStage
from tierforge.core.deploy_controller import DeployController
from tierforge.core.errors import (
    ApprovalNotPending,
    ApprovalRejected,
    ApprovalTimeout,
    ConfirmationRequired,
    DeploymentHealthCheckFailure,
    DeploymentRollback,
    ExecutionConflict,
    ExecutionNotFound,
    InvalidTransitionError,
    RollbackFailure,
    ServiceNotRegistered,
    StageFailure,
)
from tierforge.core.execution_store import ExecutionStore
from tierforge.core.production_guard import (
    destructive_confirmation_required,
    enforce_production_constraints,
)
from tierforge.core.resolver import parse_environment, resolve_pipeline_spec
from tierforge.core.run_ledger import RunLedger
from tierforge.core.stage_machine import StageMachine
from tierforge.core.trigger import (
    DEFERRED_SUPERSESSION_STAGES,
    TriggerDecision,
    TriggerEvaluator,
    TriggerOutcome,
)
from tierforge.models.approvals import Approval, ApprovalDecision
from tierforge.models.environments import Environment
from tierforge.models.events import EventSeverity, EventType
from tierforge.models.pipeline import (
    ExecutionStatus,
    PipelineExecution,
    PipelineSpec,
    PipelineStage,
    TriggerMode,
)
from tierforge.models.services import Service
from tierforge.routing.dispatcher import NotificationDispatcher
from tierforge.routing.sinks import BaseSink

logger = logging.getLogger(__name__)

# Re-plan attempts when the pair pointer moves under a compare-and-swap.
_ADMIT_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TickReport(BaseModel):
    """What one ``tick`` did."""

    model_config = ConfigDict(frozen=True)

    expired_approvals: list[str] = []
    resumed: list[str] = []
    promoted: list[str] = []


class Orchestrator:
    """Deployment pipeline engine.

    Parameters
    ----------
    settings:
        Engine settings.  Uses environment-driven defaults if not provided.
    builder, scanner, registry, platform:
        External collaborators (see ``tierforge.bridge.collaborators``).
    sinks:
        Notification sinks registered on a new dispatcher.  Ignored when
        *dispatcher* is given.
    clock:
        Returns the current UTC time.  Tests pass a ``SimulatedClock``.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        builder: BuildCollaborator,
        scanner: ScanCollaborator,
        registry: RegistryCollaborator,
        platform: ComputePlatform,
        sinks: list[BaseSink] | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()

        # Production guard fails hard before any state is opened
        enforce_production_constraints(self.settings)

        self._clock = clock or _utcnow
        self.ledger = RunLedger(self.settings.state_db_path)
        self.store = ExecutionStore(self.settings.state_db_path)
        self.dispatcher = dispatcher or NotificationDispatcher(self.settings, sinks)
        self.stage_machine = StageMachine(
            self.ledger, self.store, self.dispatcher, self._clock
        )
        self.trigger = TriggerEvaluator(self.store)
        self.build_stage = BuildAndTagStage(builder, scanner, registry, self.settings)
        self.approval_gate = ApprovalGate(self.store, self.dispatcher, self.settings)
        self.deployer = DeployController(platform, self.store, self._clock)

        self._locks_guard = threading.Lock()
        self._pair_locks: dict[tuple[str, Environment], threading.RLock] = {}
        self._in_flight: set[str] = set()

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def register_service(self, service: Service) -> Service:
        """Register a service so source events can name it."""
        registered = self.store.register_service(service)
        logger.info(
            "Registered service %s (%s, %s)",
            service.name,
            service.runtime.value,
            service.service_type.value,
        )
        return registered

    def resolve(self, service_name: str, environment: str | Environment) -> PipelineSpec:
        """Resolve the pipeline definition of a registered service."""
        return resolve_pipeline_spec(
            self._require_service(service_name), environment, self.settings
        )

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def submit_source_event(
        self, service_name: str, branch: str, revision: str
    ) -> list[TriggerOutcome]:
        """Handle a push of *revision* to *branch*.

        Returns one outcome per environment the branch feeds; an empty list
        means no rule matched and the event was ignored.
        """
        service = self._require_service(service_name)
        match = self.trigger.match(branch)
        if match is None:
            logger.info(
                "Source event %s@%s ignored: no matching tier", branch, revision
            )
            return []

        outcomes: list[TriggerOutcome] = []
        for environment in match.environments:
            spec = resolve_pipeline_spec(service, environment, self.settings)
            if spec.trigger_mode == TriggerMode.MANUAL:
                self.store.set_ready_revision(service.name, environment, revision)
                logger.info(
                    "%s: revision %s ready, awaiting manual start",
                    spec.pipeline_name,
                    revision,
                )
                outcomes.append(
                    TriggerOutcome(
                        service_name=service.name,
                        environment=environment,
                        revision=revision,
                        decision=TriggerDecision.AWAITING_MANUAL_START,
                    )
                )
                continue
            outcomes.append(self._admit(spec, revision, actor="source-event"))

        # Admit into every pair before running, so sibling tiers start together.
        for outcome in outcomes:
            if outcome.decision.starts_now and outcome.execution_id:
                self._run(outcome.execution_id)
        return outcomes

    def start_execution(
        self,
        service_name: str,
        environment: str | Environment,
        revision: str | None = None,
        *,
        actor: str = "operator",
    ) -> PipelineExecution:
        """Explicitly start a pipeline.

        When *revision* is omitted the pair's ready revision is used.

        Raises
        ------
        ExecutionConflict
            If a manual-tier pair already has a running execution.
        ValueError
            If no revision is given and none is ready.
        """
        spec = self.resolve(service_name, environment)
        pair = self.store.get_pair(spec.service_name, spec.environment)
        revision = revision or pair.ready_revision
        if not revision:
            raise ValueError(
                f"No revision given and none is ready for {spec.pipeline_name}"
            )

        outcome = self._admit(spec, revision, actor=actor, explicit=True)
        if (
            spec.trigger_mode == TriggerMode.MANUAL
            and pair.ready_revision == revision
        ):
            self.store.set_ready_revision(spec.service_name, spec.environment, None)
        if outcome.decision.starts_now and outcome.execution_id:
            self._run(outcome.execution_id)
        return self.get_status(outcome.execution_id or "")

    def ready_revision(
        self, service_name: str, environment: str | Environment
    ) -> str | None:
        """Return the revision waiting for a manual start, if any."""
        env = parse_environment(environment)
        return self.store.get_pair(service_name, env).ready_revision

    def _admit(
        self,
        spec: PipelineSpec,
        revision: str,
        *,
        actor: str,
        explicit: bool = False,
    ) -> TriggerOutcome:
        with self._pair_lock(spec.service_name, spec.environment):
            for _ in range(_ADMIT_ATTEMPTS):
                plan = self.trigger.plan(spec, revision, explicit=explicit)
                decision = plan.decision
                if decision == TriggerDecision.REJECT_CONFLICT:
                    raise ExecutionConflict(
                        f"{spec.pipeline_name} already has running execution "
                        f"{plan.active_execution_id}"
                    )
                if decision == TriggerDecision.QUEUE_BEHIND_DEPLOY:
                    return self._queue(spec, revision, actor, plan.active_execution_id)

                now = self._clock()
                execution = PipelineExecution(
                    pipeline_spec=spec,
                    source_revision=revision,
                    started_by=actor,
                    created_at=now,
                    updated_at=now,
                )
                if not self.store.compare_and_swap_active(
                    spec.service_name,
                    spec.environment,
                    plan.active_execution_id,
                    execution.execution_id,
                    insert=execution,
                ):
                    logger.warning(
                        "%s: pair pointer moved during admission; re-planning",
                        spec.pipeline_name,
                    )
                    continue

                superseded_id = None
                if decision == TriggerDecision.SUPERSEDE_AND_START:
                    superseded_id = plan.active_execution_id
                    self._supersede(superseded_id, execution.execution_id)
                self.stage_machine.record_entry(execution, actor=actor)
                return TriggerOutcome(
                    service_name=spec.service_name,
                    environment=spec.environment,
                    revision=revision,
                    decision=decision,
                    execution_id=execution.execution_id,
                    superseded_execution_id=superseded_id,
                )
        raise ExecutionConflict(
            f"{spec.pipeline_name}: could not claim the pair after "
            f"{_ADMIT_ATTEMPTS} attempts"
        )

    def _queue(
        self,
        spec: PipelineSpec,
        revision: str,
        actor: str,
        active_id: str | None,
    ) -> TriggerOutcome:
        now = self._clock()
        queued = PipelineExecution(
            pipeline_spec=spec,
            source_revision=revision,
            current_stage=PipelineStage.PENDING,
            status=ExecutionStatus.QUEUED,
            started_by=actor,
            created_at=now,
            updated_at=now,
        )
        active = self.store.get_execution(active_id) if active_id else None
        if active is not None:
            # Honoured at the deploy's next safe checkpoint.
            self.store.save_execution(
                active.model_copy(
                    update={
                        "cancel_requested": True,
                        "superseded_by": queued.execution_id,
                        "updated_at": now,
                    }
                )
            )
        displaced = self.store.set_queued(
            spec.service_name, spec.environment, queued.execution_id, insert=queued
        )
        self.stage_machine.record_entry(queued, actor=actor)
        logger.info(
            "%s [%s] queued behind in-flight deploy %s",
            spec.pipeline_name,
            queued.execution_id,
            active_id,
        )
        if displaced:
            self._supersede(displaced, queued.execution_id)
        return TriggerOutcome(
            service_name=spec.service_name,
            environment=spec.environment,
            revision=revision,
            decision=TriggerDecision.QUEUE_BEHIND_DEPLOY,
            execution_id=queued.execution_id,
            superseded_execution_id=displaced,
        )

    def _withdraw_supersession(self, queued: PipelineExecution) -> None:
        """Let the in-flight deploy finish normally once its successor is cancelled."""
        pair = self.store.get_pair(*queued.pair_key)
        if pair.queued_execution_id != queued.execution_id:
            return
        active = (
            self.store.get_execution(pair.active_execution_id)
            if pair.active_execution_id
            else None
        )
        if (
            active is None
            or active.is_terminal
            or active.superseded_by != queued.execution_id
        ):
            return
        self.store.save_execution(
            active.model_copy(
                update={
                    "cancel_requested": False,
                    "superseded_by": None,
                    "updated_at": self._clock(),
                }
            )
        )

    def _supersede(self, execution_id: str | None, successor_id: str) -> None:
        execution = self.store.get_execution(execution_id) if execution_id else None
        if execution is None or execution.is_terminal:
            return
        self.stage_machine.transition(
            execution,
            PipelineStage.SUPERSEDED,
            detail=f"superseded by {successor_id}",
            superseded_by=successor_id,
        )

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def approve(self, execution_id: str, actor: str) -> PipelineExecution:
        """Approve a production execution and continue it into Deploy.

        Raises
        ------
        ApprovalNotPending
            If the execution is not awaiting approval.
        ApprovalTimeout
            If the deadline already passed; the execution is failed.
        """
        execution = self._require_awaiting_approval(execution_id)
        try:
            decided = self.approval_gate.approve(execution, actor, self._clock())
        except ApprovalTimeout:
            self._settle_approval(execution, self._require_approval(execution_id))
            self._run(execution_id)
            raise

        self._settle_approval(execution, decided)
        self._run(execution_id)
        return self.get_status(execution_id)

    def reject(self, execution_id: str, actor: str, reason: str = "") -> PipelineExecution:
        """Reject a production execution; it ends ``failed``/``ApprovalRejected``."""
        execution = self._require_awaiting_approval(execution_id)
        try:
            decided = self.approval_gate.reject(
                execution, actor, reason, self._clock()
            )
        except ApprovalTimeout:
            self._settle_approval(execution, self._require_approval(execution_id))
            self._run(execution_id)
            raise

        self._settle_approval(execution, decided)
        self._run(execution_id)
        return self.get_status(execution_id)

    def _settle_approval(self, execution: PipelineExecution, approval: Approval) -> bool:
        """Move an ``awaiting_approval`` execution on from a recorded decision.

        The decision itself was persisted (and announced) by the gate, so
        this step only transitions the execution.  It is what ``tick``
        replays when the engine stopped between the two writes.  Returns
        False if the execution already left ``awaiting_approval``.
        """
        with self._pair_lock(*execution.pair_key):
            current = self._require_execution(execution.execution_id)
            if current.current_stage != PipelineStage.AWAITING_APPROVAL:
                return False
            actor = approval.decided_by or ""
            if approval.decision == ApprovalDecision.APPROVED:
                self.stage_machine.transition(
                    current,
                    PipelineStage.DEPLOYING,
                    detail=f"approved by {actor}",
                    actor=actor,
                )
            elif approval.decision == ApprovalDecision.REJECTED:
                detail = f"rejected by {actor}" + (
                    f": {approval.reason}" if approval.reason else ""
                )
                self._fail(current, ApprovalRejected(detail), actor=actor)
            elif approval.decision == ApprovalDecision.EXPIRED:
                self._fail(
                    current,
                    ApprovalTimeout(
                        f"no decision before {approval.deadline.isoformat()}"
                    ),
                )
            else:
                return False
        return True

    def _require_approval(self, execution_id: str) -> Approval:
        approval = self.approval_gate.get(execution_id)
        if approval is None:
            raise ApprovalNotPending(f"no approval exists for {execution_id}")
        return approval

    def _require_awaiting_approval(self, execution_id: str) -> PipelineExecution:
        execution = self._require_execution(execution_id)
        if execution.current_stage != PipelineStage.AWAITING_APPROVAL:
            raise ApprovalNotPending(
                f"{execution_id} is {execution.current_stage.value}, "
                f"not awaiting approval"
            )
        return execution

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_execution(
        self,
        execution_id: str,
        actor: str = "operator",
        *,
        confirm: bool = False,
    ) -> PipelineExecution:
        """Cancel an execution.

        A running deploy is not interrupted: the cancellation is recorded
        and honoured once the rollout reaches steady state or finishes
        rolling back.

        Raises
        ------
        ConfirmationRequired
            In tiers that protect destructive actions, unless *confirm*.
        InvalidTransitionError
            If the execution is already terminal.
        """
        execution = self._require_execution(execution_id)
        if execution.is_terminal:
            raise InvalidTransitionError(
                f"{execution_id} is already {execution.status.value}"
            )
        if destructive_confirmation_required(execution.environment) and not confirm:
            raise ConfirmationRequired(
                f"Cancelling {execution_id} in {execution.environment.value} "
                f"requires explicit confirmation"
            )

        with self._pair_lock(*execution.pair_key):
            execution = self._require_execution(execution_id)
            if execution.current_stage in DEFERRED_SUPERSESSION_STAGES:
                self.store.save_execution(
                    execution.model_copy(
                        update={"cancel_requested": True, "updated_at": self._clock()}
                    )
                )
                logger.info(
                    "%s [%s] cancellation requested by %s; deferred until "
                    "the rollout settles",
                    execution.pipeline_spec.pipeline_name,
                    execution_id,
                    actor,
                )
                return self.get_status(execution_id)
            if execution.current_stage == PipelineStage.PENDING:
                self._withdraw_supersession(execution)
            cancelled = self._advance(
                execution,
                PipelineStage.CANCELLED,
                detail=f"cancelled by {actor}",
                actor=actor,
            )
            if (
                cancelled is not None
                and execution.current_stage == PipelineStage.AWAITING_APPROVAL
            ):
                self.approval_gate.withdraw(cancelled, actor, self._clock())

        self._run(execution_id)
        return self.get_status(execution_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, execution_id: str) -> PipelineExecution:
        """Return the execution with its full stage history from the ledger."""
        execution = self._require_execution(execution_id)
        return execution.model_copy(
            update={"stage_history": self.ledger.stage_history(execution_id)}
        )

    def list_executions(
        self, service_name: str, environment: str | Environment
    ) -> list[PipelineExecution]:
        """Return every execution of a pair, oldest first, with history."""
        env = parse_environment(environment)
        return [
            e.model_copy(
                update={"stage_history": self.ledger.stage_history(e.execution_id)}
            )
            for e in self.store.list_executions(service_name, env)
        ]

    def verify_history(self, execution_id: str) -> bool:
        """Verify the stage history hash chain of one execution.

        Raises ``LedgerIntegrityError`` if the chain is broken.
        """
        self._require_execution(execution_id)
        return self.ledger.verify_chain(execution_id)

    # ------------------------------------------------------------------
    # Durable wake-up
    # ------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> TickReport:
        """Re-check persisted deadlines and resume interrupted work.

        Safe to call at any frequency.  Assumes one engine process per
        state database.
        """
        now = now or self._clock()
        expired: list[str] = []
        for approval in self.store.list_pending_approvals():
            execution = self.store.get_execution(approval.execution_id)
            if execution is None:
                continue
            if execution.is_terminal:
                # Ended while the gate was open, e.g. cancelled.
                self.approval_gate.withdraw(execution, "tick", now)
                continue
            if execution.current_stage != PipelineStage.AWAITING_APPROVAL:
                continue
            approval, changed = self.approval_gate.evaluate(execution, now)
            if changed:
                expired.append(execution.execution_id)
                self._settle_approval(execution, approval)
                self._run(execution.execution_id)

        resumed: list[str] = []
        for execution in self.store.list_by_status([ExecutionStatus.RUNNING]):
            if execution.execution_id in self._in_flight:
                continue
            if execution.current_stage == PipelineStage.AWAITING_APPROVAL:
                approval = self.approval_gate.get(execution.execution_id)
                if approval is None:
                    # Interrupted between the transition and opening the gate.
                    self.approval_gate.open(execution, now)
                    continue
                if approval.is_pending:
                    continue
                # Decision recorded, transition lost.
                logger.info(
                    "%s [%s] settling recorded approval decision %s",
                    execution.pipeline_spec.pipeline_name,
                    execution.execution_id,
                    approval.decision.value,
                )
                if self._settle_approval(execution, approval):
                    resumed.append(execution.execution_id)
                    self._run(execution.execution_id)
                continue
            logger.info(
                "%s [%s] resuming at %s",
                execution.pipeline_spec.pipeline_name,
                execution.execution_id,
                execution.current_stage.value,
            )
            resumed.append(execution.execution_id)
            self._run(execution.execution_id)

        promoted: list[str] = []
        for execution in self.store.list_by_status([ExecutionStatus.QUEUED]):
            pair = self.store.get_pair(*execution.pair_key)
            if pair.queued_execution_id != execution.execution_id:
                continue
            active = (
                self.store.get_execution(pair.active_execution_id)
                if pair.active_execution_id
                else None
            )
            if active is not None and not active.is_terminal:
                continue
            promoted_id = self._promote(execution.pair_key, pair.active_execution_id)
            if promoted_id:
                promoted.append(promoted_id)
                self._run(promoted_id)

        return TickReport(expired_approvals=expired, resumed=resumed, promoted=promoted)

    # ------------------------------------------------------------------
    # Execution runner
    # ------------------------------------------------------------------

    def _run(self, execution_id: str) -> None:
        """Run *execution_id*, then any execution promoted behind it."""
        next_id: str | None = execution_id
        while next_id:
            next_id = self._run_one(next_id)

    def _run_one(self, execution_id: str) -> str | None:
        with self._locks_guard:
            if execution_id in self._in_flight:
                return None
            self._in_flight.add(execution_id)
        try:
            while True:
                execution = self.store.get_execution(execution_id)
                if execution is None or execution.is_terminal:
                    break
                if execution.current_stage in (
                    PipelineStage.PENDING,
                    PipelineStage.AWAITING_APPROVAL,
                ):
                    return None
                try:
                    self._step(execution)
                except StageFailure as exc:
                    self._fail(execution, exc)
        finally:
            with self._locks_guard:
                self._in_flight.discard(execution_id)

        if execution is None:
            return None
        return self._release(execution)

    def _step(self, execution: PipelineExecution) -> None:
        stage = execution.current_stage
        if stage == PipelineStage.TRIGGERED:
            self._advance(execution, PipelineStage.BUILDING)
        elif stage in (PipelineStage.BUILDING, PipelineStage.SCANNING):
            self._build_and_tag(execution)
        elif stage == PipelineStage.DEPLOYING:
            self._deploy(execution)
        elif stage == PipelineStage.ROLLING_BACK:
            self._roll_back(execution)
        else:
            raise InvalidTransitionError(
                f"{execution.execution_id}: no handler for stage {stage.value}"
            )

    def _build_and_tag(self, execution: PipelineExecution) -> None:
        spec = execution.pipeline_spec
        artifact_ref = self.build_stage.build(execution)

        if (
            spec.scan_gate_blocking
            and execution.current_stage == PipelineStage.BUILDING
        ):
            scanning = self._advance(
                execution, PipelineStage.SCANNING, detail=artifact_ref
            )
            if scanning is None:
                return
            execution = scanning
        findings = self.build_stage.scan(execution, artifact_ref)

        # A superseded build finishes naturally but is never tagged.
        if self._stopped(execution):
            return
        artifact = self.build_stage.tag_and_push(execution, artifact_ref, findings)

        if spec.requires_approval:
            waiting = self._advance(
                execution,
                PipelineStage.AWAITING_APPROVAL,
                detail=f"tags {', '.join(artifact.sorted_tags)}",
                artifact=artifact,
            )
            if waiting is not None:
                self.approval_gate.open(waiting, self._clock())
        else:
            self._advance(
                execution,
                PipelineStage.DEPLOYING,
                detail=f"tags {', '.join(artifact.sorted_tags)}",
                artifact=artifact,
            )

    def _deploy(self, execution: PipelineExecution) -> None:
        pair = self.store.get_pair(*execution.pair_key)
        try:
            record = self.deployer.roll_forward(
                execution, pair.last_good_artifact_ref
            )
        except DeploymentHealthCheckFailure as exc:
            self._advance(execution, PipelineStage.ROLLING_BACK, detail=str(exc))
            return

        self.store.set_last_good_artifact(
            execution.service_name, execution.environment, record.artifact_ref
        )
        with self._pair_lock(*execution.pair_key):
            current = self._require_execution(execution.execution_id)
            if current.cancel_requested:
                target = (
                    PipelineStage.SUPERSEDED
                    if current.superseded_by
                    else PipelineStage.CANCELLED
                )
                detail = (
                    f"superseded by {current.superseded_by} at steady state"
                    if current.superseded_by
                    else "cancelled at steady state"
                )
                self.stage_machine.transition(current, target, detail=detail)
            else:
                self.stage_machine.transition(
                    current,
                    PipelineStage.SUCCEEDED,
                    detail=f"{record.artifact_ref} steady",
                )

    def _roll_back(self, execution: PipelineExecution) -> None:
        try:
            record = self.deployer.roll_back(execution)
        except RollbackFailure:
            self.dispatcher.emit(
                EventType.EXECUTION_ROLLBACK_FAILED,
                execution.notification_payload(),
                severity=EventSeverity.URGENT,
            )
            raise

        self.dispatcher.emit(
            EventType.EXECUTION_ROLLEDBACK,
            {
                **execution.notification_payload(),
                "rolled_back_to": record.previous_artifact_ref,
            },
            severity=EventSeverity.WARNING,
        )
        raise DeploymentRollback(
            f"rolled back to {record.previous_artifact_ref}: "
            f"{record.failure_detail or 'health did not converge'}"
        )

    # ------------------------------------------------------------------
    # Transition helpers
    # ------------------------------------------------------------------

    def _advance(
        self,
        execution: PipelineExecution,
        target: PipelineStage,
        **kwargs: object,
    ) -> PipelineExecution | None:
        """Transition under the pair lock, re-reading the execution first.

        Returns ``None`` if the execution became terminal in the meantime.
        """
        with self._pair_lock(*execution.pair_key):
            current = self._require_execution(execution.execution_id)
            if current.is_terminal:
                logger.info(
                    "%s [%s] is %s; not moving to %s",
                    current.pipeline_spec.pipeline_name,
                    current.execution_id,
                    current.status.value,
                    target.value,
                )
                return None
            return self.stage_machine.transition(current, target, **kwargs)

    def _fail(
        self,
        execution: PipelineExecution,
        exc: StageFailure,
        *,
        actor: str = "",
    ) -> None:
        logger.error(
            "%s [%s] failed in %s: %s (%s)",
            execution.pipeline_spec.pipeline_name,
            execution.execution_id,
            execution.current_stage.value,
            exc.failure_reason.value,
            exc.message,
        )
        self._advance(
            execution,
            PipelineStage.FAILED,
            detail=exc.message,
            actor=actor,
            failure_reason=exc.failure_reason,
        )

    def _stopped(self, execution: PipelineExecution) -> bool:
        current = self._require_execution(execution.execution_id)
        return current.is_terminal

    # ------------------------------------------------------------------
    # Pair pointer
    # ------------------------------------------------------------------

    def _release(self, execution: PipelineExecution) -> str | None:
        """Release the pair after *execution* finished; promote any successor."""
        pair = self.store.get_pair(*execution.pair_key)
        if pair.queued_execution_id == execution.execution_id:
            with self._pair_lock(*execution.pair_key):
                self.store.set_queued(execution.service_name, execution.environment, None)
            return None
        if pair.active_execution_id != execution.execution_id:
            return None
        return self._promote(execution.pair_key, execution.execution_id)

    def _promote(
        self, pair_key: tuple[str, Environment], expected_active: str | None
    ) -> str | None:
        service_name, environment = pair_key
        with self._pair_lock(service_name, environment):
            queued_id = self.store.set_queued(service_name, environment, None)
            if not self.store.compare_and_swap_active(
                service_name, environment, expected_active, queued_id
            ):
                if queued_id:
                    self.store.set_queued(service_name, environment, queued_id)
                logger.warning(
                    "%s/%s: pair pointer moved; not releasing %s",
                    service_name,
                    environment.value,
                    expected_active,
                )
                return None
            if not queued_id:
                return None
            queued = self.store.get_execution(queued_id)
            if queued is None or queued.is_terminal:
                return None
            self.stage_machine.transition(
                queued,
                PipelineStage.TRIGGERED,
                detail=f"promoted after {expected_active}",
            )
            return queued_id

    def _pair_lock(self, service_name: str, environment: Environment) -> threading.RLock:
        key = (service_name, environment)
        with self._locks_guard:
            lock = self._pair_locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._pair_locks[key] = lock
            return lock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _require_service(self, name: str) -> Service:
        service = self.store.get_service(name)
        if service is None:
            raise ServiceNotRegistered(f"Service {name!r} is not registered")
        return service

    def _require_execution(self, execution_id: str) -> PipelineExecution:
        execution = self.store.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFound(f"Execution {execution_id!r} not found")
        return execution
