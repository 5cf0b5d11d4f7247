"""Trigger Evaluator — decides what a source event or start request does.

Planning is read-only: it looks at the pair's active execution and returns
a ``TriggerPlan``.  The orchestrator carries the plan out with a
compare-and-swap on the pair pointer and re-plans if the pointer moved in
the meantime.
"""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import BaseModel, ConfigDict

from tierforge.core.branch_matcher import (
    DEFAULT_BRANCH_RULES,
    BranchMatch,
    BranchRule,
    match_branch,
)
from tierforge.core.execution_store import ExecutionStore
from tierforge.models.environments import Environment
from tierforge.models.pipeline import PipelineSpec, PipelineStage, TriggerMode

logger = logging.getLogger(__name__)

# A running deploy is never interrupted; newer revisions wait behind it.
DEFERRED_SUPERSESSION_STAGES: frozenset[PipelineStage] = frozenset({
    PipelineStage.DEPLOYING,
    PipelineStage.ROLLING_BACK,
})


class TriggerDecision(str, Enum):
    """What admitting a revision into a pair does."""

    AWAITING_MANUAL_START = "awaiting_manual_start"
    START = "start"
    SUPERSEDE_AND_START = "supersede_and_start"
    QUEUE_BEHIND_DEPLOY = "queue_behind_deploy"
    REJECT_CONFLICT = "reject_conflict"

    @property
    def starts_now(self) -> bool:
        return self in (TriggerDecision.START, TriggerDecision.SUPERSEDE_AND_START)


class TriggerPlan(BaseModel):
    """The evaluator's decision for one pair, before it is applied."""

    model_config = ConfigDict(frozen=True)

    decision: TriggerDecision
    spec: PipelineSpec
    revision: str
    active_execution_id: str | None = None


class TriggerOutcome(BaseModel):
    """The applied result of admitting a revision into one pair."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    environment: Environment
    revision: str
    decision: TriggerDecision
    execution_id: str | None = None
    superseded_execution_id: str | None = None


class TriggerEvaluator:
    """Maps source events to per-pair trigger plans.

    Parameters
    ----------
    store:
        Read for the pair pointer and the active execution.
    rules:
        Branch rule table; defaults to the standard three tiers.
    """

    def __init__(
        self,
        store: ExecutionStore,
        rules: tuple[BranchRule, ...] | list[BranchRule] = DEFAULT_BRANCH_RULES,
    ) -> None:
        self._store = store
        self._rules = tuple(rules)

    def match(self, branch: str) -> BranchMatch | None:
        """Match *branch*; a miss is routine and only logged at DEBUG."""
        result = match_branch(branch, self._rules)
        if result is None:
            logger.debug("No pipeline tier matches branch %r; event ignored", branch)
        return result

    def plan(
        self,
        spec: PipelineSpec,
        revision: str,
        *,
        explicit: bool = False,
    ) -> TriggerPlan:
        """Decide how *revision* enters the pair described by *spec*.

        Manual tiers never start on a source event.  An explicit start on
        a manual tier is rejected while another execution is running;
        automatic tiers supersede the running execution, or queue behind
        it when it is already deploying.
        """
        if spec.trigger_mode == TriggerMode.MANUAL and not explicit:
            return TriggerPlan(
                decision=TriggerDecision.AWAITING_MANUAL_START,
                spec=spec,
                revision=revision,
            )

        pair = self._store.get_pair(spec.service_name, spec.environment)
        active_id = pair.active_execution_id
        active = self._store.get_execution(active_id) if active_id else None

        if active is None or active.is_terminal:
            decision = TriggerDecision.START
        elif spec.trigger_mode == TriggerMode.MANUAL:
            decision = TriggerDecision.REJECT_CONFLICT
        elif active.current_stage in DEFERRED_SUPERSESSION_STAGES:
            decision = TriggerDecision.QUEUE_BEHIND_DEPLOY
        else:
            decision = TriggerDecision.SUPERSEDE_AND_START

        return TriggerPlan(
            decision=decision,
            spec=spec,
            revision=revision,
            active_execution_id=active_id,
        )
