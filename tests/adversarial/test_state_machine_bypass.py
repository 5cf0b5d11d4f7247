"""Adversarial tests: attempts to skip or reverse pipeline stages.

These tests verify that:
1. Build, approval and deploy cannot be skipped
2. Terminal executions cannot be revived
3. A failed transition leaves no ledger entry and no state change
"""

from __future__ import annotations

import pytest

from tierforge.core.errors import ApprovalNotPending, InvalidTransitionError
from tierforge.models.environments import Environment
from tierforge.models.pipeline import PipelineStage


@pytest.fixture
def started(stage_machine, store, make_execution):
    def _start(environment: Environment = Environment.TEST):
        execution = make_execution(environment)
        store.insert_execution(execution)
        stage_machine.record_entry(execution)
        return execution

    return _start


class TestSkippingStages:
    @pytest.mark.parametrize(
        "target",
        [
            PipelineStage.DEPLOYING,
            PipelineStage.SUCCEEDED,
            PipelineStage.AWAITING_APPROVAL,
            PipelineStage.ROLLING_BACK,
        ],
    )
    def test_cannot_skip_build(self, stage_machine, started, ledger, target):
        execution = started()
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(execution, target)
        assert len(ledger.get_entries(execution.execution_id)) == 1

    def test_cannot_succeed_without_deploy(self, stage_machine, started):
        execution = stage_machine.transition(started(), PipelineStage.BUILDING)
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(execution, PipelineStage.SUCCEEDED)

    def test_awaiting_approval_cannot_succeed_directly(self, stage_machine, started):
        execution = stage_machine.transition(started(Environment.PROD), PipelineStage.BUILDING)
        execution = stage_machine.transition(execution, PipelineStage.SCANNING)
        execution = stage_machine.transition(execution, PipelineStage.AWAITING_APPROVAL)
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(execution, PipelineStage.SUCCEEDED)

    def test_cannot_go_backwards(self, stage_machine, started, store):
        execution = stage_machine.transition(started(), PipelineStage.BUILDING)
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(execution, PipelineStage.TRIGGERED)
        assert store.get_execution(execution.execution_id).current_stage == (
            PipelineStage.BUILDING
        )


class TestTerminalStages:
    @pytest.mark.parametrize(
        "terminal",
        [
            PipelineStage.FAILED,
            PipelineStage.SUPERSEDED,
            PipelineStage.CANCELLED,
        ],
    )
    def test_terminal_cannot_be_revived(self, stage_machine, started, terminal):
        execution = stage_machine.transition(started(), terminal)
        for target in PipelineStage:
            with pytest.raises(InvalidTransitionError):
                stage_machine.transition(execution, target)


class TestControlSurface:
    def test_approve_a_non_production_execution(self, engine):
        (outcome, _) = engine.submit_source_event("api", "release/1.2.0", "abc1234")
        with pytest.raises(ApprovalNotPending):
            engine.approve(outcome.execution_id, "mallory")

    def test_approve_before_build_finished(self, engine, builder):
        """An approval cannot be recorded while the artifact is still building."""
        errors: list[Exception] = []

        def approve_mid_build(revision: str) -> None:
            (execution,) = engine.list_executions("api", "prod")
            try:
                engine.approve(execution.execution_id, "mallory")
            except ApprovalNotPending as exc:
                errors.append(exc)

        builder.on_build = approve_mid_build
        execution = engine.start_execution("api", "prod", "abc1234")
        assert len(errors) == 1
        assert execution.current_stage == PipelineStage.AWAITING_APPROVAL

    def test_cancel_terminal(self, engine):
        (outcome, _) = engine.submit_source_event("api", "release/1.2.0", "abc1234")
        with pytest.raises(InvalidTransitionError):
            engine.cancel_execution(outcome.execution_id)
