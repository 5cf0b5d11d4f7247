"""End-to-end integration tests: source event through deploy.

These tests exercise the Orchestrator, TriggerEvaluator, BuildAndTagStage,
ApprovalGate, DeployController, StageMachine, RunLedger and
NotificationDispatcher working together over the simulated collaborators.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from tierforge.bridge.simulated import SimulatedBuilder, SimulatedRegistry
from tierforge.core.errors import (
    ExecutionConflict,
    ExecutionNotFound,
    ServiceNotRegistered,
    UnknownEnvironment,
)
from tierforge.core.trigger import TriggerDecision
from tierforge.models.environments import Environment
from tierforge.models.events import EventSeverity, EventType
from tierforge.models.pipeline import (
    ExecutionStatus,
    FailureReason,
    PipelineStage,
)

S = PipelineStage
ABC = SimulatedBuilder.artifact_ref_for("abc1234")
BAD = SimulatedBuilder.artifact_ref_for("bad0001")


class TestReleasePipeline:
    """Automatic release tiers: push, build, tag, deploy."""

    def test_release_push_runs_test_and_qa(self, engine):
        outcomes = engine.submit_source_event("api", "release/1.2.0", "abc1234")
        assert [o.environment for o in outcomes] == [Environment.TEST, Environment.QA]
        assert all(o.decision == TriggerDecision.START for o in outcomes)

        for outcome in outcomes:
            execution = engine.get_status(outcome.execution_id)
            assert execution.status == ExecutionStatus.SUCCEEDED
            assert execution.stages_visited == [
                S.TRIGGERED,
                S.BUILDING,
                S.DEPLOYING,
                S.SUCCEEDED,
            ]

    def test_tags_and_known_good(self, engine, registry):
        (test_outcome, _) = engine.submit_source_event("api", "release/1.2.0", "abc1234")
        execution = engine.get_status(test_outcome.execution_id)

        assert execution.artifact.tag_set == {
            "abc1234",
            "test-abc1234",
            "test-latest",
            "latest",
        }
        assert registry.tags_for(ABC) == {
            "abc1234",
            "latest",
            "test-abc1234",
            "test-latest",
            "qa-abc1234",
            "qa-latest",
        }
        pair = engine.store.get_pair("api", Environment.TEST)
        assert pair.last_good_artifact_ref == ABC
        assert pair.active_execution_id is None
        assert engine.approval_gate.get(execution.execution_id) is None

    def test_notifications_at_every_boundary(self, engine, sink, settings):
        (outcome, _) = engine.submit_source_event("api", "release/1.2.0", "abc1234")
        events = sink.for_execution(outcome.execution_id)
        assert [e.event_type for e in events] == [
            EventType.EXECUTION_STARTED,
            EventType.STAGE_STARTED,
            EventType.STAGE_SUCCEEDED,
            EventType.STAGE_STARTED,
            EventType.STAGE_SUCCEEDED,
            EventType.STAGE_STARTED,
            EventType.STAGE_SUCCEEDED,
            EventType.EXECUTION_SUCCEEDED,
        ]
        assert {e.topic for e in events} == {settings.pipeline_topic("test")}
        deploying = events[5].payload
        assert deploying["stage"] == "deploying"
        assert deploying["revision"] == "abc1234"
        assert deploying["tags"] == ["abc1234", "latest", "test-abc1234", "test-latest"]

    def test_history_chain_verifies(self, engine):
        outcomes = engine.submit_source_event("api", "release/1.2.0", "abc1234")
        for outcome in outcomes:
            assert engine.verify_history(outcome.execution_id) is True

    def test_second_release_deploys_over_first(self, engine, platform):
        engine.submit_source_event("api", "release/1.2.0", "abc1234")
        (outcome, _) = engine.submit_source_event("api", "release/1.2.1", "bbb2222")
        assert engine.get_status(outcome.execution_id).status == ExecutionStatus.SUCCEEDED
        spec = engine.resolve("api", "test")
        assert platform.current[spec.pipeline_name] == (
            SimulatedBuilder.artifact_ref_for("bbb2222")
        )
        assert len(engine.list_executions("api", "test")) == 2


class TestFeaturePipeline:
    """The develop tier is manual: a push only marks a revision ready."""

    def test_push_awaits_manual_start(self, engine, builder):
        (outcome,) = engine.submit_source_event("api", "feature/login-fix", "abc1234")
        assert outcome.decision == TriggerDecision.AWAITING_MANUAL_START
        assert outcome.execution_id is None
        assert engine.ready_revision("api", "develop") == "abc1234"
        assert builder.builds == []

    def test_newer_push_replaces_ready_revision(self, engine):
        engine.submit_source_event("api", "feature/a", "abc1234")
        engine.submit_source_event("api", "feature/b", "bbb2222")
        assert engine.ready_revision("api", "develop") == "bbb2222"

    def test_manual_start_uses_ready_revision(self, engine):
        engine.submit_source_event("api", "feature/login-fix", "abc1234")
        execution = engine.start_execution("api", "develop", actor="dev")

        assert execution.status == ExecutionStatus.SUCCEEDED
        assert execution.source_revision == "abc1234"
        assert execution.started_by == "dev"
        assert execution.stage_history[0].actor == "dev"
        assert engine.ready_revision("api", "develop") is None

    def test_start_without_revision(self, engine):
        with pytest.raises(ValueError, match="none is ready"):
            engine.start_execution("api", "develop")


class TestProductionPipeline:
    """Manual start, blocking scan, approval gate, then deploy."""

    def test_full_approval_flow(self, engine, sink, settings):
        (outcome,) = engine.submit_source_event("api", "prod/1.2.0", "abc1234")
        assert outcome.decision == TriggerDecision.AWAITING_MANUAL_START

        waiting = engine.start_execution("api", "prod", actor="release-manager")
        assert waiting.current_stage == S.AWAITING_APPROVAL
        assert waiting.status == ExecutionStatus.RUNNING

        (requested,) = sink.of_type(EventType.APPROVAL_REQUESTED)
        assert requested.topic == "ecs-fargate-prod-approval-notifications"
        assert requested.topic == settings.approval_topic("prod")
        assert requested.payload["review_link"].endswith(
            f"/{waiting.execution_id}/approval"
        )

        done = engine.approve(waiting.execution_id, actor="cab")
        assert done.status == ExecutionStatus.SUCCEEDED
        assert done.stages_visited == [
            S.TRIGGERED,
            S.BUILDING,
            S.SCANNING,
            S.AWAITING_APPROVAL,
            S.DEPLOYING,
            S.SUCCEEDED,
        ]
        deploying = done.stage_history[4]
        assert deploying.actor == "cab"
        assert deploying.detail == "approved by cab"
        assert "prod-abc1234" in done.artifact.tag_set

    def test_rejection(self, engine, platform):
        waiting = engine.start_execution("api", "prod", "abc1234")
        done = engine.reject(waiting.execution_id, "cab", "no changelog")

        assert done.status == ExecutionStatus.FAILED
        assert done.failure_reason == FailureReason.APPROVAL_REJECTED
        assert done.failure_detail == "rejected by cab: no changelog"
        assert platform.rollouts == []

    def test_timeout_fires_once(self, engine, clock, sink):
        waiting = engine.start_execution("api", "prod", "abc1234")

        clock.advance(timedelta(days=6, hours=23))
        assert engine.tick().expired_approvals == []

        clock.advance(timedelta(hours=1))
        report = engine.tick()
        assert report.expired_approvals == [waiting.execution_id]
        assert engine.tick().expired_approvals == []

        done = engine.get_status(waiting.execution_id)
        assert done.status == ExecutionStatus.FAILED
        assert done.failure_reason == FailureReason.APPROVAL_TIMEOUT
        assert len(sink.of_type(EventType.APPROVAL_EXPIRED)) == 1

    def test_second_start_conflicts(self, engine):
        engine.start_execution("api", "prod", "abc1234")
        with pytest.raises(ExecutionConflict):
            engine.start_execution("api", "prod", "bbb2222")

    def test_start_after_finish(self, engine):
        first = engine.start_execution("api", "prod", "abc1234")
        engine.reject(first.execution_id, "cab")
        second = engine.start_execution("api", "prod", "bbb2222")
        assert second.current_stage == S.AWAITING_APPROVAL


class TestFailures:
    def test_build_failure(self, engine, builder, registry, sink):
        builder.failing_revisions.add("bad0001")
        outcomes = engine.submit_source_event("api", "release/1.2.0", "bad0001")
        for outcome in outcomes:
            execution = engine.get_status(outcome.execution_id)
            assert execution.failure_reason == FailureReason.BUILD_FAILURE
            assert execution.stages_visited == [S.TRIGGERED, S.BUILDING, S.FAILED]
        assert registry.tags == {}
        assert len(sink.of_type(EventType.STAGE_FAILED)) == 2

    def test_push_error(self, make_engine, api_service, platform):
        engine = make_engine(registry=SimulatedRegistry(fail_on_calls=set(range(1, 100))))
        engine.register_service(api_service)
        (outcome, _) = engine.submit_source_event("api", "release/1.2.0", "abc1234")
        execution = engine.get_status(outcome.execution_id)
        assert execution.failure_reason == FailureReason.PUSH_ERROR
        assert execution.artifact is None
        assert platform.rollouts == []

    def test_unhealthy_release_rolls_back(self, engine, platform, sink):
        engine.submit_source_event("api", "release/1.2.0", "abc1234")
        platform.unhealthy_artifacts.add(BAD)

        (outcome, _) = engine.submit_source_event("api", "release/1.2.1", "bad0001")
        execution = engine.get_status(outcome.execution_id)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.failure_reason == FailureReason.DEPLOYMENT_ROLLBACK
        assert execution.stages_visited == [
            S.TRIGGERED,
            S.BUILDING,
            S.DEPLOYING,
            S.ROLLING_BACK,
            S.FAILED,
        ]
        spec = engine.resolve("api", "test")
        assert platform.current[spec.pipeline_name] == ABC
        assert engine.store.get_pair("api", Environment.TEST).last_good_artifact_ref == ABC

        (rolled,) = [
            e
            for e in sink.of_type(EventType.EXECUTION_ROLLEDBACK)
            if e.execution_id == outcome.execution_id
        ]
        assert rolled.severity == EventSeverity.WARNING
        assert rolled.payload["rolled_back_to"] == ABC

    def test_first_deploy_unhealthy_pages(self, engine, platform, sink):
        platform.unhealthy_artifacts.add(BAD)
        (outcome, _) = engine.submit_source_event("api", "release/1.2.1", "bad0001")
        execution = engine.get_status(outcome.execution_id)

        assert execution.failure_reason == FailureReason.ROLLBACK_FAILURE
        urgent = [
            e for e in sink.for_execution(outcome.execution_id)
            if e.severity == EventSeverity.URGENT
        ]
        assert [e.event_type for e in urgent] == [
            EventType.EXECUTION_ROLLBACK_FAILED,
            EventType.STAGE_FAILED,
        ]


class TestControlSurfaceErrors:
    def test_unregistered_service(self, engine):
        with pytest.raises(ServiceNotRegistered):
            engine.submit_source_event("web", "release/1.2.0", "abc1234")

    def test_ignored_branch(self, engine, builder):
        assert engine.submit_source_event("api", "main", "abc1234") == []
        assert builder.builds == []

    def test_unknown_environment(self, engine):
        with pytest.raises(UnknownEnvironment):
            engine.start_execution("api", "staging", "abc1234")

    def test_unknown_execution(self, engine):
        with pytest.raises(ExecutionNotFound):
            engine.get_status("tf-missing")
