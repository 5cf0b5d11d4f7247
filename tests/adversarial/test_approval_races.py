"""Adversarial tests: racing and replayed approval decisions.

These tests verify that:
1. An approval is resolved exactly once
2. A decision after the deadline cannot resurrect an expired approval
3. Concurrent approvers cannot both deploy
"""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from tierforge.core.errors import ApprovalNotPending, ApprovalTimeout
from tierforge.models.approvals import ApprovalDecision
from tierforge.models.events import EventType
from tierforge.models.pipeline import ExecutionStatus, FailureReason


@pytest.fixture
def awaiting(engine):
    return engine.start_execution("api", "prod", "abc1234").execution_id


class TestApprovalReplay:
    def test_double_approve(self, engine, awaiting, sink, platform):
        engine.approve(awaiting, "alice")
        with pytest.raises(ApprovalNotPending):
            engine.approve(awaiting, "alice")
        assert len(sink.of_type(EventType.APPROVAL_GRANTED)) == 1
        assert len(platform.rollouts) == 1

    def test_reject_after_approve(self, engine, awaiting):
        engine.approve(awaiting, "alice")
        with pytest.raises(ApprovalNotPending):
            engine.reject(awaiting, "bob", "too late")
        assert engine.get_status(awaiting).status == ExecutionStatus.SUCCEEDED

    def test_approve_after_reject(self, engine, awaiting, platform):
        engine.reject(awaiting, "bob")
        with pytest.raises(ApprovalNotPending):
            engine.approve(awaiting, "alice")
        assert platform.rollouts == []


class TestExpiredApproval:
    def test_approve_after_deadline(self, engine, awaiting, clock, platform, sink):
        clock.advance(timedelta(days=7, seconds=1))
        with pytest.raises(ApprovalTimeout):
            engine.approve(awaiting, "alice")

        execution = engine.get_status(awaiting)
        assert execution.status == ExecutionStatus.FAILED
        assert execution.failure_reason == FailureReason.APPROVAL_TIMEOUT
        assert platform.rollouts == []
        assert len(sink.of_type(EventType.APPROVAL_EXPIRED)) == 1

    def test_tick_then_late_approve(self, engine, awaiting, clock, sink):
        clock.advance(timedelta(days=8))
        engine.tick()
        with pytest.raises(ApprovalNotPending):
            engine.approve(awaiting, "alice")
        assert len(sink.of_type(EventType.APPROVAL_EXPIRED)) == 1
        assert engine.approval_gate.get(awaiting).decision == ApprovalDecision.EXPIRED


class TestConcurrentApprovers:
    def test_one_winner(self, engine, awaiting, platform, sink):
        barrier = threading.Barrier(4)
        results: list[str] = []
        lock = threading.Lock()

        def approve(actor: str) -> None:
            barrier.wait()
            try:
                engine.approve(awaiting, actor)
                outcome = "ok"
            except ApprovalNotPending:
                outcome = "refused"
            with lock:
                results.append(outcome)

        threads = [
            threading.Thread(target=approve, args=(f"approver-{i}",)) for i in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 1
        assert results.count("refused") == 3
        assert len(sink.of_type(EventType.APPROVAL_GRANTED)) == 1
        assert len(platform.rollouts) == 1
