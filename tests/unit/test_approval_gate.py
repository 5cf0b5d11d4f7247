"""Tests for the Approval Gate — durable deadline, single resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tierforge.core.approval_gate import ApprovalGate
from tierforge.core.errors import ApprovalNotPending, ApprovalTimeout
from tierforge.models.approvals import ApprovalDecision
from tierforge.models.environments import Environment
from tierforge.models.events import EventType

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
WEEK = timedelta(days=7)


@pytest.fixture
def gate(store, dispatcher, settings) -> ApprovalGate:
    return ApprovalGate(store, dispatcher, settings)


@pytest.fixture
def execution(make_execution):
    return make_execution(Environment.PROD)


class TestOpen:
    def test_persists_deadline(self, gate, execution, store):
        approval = gate.open(execution, START)
        assert approval.deadline == START + WEEK
        assert store.get_approval(execution.execution_id) == approval

    def test_requested_event_carries_link(self, gate, execution, sink, settings):
        gate.open(execution, START)
        (event,) = sink.of_type(EventType.APPROVAL_REQUESTED)
        assert event.topic == settings.approval_topic("prod")
        assert event.payload["review_link"] == (
            f"https://pipelines.local/executions/{execution.execution_id}/approval"
        )
        assert event.payload["deadline"] == (START + WEEK).isoformat()

    def test_open_is_idempotent(self, gate, execution, sink):
        first = gate.open(execution, START)
        second = gate.open(execution, START + timedelta(hours=1))
        assert first == second
        assert len(sink.of_type(EventType.APPROVAL_REQUESTED)) == 1


class TestDecide:
    def test_approve(self, gate, execution, sink):
        gate.open(execution, START)
        decided = gate.approve(execution, "alice", START + timedelta(hours=2))
        assert decided.decision == ApprovalDecision.APPROVED
        assert decided.decided_by == "alice"
        (event,) = sink.of_type(EventType.APPROVAL_GRANTED)
        assert event.payload["decided_by"] == "alice"

    def test_reject_records_reason(self, gate, execution, sink):
        gate.open(execution, START)
        decided = gate.reject(execution, "bob", "missing changelog", START)
        assert decided.decision == ApprovalDecision.REJECTED
        assert decided.reason == "missing changelog"
        assert len(sink.of_type(EventType.APPROVAL_REJECTED)) == 1

    def test_second_decision_refused(self, gate, execution):
        gate.open(execution, START)
        gate.approve(execution, "alice", START)
        with pytest.raises(ApprovalNotPending, match="approved"):
            gate.reject(execution, "bob", "", START)

    def test_decide_without_open(self, gate, execution):
        with pytest.raises(ApprovalNotPending, match="no approval"):
            gate.approve(execution, "alice", START)

    def test_approve_just_before_deadline(self, gate, execution):
        gate.open(execution, START)
        decided = gate.approve(execution, "alice", START + WEEK - timedelta(seconds=1))
        assert decided.decision == ApprovalDecision.APPROVED


class TestDeadline:
    def test_not_overdue(self, gate, execution):
        gate.open(execution, START)
        approval, changed = gate.evaluate(execution, START + timedelta(days=6))
        assert approval.is_pending
        assert changed is False

    def test_expires_at_deadline(self, gate, execution, sink):
        gate.open(execution, START)
        approval, changed = gate.evaluate(execution, START + WEEK)
        assert approval.decision == ApprovalDecision.EXPIRED
        assert changed is True
        assert len(sink.of_type(EventType.APPROVAL_EXPIRED)) == 1

    def test_expiry_fires_exactly_once(self, gate, execution, sink):
        gate.open(execution, START)
        gate.evaluate(execution, START + WEEK)
        _, changed = gate.evaluate(execution, START + WEEK + timedelta(days=1))
        assert changed is False
        assert len(sink.of_type(EventType.APPROVAL_EXPIRED)) == 1

    def test_approve_after_deadline_times_out(self, gate, execution, sink):
        gate.open(execution, START)
        with pytest.raises(ApprovalTimeout):
            gate.approve(execution, "alice", START + WEEK + timedelta(minutes=1))
        assert gate.get(execution.execution_id).decision == ApprovalDecision.EXPIRED
        assert sink.of_type(EventType.APPROVAL_GRANTED) == []

    def test_decided_approval_never_expires(self, gate, execution):
        gate.open(execution, START)
        gate.approve(execution, "alice", START)
        approval, changed = gate.evaluate(execution, START + WEEK * 2)
        assert approval.decision == ApprovalDecision.APPROVED
        assert changed is False
