"""Tests for the Run Ledger: append-only, per-execution hash chain."""

from __future__ import annotations

from datetime import datetime, timezone

from tierforge.models.ledger import LedgerEntry
from tierforge.models.pipeline import PipelineStage

AT = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _entry(execution_id: str, transition: str, **kwargs) -> LedgerEntry:
    origin, target = transition.split("->", 1)
    return LedgerEntry(
        execution_id=execution_id,
        from_stage=PipelineStage(origin) if origin else None,
        to_stage=PipelineStage(target),
        recorded_at=AT,
        **kwargs,
    )


class TestAppend:
    def test_first_entry_has_empty_previous(self, ledger):
        sealed = ledger.append(_entry("tf-1", "->triggered"))
        assert sealed.previous_hash == ""
        assert sealed.seq == 0
        assert len(sealed.entry_hash) == 64

    def test_entries_chain(self, ledger):
        first = ledger.append(_entry("tf-1", "->triggered"))
        second = ledger.append(_entry("tf-1", "triggered->building"))
        assert second.previous_hash == first.entry_hash
        assert second.seq == 1

    def test_chains_are_per_execution(self, ledger):
        ledger.append(_entry("tf-1", "->triggered"))
        other = ledger.append(_entry("tf-2", "->triggered"))
        assert other.previous_hash == ""
        assert other.seq == 0

    def test_round_trip_fields(self, ledger):
        sealed = ledger.append(
            _entry(
                "tf-1",
                "building->deploying",
                detail="tags abc1234",
                actor="ci",
                artifact_refs=["sha256:aa"],
            )
        )
        (stored,) = ledger.get_entries("tf-1")
        assert stored == sealed
        assert ledger.get_latest("tf-1") == sealed

    def test_get_latest_unknown(self, ledger):
        assert ledger.get_latest("tf-missing") is None


class TestStageHistory:
    def test_projection(self, ledger):
        ledger.append(_entry("tf-1", "->triggered", actor="source-event"))
        ledger.append(_entry("tf-1", "triggered->building"))
        history = ledger.stage_history("tf-1")
        assert [t.stage for t in history] == [
            PipelineStage.TRIGGERED,
            PipelineStage.BUILDING,
        ]
        assert history[0].from_stage is None
        assert history[1].from_stage == PipelineStage.TRIGGERED
        assert history[0].actor == "source-event"
        assert history[0].entered_at == AT


class TestVerify:
    def test_valid_chain(self, ledger):
        ledger.append(_entry("tf-1", "->triggered"))
        ledger.append(_entry("tf-1", "triggered->building"))
        assert ledger.verify_chain("tf-1") is True

    def test_empty_chain_is_valid(self, ledger):
        assert ledger.verify_chain("tf-none") is True
