"""Adversarial tests: stage history tampering.

These tests verify that:
1. Editing a stored entry is detected
2. Deleting an entry from the middle of a chain is detected
3. Re-linking a forged entry breaks the chain
4. Tampering with one execution does not affect another
"""

from __future__ import annotations

import sqlite3

import pytest

from tierforge.core.errors import LedgerIntegrityError


def _sql(settings, statement: str, params: tuple = ()) -> None:
    conn = sqlite3.connect(str(settings.state_db_path))
    try:
        conn.execute(statement, params)
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def executions(engine):
    outcomes = engine.submit_source_event("api", "release/1.2.0", "abc1234")
    return [o.execution_id for o in outcomes]


class TestLedgerTampering:
    def test_edited_stage_detected(self, engine, settings, executions):
        """Rewriting a stage name must fail verification."""
        test_id = executions[0]
        assert engine.verify_history(test_id)
        _sql(
            settings,
            "UPDATE stage_ledger SET to_stage = 'succeeded' "
            "WHERE execution_id = ? AND to_stage = 'building'",
            (test_id,),
        )
        with pytest.raises(LedgerIntegrityError, match="Tampered entry"):
            engine.verify_history(test_id)

    def test_edited_actor_detected(self, engine, settings, executions):
        """Changing who approved or started an execution must be detected."""
        test_id = executions[0]
        _sql(
            settings,
            "UPDATE stage_ledger SET actor = 'mallory' WHERE execution_id = ?",
            (test_id,),
        )
        with pytest.raises(LedgerIntegrityError):
            engine.verify_history(test_id)

    def test_deleted_entry_detected(self, engine, settings, executions):
        """Removing a middle entry breaks the previous-hash link."""
        test_id = executions[0]
        _sql(
            settings,
            "DELETE FROM stage_ledger WHERE execution_id = ? AND to_stage = 'building'",
            (test_id,),
        )
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            engine.verify_history(test_id)

    def test_recomputed_hash_still_breaks_link(self, engine, settings, executions):
        """Resealing an edited entry does not repair its successor's link."""
        from tierforge.core.hasher import seal

        test_id = executions[0]
        entries = engine.ledger.get_entries(test_id)
        target = entries[1]
        forged = target.model_copy(update={"detail": "forged"})
        resealed = seal(forged.model_dump(mode="json"))
        _sql(
            settings,
            "UPDATE stage_ledger SET detail = 'forged', entry_hash = ? WHERE entry_id = ?",
            (resealed, target.entry_id),
        )
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            engine.verify_history(test_id)

    def test_other_execution_unaffected(self, engine, settings, executions):
        test_id, qa_id = executions
        _sql(
            settings,
            "UPDATE stage_ledger SET detail = 'x' WHERE execution_id = ?",
            (test_id,),
        )
        assert engine.verify_history(qa_id) is True
