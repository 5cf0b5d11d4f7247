"""Run Ledger: the append-only stage history of every execution.

Each execution owns its own hash chain.  Entry ``n`` stores the seal of
entry ``n - 1`` in ``previous_hash``, and ``(execution_id, seq)`` is unique,
so two writers can never both extend the same predecessor.  Editing,
deleting or reordering rows is detected by ``verify_chain``.

The ledger is written only by the stage machine.  Everything else reads
it, mainly through ``stage_history``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from tierforge.core.errors import LedgerIntegrityError
from tierforge.core.hasher import seal
from tierforge.models.ledger import LedgerEntry
from tierforge.models.pipeline import PipelineStage, StageTransition

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS stage_ledger (
    execution_id   TEXT NOT NULL,
    seq            INTEGER NOT NULL,
    entry_id       TEXT NOT NULL UNIQUE,
    from_stage     TEXT,
    to_stage       TEXT NOT NULL,
    recorded_at    TEXT NOT NULL,
    actor          TEXT NOT NULL DEFAULT '',
    detail         TEXT NOT NULL DEFAULT '',
    artifact_refs  TEXT NOT NULL DEFAULT '[]',
    previous_hash  TEXT NOT NULL DEFAULT '',
    entry_hash     TEXT NOT NULL,
    PRIMARY KEY (execution_id, seq)
);
"""

_COLUMNS = (
    "execution_id, seq, entry_id, from_stage, to_stage, recorded_at, "
    "actor, detail, artifact_refs, previous_hash, entry_hash"
)


class RunLedger:
    """Append-only, per-execution hash-chained stage history.

    Parameters
    ----------
    db_path:
        SQLite database file, shared with the execution store.  Created
        on first use.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._append_lock = threading.Lock()
        with self._connect() as conn:
            conn.execute(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* onto the end of its execution's chain.

        ``seq``, ``previous_hash`` and ``entry_hash`` are assigned here;
        whatever the caller set is ignored.
        """
        with self._append_lock:
            tail = self.get_latest(entry.execution_id)
            linked = entry.model_copy(
                update={
                    "seq": tail.seq + 1 if tail else 0,
                    "previous_hash": tail.entry_hash if tail else "",
                    "entry_hash": "",
                }
            )
            sealed = linked.model_copy(
                update={"entry_hash": seal(linked.model_dump(mode="json"))}
            )
            row = sealed.model_dump(mode="json")
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO stage_ledger ({_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        row["execution_id"],
                        row["seq"],
                        row["entry_id"],
                        row["from_stage"],
                        row["to_stage"],
                        row["recorded_at"],
                        row["actor"],
                        row["detail"],
                        json.dumps(row["artifact_refs"]),
                        row["previous_hash"],
                        row["entry_hash"],
                    ),
                )
        logger.debug(
            "ledger %s #%d %s", sealed.execution_id, sealed.seq, sealed.label
        )
        return sealed

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_entries(self, execution_id: str) -> list[LedgerEntry]:
        """All entries of *execution_id*, in append order."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM stage_ledger "
                "WHERE execution_id = ? ORDER BY seq",
                (execution_id,),
            ).fetchall()
        return [_entry_from_row(row) for row in rows]

    def get_latest(self, execution_id: str) -> LedgerEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM stage_ledger "
                "WHERE execution_id = ? ORDER BY seq DESC LIMIT 1",
                (execution_id,),
            ).fetchone()
        return _entry_from_row(row) if row else None

    def stage_history(self, execution_id: str) -> list[StageTransition]:
        return [
            StageTransition(
                stage=entry.to_stage,
                from_stage=entry.from_stage,
                entered_at=entry.recorded_at,
                detail=entry.detail,
                actor=entry.actor,
                entry_hash=entry.entry_hash,
            )
            for entry in self.get_entries(execution_id)
        ]

    def verify_chain(self, execution_id: str) -> bool:
        """Re-derive every seal of *execution_id*'s chain.

        Returns True for an intact (or empty) chain.

        Raises
        ------
        LedgerIntegrityError
            ``Chain broken`` if an entry does not point at its predecessor,
            ``Tampered entry`` if an entry's content no longer matches its seal.
        """
        previous = ""
        for entry in self.get_entries(execution_id):
            if entry.previous_hash != previous:
                raise LedgerIntegrityError(
                    f"Chain broken at {execution_id} #{entry.seq} ({entry.label}): "
                    f"links to {entry.previous_hash[:12]!r}, "
                    f"predecessor is {previous[:12]!r}"
                )
            if seal(entry.model_dump(mode="json")) != entry.entry_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {execution_id} #{entry.seq} ({entry.label})"
                )
            previous = entry.entry_hash
        return True


def _entry_from_row(row: sqlite3.Row) -> LedgerEntry:
    from_stage = row["from_stage"]
    return LedgerEntry(
        entry_id=row["entry_id"],
        execution_id=row["execution_id"],
        seq=row["seq"],
        from_stage=PipelineStage(from_stage) if from_stage else None,
        to_stage=PipelineStage(row["to_stage"]),
        recorded_at=datetime.fromisoformat(row["recorded_at"]),
        actor=row["actor"],
        detail=row["detail"],
        artifact_refs=json.loads(row["artifact_refs"]),
        previous_hash=row["previous_hash"],
        entry_hash=row["entry_hash"],
    )
