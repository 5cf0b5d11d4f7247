"""SQLite-backed execution store and per-pair registry.

Holds the mutable side of the engine: executions, approvals, deployment
records, registered services, and the per-(Service, Environment) "latest
execution" pointer.  Stage history is NOT stored here — it lives in the
append-only Run Ledger.

The pointer is only ever changed through ``compare_and_swap_active`` so
two executions can never both believe they are the active one.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from pathlib import Path

from tierforge.core.errors import ServiceDefinitionConflict
from tierforge.models.approvals import Approval, ApprovalDecision
from tierforge.models.environments import Environment
from tierforge.models.pipeline import (
    DeploymentRecord,
    ExecutionStatus,
    PairState,
    PipelineExecution,
)
from tierforge.models.services import Service


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS services (
        name          TEXT PRIMARY KEY,
        service_json  TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS executions (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        execution_id    TEXT NOT NULL UNIQUE,
        service_name    TEXT NOT NULL,
        environment     TEXT NOT NULL,
        status          TEXT NOT NULL,
        current_stage   TEXT NOT NULL,
        execution_json  TEXT NOT NULL
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_exec_pair
        ON executions(service_name, environment, id);
    """,
    """
    CREATE TABLE IF NOT EXISTS pairs (
        service_name            TEXT NOT NULL,
        environment             TEXT NOT NULL,
        active_execution_id     TEXT,
        queued_execution_id     TEXT,
        last_good_artifact_ref  TEXT,
        ready_revision          TEXT,
        PRIMARY KEY (service_name, environment)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS approvals (
        execution_id   TEXT PRIMARY KEY,
        decision       TEXT NOT NULL,
        approval_json  TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS deployments (
        execution_id     TEXT PRIMARY KEY,
        phase            TEXT NOT NULL,
        deployment_json  TEXT NOT NULL
    );
    """,
)


class ExecutionStore:
    """Persistent state for executions and the per-pair registry.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
        May be shared with the ``RunLedger``.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False, isolation_level=None
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            for ddl in _SCHEMA:
                conn.execute(ddl)
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def register_service(self, service: Service) -> Service:
        """Register a service.  Re-registering an identical definition is a no-op.

        Raises
        ------
        ServiceDefinitionConflict
            If a different definition is already registered under the name.
        """
        existing = self.get_service(service.name)
        if existing is not None:
            if existing != service:
                raise ServiceDefinitionConflict(
                    f"Service {service.name!r} is already registered with a "
                    f"different definition; services are immutable once "
                    f"their pipelines are resolved."
                )
            return existing

        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR IGNORE INTO services (name, service_json) VALUES (?, ?)",
                (service.name, service.model_dump_json()),
            )
        finally:
            conn.close()
        return service

    def get_service(self, name: str) -> Service | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT service_json FROM services WHERE name = ?", (name,)
            ).fetchone()
        finally:
            conn.close()
        return Service.model_validate_json(row[0]) if row else None

    def list_services(self) -> list[Service]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT service_json FROM services ORDER BY name"
            ).fetchall()
        finally:
            conn.close()
        return [Service.model_validate_json(r[0]) for r in rows]

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def insert_execution(self, execution: PipelineExecution) -> None:
        conn = self._connect()
        try:
            self._insert_execution(conn, execution)
        finally:
            conn.close()

    @staticmethod
    def _insert_execution(
        conn: sqlite3.Connection, execution: PipelineExecution
    ) -> None:
        conn.execute(
            """
            INSERT INTO executions
                (execution_id, service_name, environment, status,
                 current_stage, execution_json)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                execution.execution_id,
                execution.service_name,
                execution.environment.value,
                execution.status.value,
                execution.current_stage.value,
                _execution_json(execution),
            ),
        )

    def save_execution(self, execution: PipelineExecution) -> None:
        """Persist the latest copy of an existing execution."""
        conn = self._connect()
        try:
            conn.execute(
                """
                UPDATE executions
                   SET status = ?, current_stage = ?, execution_json = ?
                 WHERE execution_id = ?
                """,
                (
                    execution.status.value,
                    execution.current_stage.value,
                    _execution_json(execution),
                    execution.execution_id,
                ),
            )
        finally:
            conn.close()

    def get_execution(self, execution_id: str) -> PipelineExecution | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT execution_json FROM executions WHERE execution_id = ?",
                (execution_id,),
            ).fetchone()
        finally:
            conn.close()
        return PipelineExecution.model_validate_json(row[0]) if row else None

    def list_executions(
        self, service_name: str, environment: Environment
    ) -> list[PipelineExecution]:
        """Return every execution of a pair, oldest first."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT execution_json FROM executions "
                "WHERE service_name = ? AND environment = ? ORDER BY id ASC",
                (service_name, environment.value),
            ).fetchall()
        finally:
            conn.close()
        return [PipelineExecution.model_validate_json(r[0]) for r in rows]

    def list_by_status(
        self, statuses: Iterable[ExecutionStatus]
    ) -> list[PipelineExecution]:
        """Return executions in any of *statuses*, oldest first."""
        values = [s.value for s in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT execution_json FROM executions "
                f"WHERE status IN ({placeholders}) ORDER BY id ASC",
                values,
            ).fetchall()
        finally:
            conn.close()
        return [PipelineExecution.model_validate_json(r[0]) for r in rows]

    # ------------------------------------------------------------------
    # Pair registry
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_pair(
        conn: sqlite3.Connection, service_name: str, environment: Environment
    ) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO pairs (service_name, environment) VALUES (?, ?)",
            (service_name, environment.value),
        )

    def get_pair(self, service_name: str, environment: Environment) -> PairState:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT active_execution_id, queued_execution_id, "
                "last_good_artifact_ref, ready_revision FROM pairs "
                "WHERE service_name = ? AND environment = ?",
                (service_name, environment.value),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return PairState(service_name=service_name, environment=environment)
        return PairState(
            service_name=service_name,
            environment=environment,
            active_execution_id=row[0],
            queued_execution_id=row[1],
            last_good_artifact_ref=row[2],
            ready_revision=row[3],
        )

    def compare_and_swap_active(
        self,
        service_name: str,
        environment: Environment,
        expected: str | None,
        new: str | None,
        *,
        insert: PipelineExecution | None = None,
    ) -> bool:
        """Atomically move the active pointer from *expected* to *new*.

        When *insert* is given, the execution row is created in the same
        transaction, so a claimed pointer never refers to a missing row.
        Returns ``False`` (and changes nothing) if the pointer moved.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._ensure_pair(conn, service_name, environment)
            cursor = conn.execute(
                "UPDATE pairs SET active_execution_id = ? "
                "WHERE service_name = ? AND environment = ? "
                "AND active_execution_id IS ?",
                (new, service_name, environment.value, expected),
            )
            if cursor.rowcount != 1:
                conn.execute("ROLLBACK")
                return False
            if insert is not None:
                self._insert_execution(conn, insert)
            conn.execute("COMMIT")
            return True
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def set_queued(
        self,
        service_name: str,
        environment: Environment,
        execution_id: str | None,
        *,
        insert: PipelineExecution | None = None,
    ) -> str | None:
        """Replace the queued successor; returns the one it displaced."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._ensure_pair(conn, service_name, environment)
            row = conn.execute(
                "SELECT queued_execution_id FROM pairs "
                "WHERE service_name = ? AND environment = ?",
                (service_name, environment.value),
            ).fetchone()
            conn.execute(
                "UPDATE pairs SET queued_execution_id = ? "
                "WHERE service_name = ? AND environment = ?",
                (execution_id, service_name, environment.value),
            )
            if insert is not None:
                self._insert_execution(conn, insert)
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        return row[0] if row else None

    def set_last_good_artifact(
        self, service_name: str, environment: Environment, artifact_ref: str
    ) -> None:
        self._set_pair_column(
            "last_good_artifact_ref", service_name, environment, artifact_ref
        )

    def set_ready_revision(
        self, service_name: str, environment: Environment, revision: str | None
    ) -> None:
        self._set_pair_column("ready_revision", service_name, environment, revision)

    def _set_pair_column(
        self,
        column: str,
        service_name: str,
        environment: Environment,
        value: str | None,
    ) -> None:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._ensure_pair(conn, service_name, environment)
            conn.execute(
                f"UPDATE pairs SET {column} = ? "
                f"WHERE service_name = ? AND environment = ?",
                (value, service_name, environment.value),
            )
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def insert_approval(self, approval: Approval) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO approvals (execution_id, decision, approval_json) "
                "VALUES (?, ?, ?)",
                (
                    approval.execution_id,
                    approval.decision.value,
                    approval.model_dump_json(),
                ),
            )
        finally:
            conn.close()

    def get_approval(self, execution_id: str) -> Approval | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT approval_json FROM approvals WHERE execution_id = ?",
                (execution_id,),
            ).fetchone()
        finally:
            conn.close()
        return Approval.model_validate_json(row[0]) if row else None

    def decide_approval(self, decided: Approval) -> bool:
        """Record a decision only if the stored approval is still pending.

        Returns ``True`` for the single caller that won the transition.
        """
        conn = self._connect()
        try:
            cursor = conn.execute(
                "UPDATE approvals SET decision = ?, approval_json = ? "
                "WHERE execution_id = ? AND decision = ?",
                (
                    decided.decision.value,
                    decided.model_dump_json(),
                    decided.execution_id,
                    ApprovalDecision.PENDING.value,
                ),
            )
            return cursor.rowcount == 1
        finally:
            conn.close()

    def list_pending_approvals(self) -> list[Approval]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT approval_json FROM approvals WHERE decision = ?",
                (ApprovalDecision.PENDING.value,),
            ).fetchall()
        finally:
            conn.close()
        return [Approval.model_validate_json(r[0]) for r in rows]

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def save_deployment(self, record: DeploymentRecord) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT INTO deployments (execution_id, phase, deployment_json) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(execution_id) DO UPDATE SET "
                "phase = excluded.phase, deployment_json = excluded.deployment_json",
                (record.execution_id, record.phase.value, record.model_dump_json()),
            )
        finally:
            conn.close()

    def get_deployment(self, execution_id: str) -> DeploymentRecord | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT deployment_json FROM deployments WHERE execution_id = ?",
                (execution_id,),
            ).fetchone()
        finally:
            conn.close()
        return DeploymentRecord.model_validate_json(row[0]) if row else None


def _execution_json(execution: PipelineExecution) -> str:
    # Stage history is owned by the ledger; never duplicate it here.
    return execution.model_dump_json(exclude={"stage_history"})
