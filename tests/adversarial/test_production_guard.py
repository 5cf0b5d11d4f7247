"""Adversarial tests: unsafe production configuration and protected tiers.

These tests verify that:
1. A misconfigured production engine refuses to start
2. Cancelling in prod requires confirmation
3. Critical findings never reach the prod registry
"""

from __future__ import annotations

import pytest

from tierforge.bridge.simulated import SimulatedBuilder
from tierforge.config import EngineSettings
from tierforge.core.errors import ConfirmationRequired, ProductionConfigError
from tierforge.core.orchestrator import Orchestrator
from tierforge.models.artifacts import ScanFinding, Severity
from tierforge.models.pipeline import ExecutionStatus, FailureReason, PipelineStage


class TestStartupGuard:
    def test_debug_in_production_refused(
        self, tmp_path, builder, scanner, registry, platform
    ):
        settings = EngineSettings(
            _env_file=None,
            deployment_mode="production",
            debug=True,
            state_db_path=tmp_path / "state.db",
        )
        with pytest.raises(ProductionConfigError):
            Orchestrator(
                settings,
                builder=builder,
                scanner=scanner,
                registry=registry,
                platform=platform,
            )
        # Refused before any state was opened.
        assert not (tmp_path / "state.db").exists()


class TestProtectedTier:
    def test_cancel_needs_confirmation(self, engine):
        execution = engine.start_execution("api", "prod", "abc1234")
        with pytest.raises(ConfirmationRequired):
            engine.cancel_execution(execution.execution_id)
        assert engine.get_status(execution.execution_id).current_stage == (
            PipelineStage.AWAITING_APPROVAL
        )

        cancelled = engine.cancel_execution(execution.execution_id, confirm=True)
        assert cancelled.status == ExecutionStatus.CANCELLED

    def test_critical_finding_blocks_prod(self, engine, scanner, registry, sink):
        ref = SimulatedBuilder.artifact_ref_for("abc1234")
        scanner.add_findings(
            ref, [ScanFinding(finding_id="CVE-2026-1", severity=Severity.CRITICAL)]
        )
        execution = engine.start_execution("api", "prod", "abc1234")

        assert execution.status == ExecutionStatus.FAILED
        assert execution.failure_reason == FailureReason.SCAN_CRITICAL_FINDING
        assert execution.stages_visited[-2:] == [
            PipelineStage.SCANNING,
            PipelineStage.FAILED,
        ]
        assert registry.tags_for(ref) == set()
        assert engine.approval_gate.get(execution.execution_id) is None

    def test_critical_finding_advisory_in_test(self, engine, scanner, registry):
        ref = SimulatedBuilder.artifact_ref_for("abc1234")
        scanner.add_findings(
            ref, [ScanFinding(finding_id="CVE-2026-1", severity=Severity.CRITICAL)]
        )
        (outcome, _) = engine.submit_source_event("api", "release/1.2.0", "abc1234")
        execution = engine.get_status(outcome.execution_id)
        assert execution.status == ExecutionStatus.SUCCEEDED
        assert execution.artifact.findings[0].finding_id == "CVE-2026-1"
