"""Production guard — the single enforcement point for tier-trust policy.

Two concerns live here:

1. Process startup: ``enforce_production_constraints`` validates that a
   production engine process is configured safely and fails hard
   (``ProductionConfigError``) otherwise.
2. Tier policy: which environments block on critical scan findings and
   which require confirmation for destructive actions.

Other code should not scatter ``if environment == PROD`` checks; it asks
the guard.
"""

from __future__ import annotations

import logging

from tierforge.config import EngineSettings
from tierforge.core.errors import ProductionConfigError
from tierforge.models.artifacts import ScanFinding, Severity
from tierforge.models.environments import TIER_DEFAULTS, Environment

logger = logging.getLogger(__name__)

# Severities that fail the scan gate in blocking tiers.
BLOCKING_SEVERITIES: frozenset[Severity] = frozenset({Severity.CRITICAL})


def enforce_production_constraints(settings: EngineSettings) -> None:
    """Validate production-critical configuration constraints.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. A review base URL must be configured (approval links depend on it).
    3. The approval timeout must be positive.

    Raises
    ------
    ProductionConfigError
        If any constraint is violated.  All violations are reported at once.
    """
    if not settings.is_production:
        return

    violations: list[str] = []

    if settings.debug:
        violations.append(
            "debug=True is not allowed in production. "
            "Set TIERFORGE_DEBUG=false."
        )

    if not settings.review_base_url:
        violations.append(
            "review_base_url is required in production so approval "
            "requests carry a reviewable link. Set TIERFORGE_REVIEW_BASE_URL."
        )

    if settings.approval_timeout_seconds <= 0:
        violations.append("approval_timeout_seconds must be positive.")

    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")


def scan_gate_blocks(environment: Environment) -> bool:
    """Whether critical scan findings fail the build in *environment*.

    Only production blocks; elsewhere findings are logged and the build
    proceeds.
    """
    return environment.is_production


def blocking_findings(
    findings: list[ScanFinding] | tuple[ScanFinding, ...],
    environment: Environment,
) -> list[ScanFinding]:
    """Return the findings that fail the gate in *environment* (may be empty)."""
    if not scan_gate_blocks(environment):
        return []
    return [f for f in findings if f.severity in BLOCKING_SEVERITIES]


def destructive_confirmation_required(environment: Environment) -> bool:
    """Whether cancelling an execution in *environment* needs explicit confirmation."""
    return TIER_DEFAULTS[environment].requires_destructive_confirmation
