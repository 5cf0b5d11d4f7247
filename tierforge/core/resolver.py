"""Pipeline Definition Resolver — (Service, Environment) -> PipelineSpec.

The tier table below is the whole policy.  Resolution is pure and total:
every tier maps to exactly one row, anything else is ``UnknownEnvironment``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from tierforge.config import EngineSettings
from tierforge.core.errors import UnknownEnvironment
from tierforge.core.production_guard import scan_gate_blocks
from tierforge.models.environments import TIER_DEFAULTS, Environment
from tierforge.models.pipeline import PipelineSpec, PipelineType, TriggerMode
from tierforge.models.services import Service


class TierRule(BaseModel):
    """One row of the tier table."""

    model_config = ConfigDict(frozen=True)

    pipeline_type: PipelineType
    trigger_mode: TriggerMode
    requires_approval: bool
    deploy_min_healthy_percent: int
    deploy_max_percent: int


TIER_RULES: dict[Environment, TierRule] = {
    Environment.DEVELOP: TierRule(
        pipeline_type=PipelineType.FEATURE,
        trigger_mode=TriggerMode.MANUAL,
        requires_approval=False,
        deploy_min_healthy_percent=50,
        deploy_max_percent=200,
    ),
    Environment.TEST: TierRule(
        pipeline_type=PipelineType.RELEASE,
        trigger_mode=TriggerMode.AUTOMATIC,
        requires_approval=False,
        deploy_min_healthy_percent=100,
        deploy_max_percent=200,
    ),
    Environment.QA: TierRule(
        pipeline_type=PipelineType.RELEASE,
        trigger_mode=TriggerMode.AUTOMATIC,
        requires_approval=False,
        deploy_min_healthy_percent=100,
        deploy_max_percent=200,
    ),
    # Source stage is manual; the approval gate is still required.
    Environment.PROD: TierRule(
        pipeline_type=PipelineType.PRODUCTION,
        trigger_mode=TriggerMode.MANUAL,
        requires_approval=True,
        deploy_min_healthy_percent=100,
        deploy_max_percent=200,
    ),
}


def parse_environment(value: str | Environment) -> Environment:
    """Coerce *value* to an ``Environment`` or raise ``UnknownEnvironment``."""
    if isinstance(value, Environment):
        return value
    try:
        return Environment(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(e.value for e in Environment)
        raise UnknownEnvironment(
            f"Unknown environment {value!r}; expected one of: {valid}"
        ) from None


def resolve_pipeline_spec(
    service: Service,
    environment: str | Environment,
    settings: EngineSettings | None = None,
) -> PipelineSpec:
    """Resolve the immutable pipeline definition for a service in a tier.

    Service type and runtime do not influence the result; every service in
    the same tier shares the tier's defaults.
    """
    settings = settings or EngineSettings()
    env = parse_environment(environment)
    rule = TIER_RULES[env]
    defaults = TIER_DEFAULTS[env]

    return PipelineSpec(
        service_name=service.name,
        environment=env,
        pipeline_name=settings.pipeline_name(service.name, env.value),
        pipeline_type=rule.pipeline_type,
        trigger_mode=rule.trigger_mode,
        requires_approval=rule.requires_approval,
        approval_timeout=settings.approval_timeout,
        deploy_min_healthy_percent=rule.deploy_min_healthy_percent,
        deploy_max_percent=rule.deploy_max_percent,
        deploy_timeout=settings.deploy_timeout,
        health_poll_interval=settings.health_poll_interval,
        steady_state_dwell=settings.steady_state_dwell,
        desired_count=defaults.desired_count,
        scan_gate_blocking=scan_gate_blocks(env),
    )
