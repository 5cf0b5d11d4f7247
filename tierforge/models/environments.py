"""Environment tiers and their derived defaults.

Tiers are ordered from least to most trusted.  ``prod`` is the terminal,
highest-trust tier.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class Environment(str, Enum):
    """Deployment environment tier."""

    DEVELOP = "develop"
    TEST = "test"
    QA = "qa"
    PROD = "prod"

    @property
    def ordinal(self) -> int:
        """Position in the promotion order (0 = develop)."""
        return ENVIRONMENT_ORDER.index(self)

    @property
    def is_production(self) -> bool:
        return self == Environment.PROD


ENVIRONMENT_ORDER: list[Environment] = [
    Environment.DEVELOP,
    Environment.TEST,
    Environment.QA,
    Environment.PROD,
]


class TierDefaults(BaseModel):
    """Resource and retention defaults carried by an environment tier."""

    model_config = ConfigDict(frozen=True)

    desired_count: int
    task_cpu: int  # CPU units
    task_memory: int  # MiB
    log_retention_days: int
    requires_destructive_confirmation: bool = False


TIER_DEFAULTS: dict[Environment, TierDefaults] = {
    Environment.DEVELOP: TierDefaults(
        desired_count=1, task_cpu=256, task_memory=512, log_retention_days=7,
    ),
    Environment.TEST: TierDefaults(
        desired_count=1, task_cpu=256, task_memory=512, log_retention_days=14,
    ),
    Environment.QA: TierDefaults(
        desired_count=2, task_cpu=512, task_memory=1024, log_retention_days=30,
    ),
    Environment.PROD: TierDefaults(
        desired_count=3,
        task_cpu=1024,
        task_memory=2048,
        log_retention_days=90,
        requires_destructive_confirmation=True,
    ),
}
