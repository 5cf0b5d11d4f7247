"""Engine configuration — env-driven via pydantic-settings.

Reads from a ``.env`` file and ``TIERFORGE_*`` environment variables.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Pipeline engine settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export TIERFORGE_PROJECT_NAME=ecs-fargate
        export TIERFORGE_LOG_LEVEL=DEBUG
        export TIERFORGE_STATE_DB_PATH=/data/state.db

    Or via .env file::

        TIERFORGE_DEPLOYMENT_MODE=production
        TIERFORGE_NOTIFICATION_DETAIL=basic
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TIERFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    project_name: str = "ecs-fargate"
    log_level: str = "INFO"
    debug: bool = False
    deployment_mode: str = "development"

    # Storage
    state_db_path: Path = Path(".tierforge/state.db")
    events_path: Path = Path(".tierforge/events")

    # Approval gate
    review_base_url: str = "https://pipelines.local/executions"
    approval_timeout_seconds: int = 7 * 24 * 60 * 60

    # Deploy & rollback
    deploy_timeout_seconds: int = 15 * 60
    health_poll_interval_seconds: int = 15
    steady_state_dwell_seconds: int = 60

    # Tag push retry (bounded exponential backoff)
    push_max_attempts: int = 5
    push_backoff_initial_seconds: float = 1.0
    push_backoff_max_seconds: float = 30.0

    # Notifications
    enable_notifications: bool = True
    notification_detail: Literal["basic", "full"] = "full"

    @property
    def is_production(self) -> bool:
        """Whether the engine process runs in production mode."""
        return self.deployment_mode == "production"

    @property
    def approval_timeout(self) -> timedelta:
        return timedelta(seconds=self.approval_timeout_seconds)

    @property
    def deploy_timeout(self) -> timedelta:
        return timedelta(seconds=self.deploy_timeout_seconds)

    @property
    def health_poll_interval(self) -> timedelta:
        return timedelta(seconds=self.health_poll_interval_seconds)

    @property
    def steady_state_dwell(self) -> timedelta:
        return timedelta(seconds=self.steady_state_dwell_seconds)

    def pipeline_name(self, service_name: str, environment: str) -> str:
        return f"{self.project_name}-{environment}-{service_name}"

    def pipeline_topic(self, environment: str) -> str:
        return f"{self.project_name}-{environment}-pipeline-notifications"

    def approval_topic(self, environment: str) -> str:
        return f"{self.project_name}-{environment}-approval-notifications"
