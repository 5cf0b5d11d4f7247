"""Notification event models — one typed event per state transition."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Notification taxonomy emitted by the engine."""

    EXECUTION_STARTED = "execution.started"
    STAGE_STARTED = "stage.started"
    STAGE_SUCCEEDED = "stage.succeeded"
    STAGE_FAILED = "stage.failed"
    APPROVAL_REQUESTED = "approval.requested"
    APPROVAL_GRANTED = "approval.granted"
    APPROVAL_REJECTED = "approval.rejected"
    APPROVAL_EXPIRED = "approval.expired"
    EXECUTION_ROLLEDBACK = "execution.rolledback"
    EXECUTION_SUCCEEDED = "execution.succeeded"
    EXECUTION_SUPERSEDED = "execution.superseded"
    EXECUTION_CANCELLED = "execution.cancelled"
    EXECUTION_ROLLBACK_FAILED = "execution.rollback_failed"

    @property
    def is_approval_event(self) -> bool:
        return self.value.startswith("approval.")


class EventSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    URGENT = "urgent"


class NotificationEvent(BaseModel):
    """A dispatched notification.

    ``topic`` names the destination channel; approval events go to the
    approval topic, everything else to the pipeline topic.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType
    execution_id: str = ""
    topic: str = ""
    severity: EventSeverity = EventSeverity.INFO
    payload: dict[str, Any] = {}
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
