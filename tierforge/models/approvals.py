"""Approval models — the human gate in front of production deploys."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ApprovalDecision(str, Enum):
    """Resolution of an approval request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    WITHDRAWN = "withdrawn"  # execution ended while the gate was open


class Approval(BaseModel):
    """An approval request for one production execution.

    The deadline is stored as an absolute timestamp so the wait survives
    process restarts.
    """

    model_config = ConfigDict(frozen=True)

    approval_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    execution_id: str
    requested_at: datetime
    deadline: datetime
    decision: ApprovalDecision = ApprovalDecision.PENDING
    decided_by: str | None = None
    decided_at: datetime | None = None
    reason: str = ""
    review_link: str = ""

    @property
    def is_pending(self) -> bool:
        return self.decision == ApprovalDecision.PENDING

    def is_overdue(self, now: datetime) -> bool:
        """Whether the deadline has passed without a decision."""
        return self.is_pending and now >= self.deadline
