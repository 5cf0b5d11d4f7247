"""Stage history entry model.

One entry per stage transition of an execution, numbered from 0.  Entries
are sealed by the Run Ledger when appended and never rewritten.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from tierforge.models.pipeline import PipelineStage


class LedgerEntry(BaseModel):
    """A single sealed stage transition."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: f"le-{uuid.uuid4().hex[:16]}")
    execution_id: str
    seq: int = 0
    from_stage: PipelineStage | None = None  # None for the first entry
    to_stage: PipelineStage
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor: str = ""
    detail: str = ""
    artifact_refs: list[str] = []
    previous_hash: str = ""
    entry_hash: str = ""

    @property
    def label(self) -> str:
        origin = self.from_stage.value if self.from_stage else "(new)"
        return f"{origin} -> {self.to_stage.value}"
