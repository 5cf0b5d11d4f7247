"""Build artifact, scan finding, and health snapshot models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Vulnerability finding severity, lowest to highest."""

    INFORMATIONAL = "informational"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ScanFinding(BaseModel):
    """A single vulnerability reported by the scan collaborator."""

    model_config = ConfigDict(frozen=True)

    finding_id: str
    severity: Severity
    title: str = ""
    package: str = ""


class BuildResult(BaseModel):
    """Result returned by the build collaborator."""

    model_config = ConfigDict(frozen=True)

    success: bool
    artifact_ref: str = ""
    log_excerpt: str = ""


class Artifact(BaseModel):
    """An image produced by a successful Build stage.

    Immutable after Build succeeds; the tag set is never mutated.
    """

    model_config = ConfigDict(frozen=True)

    source_revision: str
    artifact_ref: str
    tag_set: frozenset[str]
    findings: tuple[ScanFinding, ...] = ()

    @property
    def sorted_tags(self) -> list[str]:
        return sorted(self.tag_set)


class HealthSnapshot(BaseModel):
    """One poll of service health reported by the compute platform.

    ``healthy_count`` counts every healthy instance (old and new);
    ``target_healthy_count`` counts only instances running ``artifact_ref``.
    """

    model_config = ConfigDict(frozen=True)

    observed_at: datetime
    artifact_ref: str
    desired_count: int = Field(ge=0)
    running_count: int = Field(ge=0)
    healthy_count: int = Field(ge=0)
    target_healthy_count: int = Field(default=0, ge=0)
