"""Build & Tag stage — build, scan gate, deterministic multi-tag push.

Lifecycle for one execution:

    build(revision) -> scan(artifact) -> gate -> push four tags as a unit

No partial artifact is ever tagged: a failed build stops before the
registry is touched, and the stage only reports an ``Artifact`` once all
four tags have been pushed in a single successful attempt.
"""

from __future__ import annotations

import logging

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tierforge.bridge.collaborators import (
    BuildCollaborator,
    BuildError,
    RegistryCollaborator,
    ScanCollaborator,
)
from tierforge.config import EngineSettings
from tierforge.core.errors import BuildFailure, PushError, ScanCriticalFinding
from tierforge.core.production_guard import blocking_findings
from tierforge.models.artifacts import Artifact, ScanFinding, Severity
from tierforge.models.environments import Environment
from tierforge.models.pipeline import PipelineExecution

logger = logging.getLogger(__name__)

SHORT_REVISION_LENGTH = 7
LATEST_TAG = "latest"


def short_revision(source_revision: str) -> str:
    """Return the short revision id used as the revision tag."""
    revision = source_revision.strip().lower()
    if not revision:
        raise ValueError("source revision must not be empty")
    return revision[:SHORT_REVISION_LENGTH]


def compute_tag_set(source_revision: str, environment: Environment) -> frozenset[str]:
    """Compute the four tags applied to every successful build.

    >>> sorted(compute_tag_set("abc1234", Environment.TEST))
    ['abc1234', 'latest', 'test-abc1234', 'test-latest']
    """
    revision_tag = short_revision(source_revision)
    env = environment.value
    return frozenset({
        revision_tag,
        f"{env}-{revision_tag}",
        f"{env}-latest",
        LATEST_TAG,
    })


class BuildAndTagStage:
    """Drives the build, scan, and registry collaborators for one execution.

    Parameters
    ----------
    builder, scanner, registry:
        External collaborators.
    settings:
        Supplies the bounded retry policy for tag pushes.
    """

    def __init__(
        self,
        builder: BuildCollaborator,
        scanner: ScanCollaborator,
        registry: RegistryCollaborator,
        settings: EngineSettings | None = None,
    ) -> None:
        self._builder = builder
        self._scanner = scanner
        self._registry = registry
        self._settings = settings or EngineSettings()

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, execution: PipelineExecution) -> str:
        """Build the execution's revision and return the artifact reference.

        Raises
        ------
        BuildFailure
            If the collaborator reports failure or raises ``BuildError``.
        """
        revision = execution.source_revision
        try:
            result = self._builder.build(revision)
        except BuildError as exc:
            raise BuildFailure(f"build of {revision} errored: {exc}") from exc

        if not result.success or not result.artifact_ref:
            detail = result.log_excerpt or "build reported failure"
            raise BuildFailure(f"build of {revision} failed: {detail}")

        logger.info(
            "%s [%s] built %s -> %s",
            execution.pipeline_spec.pipeline_name,
            execution.execution_id,
            revision,
            result.artifact_ref,
        )
        return result.artifact_ref

    # ------------------------------------------------------------------
    # Scan gate
    # ------------------------------------------------------------------

    def scan(self, execution: PipelineExecution, artifact_ref: str) -> list[ScanFinding]:
        """Scan the artifact and apply the tier's gate policy.

        Raises
        ------
        ScanCriticalFinding
            In blocking tiers, if any critical finding is reported.
        """
        findings = self._scanner.scan(artifact_ref)
        blocking = blocking_findings(findings, execution.environment)
        if blocking:
            ids = ", ".join(f.finding_id for f in blocking)
            raise ScanCriticalFinding(
                f"{len(blocking)} critical finding(s) block "
                f"{execution.environment.value}: {ids}"
            )

        for finding in findings:
            level = (
                logging.WARNING
                if finding.severity in (Severity.HIGH, Severity.CRITICAL)
                else logging.INFO
            )
            logger.log(
                level,
                "%s [%s] scan finding %s (%s), non-blocking in %s",
                execution.pipeline_spec.pipeline_name,
                execution.execution_id,
                finding.finding_id,
                finding.severity.value,
                execution.environment.value,
            )
        return findings

    # ------------------------------------------------------------------
    # Tag push
    # ------------------------------------------------------------------

    def tag_and_push(
        self,
        execution: PipelineExecution,
        artifact_ref: str,
        findings: list[ScanFinding] | None = None,
    ) -> Artifact:
        """Push the four tags as a unit and return the immutable artifact.

        A failed attempt is retried from the first tag; re-pushing a tag to
        the same content is a no-op in the registry.

        Raises
        ------
        PushError
            When the bounded retry budget is exhausted.
        """
        tags = compute_tag_set(execution.source_revision, execution.environment)
        retrying = Retrying(
            retry=retry_if_exception_type(PushError),
            stop=stop_after_attempt(max(self._settings.push_max_attempts, 1)),
            wait=wait_exponential(
                multiplier=self._settings.push_backoff_initial_seconds,
                max=self._settings.push_backoff_max_seconds,
            ),
            before_sleep=_log_push_retry,
            reraise=True,
        )
        retrying(self._push_unit, artifact_ref, sorted(tags))

        return Artifact(
            source_revision=execution.source_revision,
            artifact_ref=artifact_ref,
            tag_set=tags,
            findings=tuple(findings or ()),
        )

    def _push_unit(self, artifact_ref: str, tags: list[str]) -> None:
        for tag in tags:
            self._registry.push(artifact_ref, tag)


def _log_push_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Tag push attempt %d failed (%s); retrying the full tag set",
        retry_state.attempt_number,
        exc,
    )
