"""Branch Matcher — maps a branch name to a pipeline tier.

Rules are evaluated in a fixed priority order, most trusted first
(production > release > feature), so a loose ``feature/*`` pattern can
never claim a ``prod/*`` push.

Pattern syntax
--------------
``*``    one path segment (one or more characters, no ``/``).
``<n>``  one numeric version component (``[0-9]+``).
Everything else is literal, including ``.`` and ``/``.

``prod/<n>.<n>.<n>`` therefore matches ``prod/1.2.0`` but not
``prod/1.2`` or ``prod/abc``.
"""

from __future__ import annotations

import functools
import re

from pydantic import BaseModel, ConfigDict

from tierforge.models.environments import Environment
from tierforge.models.pipeline import PipelineType

_TOKEN_RE = re.compile(r"(\*|<n>)")

# Lower value = evaluated first.
_TYPE_PRIORITY: dict[PipelineType, int] = {
    PipelineType.PRODUCTION: 0,
    PipelineType.RELEASE: 1,
    PipelineType.FEATURE: 2,
}


class BranchRule(BaseModel):
    """One row of the branch table.

    A rule targets a tier group: the release rule feeds both ``test`` and
    ``qa``, each of which is an independent pipeline.
    """

    model_config = ConfigDict(frozen=True)

    pattern: str
    pipeline_type: PipelineType
    environments: tuple[Environment, ...]


class BranchMatch(BaseModel):
    """The result of a successful match."""

    model_config = ConfigDict(frozen=True)

    branch: str
    rule: BranchRule

    @property
    def pipeline_type(self) -> PipelineType:
        return self.rule.pipeline_type

    @property
    def environments(self) -> tuple[Environment, ...]:
        return self.rule.environments


DEFAULT_BRANCH_RULES: tuple[BranchRule, ...] = (
    BranchRule(
        pattern="prod/<n>.<n>.<n>",
        pipeline_type=PipelineType.PRODUCTION,
        environments=(Environment.PROD,),
    ),
    BranchRule(
        pattern="release/<n>.<n>.<n>",
        pipeline_type=PipelineType.RELEASE,
        environments=(Environment.TEST, Environment.QA),
    ),
    BranchRule(
        pattern="feature/*",
        pipeline_type=PipelineType.FEATURE,
        environments=(Environment.DEVELOP,),
    ),
)


@functools.lru_cache(maxsize=128)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a branch glob into an anchored regular expression."""
    parts: list[str] = []
    for token in _TOKEN_RE.split(pattern):
        if token == "*":
            parts.append(r"[^/]+")
        elif token == "<n>":
            parts.append(r"[0-9]+")
        elif token:
            parts.append(re.escape(token))
    return re.compile("^" + "".join(parts) + "$")


def ordered_rules(rules: tuple[BranchRule, ...] | list[BranchRule]) -> list[BranchRule]:
    """Return *rules* sorted by tier priority, keeping table order within a tier."""
    return sorted(rules, key=lambda r: _TYPE_PRIORITY[r.pipeline_type])


def match_branch(
    branch: str,
    rules: tuple[BranchRule, ...] | list[BranchRule] = DEFAULT_BRANCH_RULES,
) -> BranchMatch | None:
    """Return the first rule matching *branch*, or ``None``.

    A leading ``refs/heads/`` is stripped so raw push refs can be passed
    directly.

    >>> match_branch("feature/login-fix").pipeline_type.value
    'feature'
    >>> match_branch("main") is None
    True
    """
    name = branch.removeprefix("refs/heads/")
    for rule in ordered_rules(rules):
        if compile_pattern(rule.pattern).match(name):
            return BranchMatch(branch=name, rule=rule)
    return None
