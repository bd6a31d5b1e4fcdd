"""Pick the Claude model used to summarize a commit.

:func:`preferred_tier` is a pure policy over the analysis.  :func:`choose_model`
then confirms availability with a probe and walks the fallback order; it
returns its answer instead of writing it back into configuration.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from changelens.config import ModelTiers
from changelens.errors import NoModelAvailable
from changelens.models import CommitAnalysis
from changelens.policy import DEFAULT_POLICY, ScoringPolicy

logger = logging.getLogger(__name__)

_MODEL_NAME_RE = re.compile(r"^[A-Za-z0-9][\w.:\-]*$")
_ARCHITECTURE_PATTERNS = frozenset({"refactor", "architecture"})

Probe = Callable[[str], Awaitable[bool]]


@dataclass(frozen=True)
class ModelChoice:
    """The model that answered, and whether it was a fallback."""

    model: str
    preferred: str
    tried: tuple[str, ...] = ()

    @property
    def fell_back(self) -> bool:
        return self.model != self.preferred


def is_valid_model_name(name: str | None) -> bool:
    return bool(name) and bool(_MODEL_NAME_RE.match(name or ""))


def is_architectural(analysis: CommitAnalysis, policy: ScoringPolicy = DEFAULT_POLICY) -> bool:
    message = analysis.commit.message.lower()
    if any(k in message for k in policy.architecture_keywords):
        return True
    if analysis.semantic.patterns & _ARCHITECTURE_PATTERNS:
        return True
    return len(analysis.semantic.frameworks) > 2


def preferred_tier(
    analysis: CommitAnalysis,
    tiers: ModelTiers,
    override: str | None = None,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> str:
    """Return the model name the policy prefers for *analysis*.

    Rules, first match wins:

    1. a syntactically valid *override*;
    2. very large, or breaking across many files: the deepest reasoning tier;
    3. complex: ``complex``, upgraded to reasoning when breaking or architectural;
    4. minimal: ``nano``;
    5. small: ``simple``;
    6. otherwise ``default``.
    """
    if override is not None:
        if is_valid_model_name(override):
            return override
        logger.warning("Ignoring invalid model override %r", override)

    files = analysis.complexity.files_count
    lines = analysis.complexity.lines_changed
    breaking = analysis.breaking

    if (
        files > policy.reasoning_files
        or lines > policy.reasoning_lines
        or (breaking and files > policy.breaking_reasoning_files)
    ):
        return tiers.deepest()

    if files > policy.complex_files or lines > policy.complex_lines:
        if breaking or is_architectural(analysis, policy):
            return tiers.reasoning or tiers.deepest()
        return tiers.complex

    if files < policy.minimal_files and lines < policy.minimal_lines:
        return tiers.nano

    if files < policy.simple_files and lines < policy.simple_lines:
        return tiers.simple

    return tiers.default


async def choose_model(preferred: str, probe: Probe, tiers: ModelTiers) -> ModelChoice:
    """Probe *preferred*, then each fallback tier, returning the first that answers.

    Raises
    ------
    NoModelAvailable
        If every candidate fails its probe.
    """
    tried: list[str] = []
    for candidate in [preferred, *tiers.fallback_order()]:
        if candidate in tried:
            continue
        tried.append(candidate)
        if await probe(candidate):
            if candidate != preferred:
                logger.info("Model %s unavailable; falling back to %s", preferred, candidate)
            return ModelChoice(model=candidate, preferred=preferred, tried=tuple(tried))
        logger.debug("Model %s failed its availability probe", candidate)
    raise NoModelAvailable(tried)


@dataclass
class ProbeCache:
    """Remember probe outcomes for the length of one run.

    Concurrent callers asking about the same model wait on a single probe.
    """

    probe: Probe
    _results: dict[str, bool] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def __call__(self, model: str) -> bool:
        async with self._lock:
            if model not in self._results:
                self._results[model] = await self.probe(model)
            return self._results[model]

    @property
    def known(self) -> dict[str, bool]:
        return dict(self._results)
