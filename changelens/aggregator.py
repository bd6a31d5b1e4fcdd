"""Roll per-file classifications up into a scored :class:`CommitAnalysis`."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from changelens.models import (
    CommitAnalysis,
    CommitRecord,
    Complexity,
    ComplexityLevel,
    DiffStats,
    FileCategory,
    FileChange,
    RiskAssessment,
    RiskLevel,
    SemanticSummary,
)
from changelens.policy import DEFAULT_POLICY, ScoringPolicy, bucket_points, level_for

logger = logging.getLogger(__name__)

# Commit-message patterns recorded in the semantic rollup.
MESSAGE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(feat|add|new)", re.IGNORECASE), "new_feature"),
    (re.compile(r"\b(fix|bug|resolve)", re.IGNORECASE), "bug_fix"),
    (re.compile(r"\b(perf|optimi[sz]|speed)", re.IGNORECASE), "performance_optimization"),
    (re.compile(r"\b(security|auth|permission)", re.IGNORECASE), "security_policy"),
)

_UI_CATEGORIES = frozenset({FileCategory.style})
_UI_LANGUAGES = frozenset({"TypeScript React", "JavaScript React", "Vue", "Svelte", "HTML"})


def stats_from_files(files: Sequence[FileChange]) -> DiffStats:
    """Derive :class:`DiffStats` by counting lines in each file's diff."""
    insertions = deletions = 0
    for change in files:
        added, removed = change.changed_lines
        insertions += added
        deletions += removed
    return DiffStats(files=len(files), insertions=insertions, deletions=deletions)


def _touches_database(change: FileChange) -> bool:
    return (
        change.category is FileCategory.database
        or change.functional_impact.data_changes
        or "Database" in change.frameworks
    )


def _touches_ui(change: FileChange) -> bool:
    return (
        change.category in _UI_CATEGORIES
        or change.language in _UI_LANGUAGES
        or "React" in change.frameworks
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def assess_complexity(
    files: Sequence[FileChange],
    stats: DiffStats,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> Complexity:
    files_count = max(stats.files, len(files))
    lines = stats.lines_changed
    categories = len({f.category for f in files})

    score = (
        bucket_points(files_count, policy.files_buckets)
        + bucket_points(lines, policy.lines_buckets)
        + bucket_points(categories, policy.category_buckets)
    )
    level = level_for(score, policy.complexity_levels, ComplexityLevel.minimal)
    return Complexity(
        score=score,
        level=level,  # type: ignore[arg-type]
        files_count=files_count,
        lines_changed=lines,
        categories_count=categories,
    )


def assess_risk(
    commit: CommitRecord,
    files: Sequence[FileChange],
    stats: DiffStats,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> RiskAssessment:
    """Score the deployment risk of a commit.

    Each factor adds its points once, however many files trigger it, so
    adding evidence can raise the score but never lower it.
    """
    score = 0
    factors: list[str] = []

    if commit.breaking or any(f.functional_impact.breaking for f in files):
        score += policy.breaking_points
        factors.append("Breaking changes")

    if any(_touches_database(f) for f in files):
        score += policy.database_points
        factors.append("Database changes")

    if any(f.category is FileCategory.config for f in files):
        score += policy.config_points
        factors.append("Configuration changes")

    files_count = max(stats.files, len(files))
    if files_count > policy.large_scale_files or stats.lines_changed > policy.large_scale_lines:
        score += policy.large_scale_points
        factors.append("Large-scale changes")

    message = commit.message.lower()
    if any(k in message for k in policy.security_keywords) or any(
        f.functional_impact.security_related for f in files
    ):
        score += policy.security_points
        factors.append("Security-related changes")

    level = level_for(score, policy.risk_levels, RiskLevel.low)
    return RiskAssessment(score=score, level=level, factors=factors)  # type: ignore[arg-type]


def summarize_semantics(
    files: Sequence[FileChange],
    commit: CommitRecord,
) -> SemanticSummary:
    """Merge per-file findings and message patterns into one rollup."""
    patterns: set[str] = set()
    frameworks: set[str] = set()
    elements: set[str] = set()
    for change in files:
        patterns |= change.semantic_tags
        frameworks |= change.frameworks
        elements |= change.code_elements

    for pattern, tag in MESSAGE_PATTERNS:
        if pattern.search(commit.message):
            patterns.add(tag)

    has_api = any(f.functional_impact.api_changes or f.api_changes for f in files)
    has_db = any(_touches_database(f) for f in files)
    has_ui = any(_touches_ui(f) for f in files)
    has_config = any(f.category is FileCategory.config for f in files)

    if has_api or has_db:
        risk = "high"
    elif has_ui or has_config:
        risk = "medium"
    else:
        risk = "low"

    return SemanticSummary(
        has_api_changes=has_api,
        has_db_changes=has_db,
        has_ui_changes=has_ui,
        has_config_changes=has_config,
        patterns=frozenset(patterns),
        frameworks=frozenset(frameworks),
        code_elements=frozenset(elements),
        risk_level=risk,
    )


def build_analysis(
    commit: CommitRecord,
    files: Sequence[FileChange],
    stats: DiffStats | None = None,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> CommitAnalysis:
    """Produce the scored analysis of *commit*.

    *stats* normally comes from ``git show --shortstat``; when it is
    missing the counts are taken from the file diffs themselves.
    """
    if stats is None:
        stats = stats_from_files(files)
    complexity = assess_complexity(files, stats, policy)
    risk = assess_risk(commit, files, stats, policy)
    logger.debug(
        "Commit %s: complexity=%s (%d) risk=%s (%d)",
        commit.short_hash,
        complexity.level,
        complexity.score,
        risk.level,
        risk.score,
    )
    return CommitAnalysis(
        commit=commit,
        files=list(files),
        diff_stats=stats,
        semantic=summarize_semantics(files, commit),
        complexity=complexity,
        risk=risk,
    )
