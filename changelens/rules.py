"""Deterministic commit summaries used when Claude is off or fails."""

from __future__ import annotations

from changelens.models import (
    AISummary,
    CommitAnalysis,
    ComplexityLevel,
    FileCategory,
    Impact,
    ReleaseScope,
    RiskLevel,
    SummarySource,
)

RULES_CONFIDENCE = 0.7

# Message/semantic pattern -> phrase appended to the subject.
PATTERN_INSIGHTS: tuple[tuple[str, str], ...] = (
    ("new_feature", "introduces new functionality"),
    ("bug_fix", "resolves issues"),
    ("performance_optimization", "improves performance"),
    ("security_policy", "enhances security"),
)
FRAMEWORK_INSIGHTS: tuple[tuple[str, str], ...] = (
    ("React", "updates React components"),
    ("Database", "modifies database layer"),
    ("API", "changes API surface"),
)

_SCOPE_FOR_IMPACT = {
    Impact.critical: ReleaseScope.major,
    Impact.high: ReleaseScope.minor,
}


def _ordered_unique(values: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)


def rule_based_summary(analysis: CommitAnalysis) -> AISummary:
    """Summarize *analysis* from its classification alone.

    Total over every well-formed analysis: every :class:`AISummary` field
    is filled in, so callers never see a partial record.
    """
    commit = analysis.commit
    files = analysis.files
    stats = analysis.diff_stats
    semantic = analysis.semantic
    risk = analysis.risk
    complexity = analysis.complexity

    category = str(commit.conventional_type)
    impact = Impact.low
    user_facing = False

    if risk.level in (RiskLevel.critical, RiskLevel.high):
        impact = Impact(risk.level.value)
        category = "breaking"
    elif complexity.level in (ComplexityLevel.high, ComplexityLevel.very_high):
        impact = Impact.medium

    has_ui = any(
        f.category is FileCategory.source and f.path.endswith((".tsx", ".jsx")) for f in files
    )
    has_db = any(f.category is FileCategory.database for f in files)
    has_api = any(f.functional_impact.api_changes for f in files)
    has_security = any(f.functional_impact.security_related for f in files)

    if has_security:
        impact = Impact.high
        category = "security"
    elif commit.breaking:
        impact = Impact.critical
        category = "breaking"
    elif has_db or has_api:
        impact = Impact.medium
    elif has_ui:
        impact = Impact.medium
        user_facing = True

    insights = [text for tag, text in PATTERN_INSIGHTS if tag in semantic.patterns]
    insights += [text for name, text in FRAMEWORK_INSIGHTS if name in semantic.frameworks]
    summary = commit.subject or commit.short_hash
    if insights:
        summary = f"{summary} ({', '.join(insights[:2])})"

    highlights: list[str] = []
    if stats.insertions > 100:
        highlights.append("Significant code additions")
    if len(files) > 10:
        highlights.append("Wide-ranging changes")
    if has_ui:
        highlights.append("User interface updates")
    if has_db:
        highlights.append("Database modifications")
    if complexity.level is not ComplexityLevel.minimal:
        highlights.append(f"{complexity.level} complexity changes")

    categories = _ordered_unique([str(f.category) for f in files])
    tags = sorted(semantic.frameworks) + sorted(semantic.patterns)[:3]

    return AISummary(
        summary=summary,
        technical_summary=(
            f"Modified {len(files)} files with +{stats.insertions}/-{stats.deletions} "
            f"lines. Complexity: {complexity.level}"
        ),
        category=category,
        impact=impact,
        scope=_SCOPE_FOR_IMPACT.get(impact, ReleaseScope.patch),
        user_facing=user_facing,
        breaking=commit.breaking,
        business_impact="Affects user experience" if user_facing else "Internal improvements",
        technical_impact=(
            f"Changes in {', '.join(categories)}" if categories else "No file changes"
        ),
        highlights=highlights[:3],
        migration_notes=(
            "Review breaking changes before deployment" if commit.breaking else None
        ),
        tags=tags,
        related_areas=categories[:3],
        risk_level=str(risk.level),
        confidence=RULES_CONFIDENCE,
        source=SummarySource.rules,
    )
