"""Fold summarized commits into one :class:`ReleaseInsights`."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from changelens.models import (
    RISK_ORDER,
    CommitAnalysis,
    ConventionalType,
    ReleaseInsights,
    RiskLevel,
)
from changelens.policy import DEFAULT_POLICY, ScoringPolicy

MIGRATION_REQUIRED = "Database migration required"
BREAKING_REVIEW = "Breaking changes - review migration notes"
MAX_HIGHLIGHTS = 5


def _is_breaking(analysis: CommitAnalysis) -> bool:
    if analysis.breaking:
        return True
    return any(f.functional_impact.breaking for f in analysis.files)


def _needs_migration(analysis: CommitAnalysis) -> bool:
    return analysis.semantic.has_db_changes or any(
        f.functional_impact.data_changes for f in analysis.files
    )


def _is_user_facing(analysis: CommitAnalysis) -> bool:
    if analysis.ai_summary is not None and analysis.ai_summary.user_facing:
        return True
    return any(
        f.functional_impact.user_facing or f.business_relevance.customer_facing
        for f in analysis.files
    )


def _plural(count: int, word: str, plural: str | None = None) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {plural or word + 's'}"


def synthesize(
    analyses: Sequence[CommitAnalysis],
    version: str | None = None,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> ReleaseInsights:
    """Summarize a release from its analysed commits.

    Empty input yields a valid low-risk "no changes" insight.
    """
    label = version or "Unreleased"
    if not analyses:
        return ReleaseInsights(
            summary="No changes in this release",
            headline=f"{label}: no changes",
        )

    type_counts = Counter(str(a.commit.conventional_type) for a in analyses)
    ordered_counts = {
        t.value: type_counts[t.value] for t in ConventionalType if type_counts[t.value]
    }

    breaking = False
    revenue = False
    user_facing = False
    risk_index = 0
    areas: set[str] = set()
    requirements: list[str] = []

    for analysis in analyses:
        commit_breaking = _is_breaking(analysis)
        breaking = breaking or commit_breaking
        revenue = revenue or any(f.business_relevance.revenue_impact for f in analysis.files)
        user_facing = user_facing or _is_user_facing(analysis)
        risk_index = max(risk_index, RISK_ORDER.index(analysis.risk.level))
        areas.update(str(f.category) for f in analysis.files)

        if _needs_migration(analysis):
            requirements.append(MIGRATION_REQUIRED)
        if commit_breaking:
            requirements.append(BREAKING_REVIEW)

    avg_files = sum(len(a.files) for a in analyses) / len(analyses)
    if avg_files > policy.high_complexity_avg_files or breaking:
        complexity = "high"
    elif avg_files > policy.medium_complexity_avg_files:
        complexity = "medium"
    else:
        complexity = "low"

    if revenue or breaking:
        business_impact = "major"
    elif user_facing:
        business_impact = "moderate"
    else:
        business_impact = "minor"

    features = type_counts[ConventionalType.feat.value]
    fixes = type_counts[ConventionalType.fix.value]
    summary = (
        f"Release includes {_plural(features, 'new feature')}, "
        f"{_plural(fixes, 'bug fix', 'bug fixes')}"
    )
    if breaking:
        summary += " with breaking changes"

    risk_level: RiskLevel = RISK_ORDER[risk_index]
    headline = f"{label}: {_plural(len(analyses), 'commit')}, {risk_level} risk"
    if breaking:
        headline += ", breaking"

    return ReleaseInsights(
        summary=summary,
        total_commits=len(analyses),
        commit_type_counts=ordered_counts,
        risk_level=risk_level,
        affected_areas=frozenset(areas),
        breaking=breaking,
        complexity=complexity,
        business_impact=business_impact,
        deployment_requirements=requirements,
        headline=headline,
        key_highlights=_key_highlights(analyses),
    )


def _key_highlights(analyses: Sequence[CommitAnalysis]) -> list[str]:
    """Highlights from the riskiest commits first, deduplicated, at most five."""
    ranked = sorted(
        enumerate(analyses),
        key=lambda pair: (-RISK_ORDER.index(pair[1].risk.level), pair[0]),
    )
    picked: list[str] = []
    for _, analysis in ranked:
        summary = analysis.ai_summary
        candidates = summary.highlights if summary and summary.highlights else []
        if not candidates and summary is not None:
            candidates = [summary.summary]
        for text in candidates:
            if text and text not in picked:
                picked.append(text)
            if len(picked) >= MAX_HIGHLIGHTS:
                return picked
    return picked
