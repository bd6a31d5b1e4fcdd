"""Render analysis results as a Markdown changelog or JSON."""

from __future__ import annotations

from collections import defaultdict

from changelens.models import (
    AnalysisResult,
    CommitAnalysis,
    ConventionalType,
    Impact,
    RiskLevel,
    WorkingTreeAnalysis,
)

BREAKING_SECTION = "breaking"

# Section order and headings; breaking changes always come first.
SECTION_TITLES: dict[str, str] = {
    BREAKING_SECTION: "Breaking Changes",
    ConventionalType.feat: "Features",
    ConventionalType.fix: "Bug Fixes",
    ConventionalType.security: "Security",
    ConventionalType.perf: "Performance",
    ConventionalType.refactor: "Refactoring",
    ConventionalType.docs: "Documentation",
    ConventionalType.style: "Styles",
    ConventionalType.test: "Tests",
    ConventionalType.build: "Build System",
    ConventionalType.ci: "Continuous Integration",
    ConventionalType.config: "Configuration",
    ConventionalType.chore: "Chores",
    ConventionalType.other: "Other Changes",
}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _section_for(analysis: CommitAnalysis) -> str:
    if analysis.breaking:
        return BREAKING_SECTION
    return str(analysis.commit.conventional_type)


def _group_by_section(commits: list[CommitAnalysis]) -> dict[str, list[CommitAnalysis]]:
    groups: dict[str, list[CommitAnalysis]] = defaultdict(list)
    for analysis in commits:
        groups[_section_for(analysis)].append(analysis)
    return {key: groups[key] for key in SECTION_TITLES if key in groups}


def _render_entry(analysis: CommitAnalysis) -> list[str]:
    commit = analysis.commit
    summary = analysis.ai_summary
    text = summary.summary if summary else commit.subject
    scope = f"{commit.scope}: " if commit.scope else ""

    line = f"- **{scope}{text}**"
    if analysis.breaking:
        line += " [BREAKING]"
    if summary and summary.impact in (Impact.critical, Impact.high):
        line += f" [{summary.impact} impact]"
    line += f" ({commit.short_hash})"
    if summary:
        line += f" ({round(summary.confidence * 100)}%)"

    lines = [line]
    if summary:
        if summary.technical_summary:
            lines.append(f"  - {summary.technical_summary}")
        lines.extend(f"  - {h}" for h in summary.highlights)
        if summary.migration_notes:
            lines.append(f"  - **Migration**: {summary.migration_notes}")
    return lines


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def format_changelog(result: AnalysisResult, version: str | None = None) -> str:
    """Render *result* as a Markdown changelog section.

    Parameters
    ----------
    result:
        The finished analysis.
    version:
        Heading label; defaults to ``result.version`` and then
        ``"Unreleased"``.

    Returns
    -------
    str
        Markdown text ending in a newline.
    """
    label = version or result.version or "Unreleased"
    insights = result.insights
    date = result.analyzed_at.strftime("%Y-%m-%d")

    parts: list[str] = ["# Changelog", "", f"## [{label}] - {date}", ""]

    if not result.commits:
        parts += ["No changes yet.", ""]
        return "\n".join(parts)

    parts += [
        "### Release Summary",
        insights.summary,
        "",
        f"**Business Impact**: {insights.business_impact}",
        f"**Complexity**: {insights.complexity}",
    ]
    requirements = _unique(insights.deployment_requirements)
    if requirements:
        parts.append(f"**Deployment Requirements**: {', '.join(requirements)}")
    parts.append("")

    for section, entries in _group_by_section(result.commits).items():
        parts.append(f"### {SECTION_TITLES[section]}")
        parts.append("")
        for analysis in entries:
            parts.extend(_render_entry(analysis))
        parts.append("")

    if insights.risk_level is not RiskLevel.low or insights.breaking:
        parts.append("### Risk Assessment")
        parts.append(f"**Risk Level:** {str(insights.risk_level).upper()}")
        parts.append("")
        if insights.breaking:
            parts.append(
                "**Breaking Changes**: This release contains breaking changes. "
                "Please review migration notes above."
            )
            parts.append("")
        if requirements:
            parts.append("**Deployment Requirements**:")
            parts.extend(f"- {req}" for req in requirements)
            parts.append("")

    if insights.affected_areas:
        parts.append("### Affected Areas")
        parts.extend(f"- {area}" for area in sorted(insights.affected_areas))
        parts.append("")

    metrics = result.metrics
    parts.append("### Generation Metrics")
    parts.append(f"- **Total Commits**: {len(result.commits)}")
    parts.append(f"- **AI Calls**: {metrics.api_calls}")
    if metrics.total_tokens > 0:
        parts.append(f"- **Tokens Used**: {metrics.total_tokens:,}")
    if metrics.total_cost > 0:
        parts.append(f"- **Cost**: ${metrics.total_cost:.4f}")
    parts.append(f"- **Batches Processed**: {metrics.batches_processed}")
    if metrics.errors > 0:
        parts.append(f"- **Errors**: {metrics.errors}")
    parts.append("")

    return "\n".join(parts)


def format_json(result: AnalysisResult | WorkingTreeAnalysis) -> str:
    """Serialise *result* to indented JSON (sets become sorted lists)."""
    return result.model_dump_json(indent=2)


def format_working_tree(analysis: WorkingTreeAnalysis) -> str:
    """Render pending changes as a short plain-text report."""
    status = analysis.status
    if status.clean:
        return "Working tree clean.\n"

    lines: list[str] = []
    for title, files, side in (
        ("Staged changes", status.staged, analysis.staged),
        ("Unstaged changes", status.unstaged, analysis.unstaged),
    ):
        if not files:
            continue
        lines.append(f"=== {title} ({len(files)}) ===")
        for change in files:
            lines.append(f"  {change.status:<12} {change.path}  [{change.category}]")
        if side is not None:
            lines.append(f"Complexity: {side.complexity.level}  Risk: {side.risk.level}")
            if side.ai_summary is not None:
                lines.append(f"Summary:    {side.ai_summary.summary}")
        lines.append("")
    return "\n".join(lines)
