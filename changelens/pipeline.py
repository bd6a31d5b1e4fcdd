"""End-to-end runs: git -> classification -> summaries -> release insights."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from datetime import UTC, datetime

from changelens import analyzer
from changelens.aggregator import build_analysis, stats_from_files
from changelens.config import Settings
from changelens.generator import MetricsCounter, Orchestrator
from changelens.insights import synthesize
from changelens.models import (
    AnalysisResult,
    Author,
    CommitAnalysis,
    CommitRecord,
    ConventionalType,
    FileChange,
    LogFilter,
    WorkingTreeAnalysis,
)
from changelens.policy import DEFAULT_POLICY, ScoringPolicy
from changelens.provider import Summarizer

logger = logging.getLogger(__name__)


def analyze_commit(
    repo_path: str,
    record: CommitRecord,
    *,
    context_lines: int = 5,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> CommitAnalysis:
    """Classify and score one commit (no summarization)."""
    base = analyzer.diff_base(repo_path, record.hash)
    files = analyzer.commit_file_changes(repo_path, record.hash, context_lines, base=base)
    stats = analyzer.diff_stats(repo_path, record.hash, base=base)
    if stats.files == 0 and files:
        stats = stats_from_files(files)
    return build_analysis(record, files, stats, policy)


async def analyze_repository(
    repo_path: str,
    log_filter: LogFilter | None = None,
    *,
    settings: Settings | None = None,
    provider: Summarizer | None = None,
    deadline: float | None = None,
    version: str | None = None,
    metrics: MetricsCounter | None = None,
    on_commit: Callable[[CommitRecord], None] | None = None,
    on_batch: Callable[[int, int], None] | None = None,
) -> AnalysisResult:
    """Analyse the commits selected by *log_filter* and synthesize a release.

    Raises
    ------
    RepositoryNotFoundError
        If *repo_path* is not inside a git repository.  Nothing else
        raised while processing individual commits escapes this function.
    """
    settings = settings or Settings()
    log_filter = log_filter or LogFilter()
    root = analyzer.ensure_repository(repo_path)

    records = analyzer.list_commits(root, log_filter)
    logger.info("Found %d commit(s) in %s", len(records), root)

    analyses: list[CommitAnalysis] = []
    for record in records:
        try:
            analysis = analyze_commit(root, record, context_lines=settings.context_lines)
        except (OSError, subprocess.SubprocessError, ValueError) as exc:
            logger.warning("Could not read changes of %s: %s", record.short_hash, exc)
            analysis = build_analysis(record, [])
        analyses.append(analysis)
        if on_commit is not None:
            on_commit(record)

    counter = metrics if metrics is not None else MetricsCounter()
    orchestrator = Orchestrator(provider, settings, counter, on_batch=on_batch)
    summarized = await orchestrator.summarize_all(analyses, deadline=deadline)

    return AnalysisResult(
        repo_path=root,
        from_ref=log_filter.from_ref,
        to_ref=log_filter.to_ref,
        version=version,
        commits=summarized,
        insights=synthesize(summarized, version),
        metrics=counter.snapshot(),
    )


def _pending_record(label: str, files: list[FileChange]) -> CommitRecord:
    """A stand-in commit for uncommitted *files*."""
    now = datetime.now(tz=UTC)
    subject = f"{label} changes ({len(files)} file{'s' if len(files) != 1 else ''})"
    return CommitRecord(
        hash=label,
        short_hash=label,
        author=Author(name=""),
        author_date=now,
        commit_date=now,
        subject=subject,
        conventional_type=ConventionalType.other,
        breaking=any(f.functional_impact.breaking for f in files),
    )


async def analyze_working_tree(
    repo_path: str,
    *,
    settings: Settings | None = None,
    provider: Summarizer | None = None,
) -> WorkingTreeAnalysis:
    """Analyse staged and unstaged changes as two pending commits.

    Without a *provider* both sides get rule-based summaries.
    """
    settings = settings or Settings()
    root = analyzer.ensure_repository(repo_path)
    status = analyzer.working_tree_status(root, settings.context_lines)
    orchestrator = Orchestrator(provider, settings)

    async def _side(label: str, files: list[FileChange]) -> CommitAnalysis | None:
        if not files:
            return None
        analysis = build_analysis(_pending_record(label, files), files)
        return await orchestrator.summarize(analysis)

    return WorkingTreeAnalysis(
        repo_path=root,
        status=status,
        staged=await _side("staged", status.staged),
        unstaged=await _side("unstaged", status.unstaged),
    )
