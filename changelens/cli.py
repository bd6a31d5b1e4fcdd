"""Typer CLI entry point for changelens.

Provides four commands:

- ``analyze``: Classify commits, summarize them via Claude (or rules), and
  render a changelog with release insights.
- ``status``: Classify staged and unstaged changes in the working tree.
- ``branches``: List branches with their unmerged commits, plus dangling commits.
- ``validate``: Check commit subjects against the conventional-commit format.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from changelens import analyzer, formatter, parser, pipeline
from changelens.config import Settings
from changelens.errors import RepositoryNotFoundError
from changelens.generator import SUMMARY_SCHEMA
from changelens.models import AnalysisResult, LogFilter, WorkingTreeAnalysis
from changelens.provider import ClaudeProvider, Summarizer

app = typer.Typer(
    name="changelens",
    help="AI-assisted git changelog generation with risk and impact analysis.",
    add_completion=False,
)

# Ensure UTF-8 console output on Windows (prevents cp1252 encoding errors)
if hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8")

_console = Console()
_err_console = Console(stderr=True)


class OutputFormat(StrEnum):
    markdown = "markdown"
    json = "json"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=_err_console, show_path=False)],
        force=True,
    )


def _validate_git_repo(repo_path: str) -> str:
    """Return the repository root, or exit 1 if *repo_path* is not a repository."""
    try:
        return analyzer.ensure_repository(repo_path)
    except RepositoryNotFoundError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)


def _build_provider(settings: Settings, repo_root: str) -> Summarizer | None:
    if not settings.ai_enabled:
        return None
    return ClaudeProvider(cwd=repo_root, output_schema=SUMMARY_SCHEMA)


def _write_output(text: str, out_file: str | None) -> None:
    typer.echo(text)
    if out_file:
        out_path = Path(out_file)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text, encoding="utf-8")
        _console.print(f"[green]Output written to {out_file}[/green]")


def _run_analysis(
    repo_root: str,
    log_filter: LogFilter,
    settings: Settings,
    deadline: float | None,
    version: str | None,
) -> AnalysisResult:
    """Drive the async pipeline with a progress display."""
    provider = _build_provider(settings, repo_root)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=_err_console,
        transient=True,
    ) as progress:
        classify_task = progress.add_task("Classifying commits…", total=log_filter.limit)
        summary_task = progress.add_task("Summarizing…", total=None, visible=False)

        def _on_commit(_record: object) -> None:
            progress.advance(classify_task)

        def _on_batch(done: int, total: int) -> None:
            progress.update(summary_task, completed=done, total=total, visible=True)

        return asyncio.run(
            pipeline.analyze_repository(
                repo_root,
                log_filter,
                settings=settings,
                provider=provider,
                deadline=deadline,
                version=version,
                on_commit=_on_commit,
                on_batch=_on_batch,
            )
        )


def _print_insights(result: AnalysisResult) -> None:
    insights = result.insights
    table = Table(title=insights.headline or "Release insights", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Commits", str(insights.total_commits))
    table.add_row("Risk", str(insights.risk_level))
    table.add_row("Complexity", insights.complexity)
    table.add_row("Business impact", insights.business_impact)
    table.add_row("Breaking", "yes" if insights.breaking else "no")
    table.add_row("AI calls / errors", f"{result.metrics.api_calls} / {result.metrics.errors}")
    _err_console.print(table)


# ---------------------------------------------------------------------------
# analyze command
# ---------------------------------------------------------------------------


@app.command()
def analyze(
    repo_path: str = typer.Argument(".", help="Path to the git repository to analyse."),
    since: str | None = typer.Option(None, "--since", help="Only commits after this date."),
    until: str | None = typer.Option(None, "--until", help="Only commits before this date."),
    author: str | None = typer.Option(None, "--author", help="Only commits by this author."),
    grep: str | None = typer.Option(None, "--grep", help="Only commits whose message matches."),
    from_ref: str | None = typer.Option(
        None,
        "--from",
        help="Exclusive start ref (tag or commit hash).",
    ),
    to_ref: str | None = typer.Option(
        None,
        "--to",
        help="Inclusive end ref (defaults to HEAD).",
    ),
    limit: int = typer.Option(100, "--limit", "-n", min=1, help="Maximum commits (capped at 1000)."),
    newest_first: bool = typer.Option(
        False,
        "--newest-first",
        help="List commits newest first instead of oldest first.",
    ),
    include_merges: bool = typer.Option(False, "--include-merges", help="Keep merge commits."),
    model: str | None = typer.Option(
        None,
        "--model",
        help="Force this Claude model for every commit.",
    ),
    no_ai: bool = typer.Option(False, "--no-ai", help="Use rule-based summaries only."),
    mode: str | None = typer.Option(
        None,
        "--mode",
        help="Analysis mode: standard, detailed or enterprise.",
    ),
    batch_size: int | None = typer.Option(
        None,
        "--batch-size",
        min=1,
        help="Commits summarized concurrently per batch.",
    ),
    deadline: float | None = typer.Option(
        None,
        "--deadline",
        min=0,
        help="Stop calling Claude after this many seconds; remaining commits use rules.",
    ),
    version: str | None = typer.Option(None, "--version", help="Version label for the changelog."),
    output_format: OutputFormat = typer.Option(
        OutputFormat.markdown,
        "--format",
        help="Output format: markdown or json.",
    ),
    out_file: str | None = typer.Option(
        None,
        "--out-file",
        "-f",
        help="Write formatted output to this file.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show detailed progress information.",
    ),
) -> None:
    """Analyse commits and generate a changelog with release insights."""
    _setup_logging(verbose)
    repo_root = _validate_git_repo(repo_path)

    try:
        settings = Settings().with_overrides(
            model_override=model,
            analysis_mode=mode,
            batch_size=batch_size,
            ai_enabled=False if no_ai else None,
        )
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)

    log_filter = LogFilter(
        since=since,
        until=until,
        author=author,
        grep=grep,
        from_ref=from_ref,
        to_ref=to_ref,
        exclude_merges=not include_merges,
        limit=limit,
        oldest_first=not newest_first,
    )

    if verbose:
        _console.print(f"[cyan]Analysing[/cyan] {repo_root} …", highlight=False)

    try:
        result = _run_analysis(
            repo_root,
            log_filter,
            settings,
            time.monotonic() + deadline if deadline is not None else None,
            version,
        )
    except RepositoryNotFoundError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)

    if not result.commits:
        typer.echo("No commits found in the specified range.")
        raise typer.Exit(0)

    if output_format is OutputFormat.json:
        text = formatter.format_json(result)
    else:
        text = formatter.format_changelog(result, version)
        _print_insights(result)

    _write_output(text, out_file)


# ---------------------------------------------------------------------------
# status command
# ---------------------------------------------------------------------------


@app.command()
def status(
    repo_path: str = typer.Argument(
        ".",
        help="Path to the git repository (defaults to current directory).",
    ),
    ai: bool = typer.Option(False, "--ai", help="Summarize pending changes with Claude."),
    output_format: OutputFormat = typer.Option(
        OutputFormat.markdown,
        "--format",
        help="Output format: markdown (plain report) or json.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging."),
) -> None:
    """Classify staged and unstaged changes in the working tree."""
    _setup_logging(verbose)
    repo_root = _validate_git_repo(repo_path)
    try:
        settings = Settings().with_overrides(ai_enabled=ai)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)
    provider = _build_provider(settings, repo_root)

    async def _analyse() -> WorkingTreeAnalysis:
        return await pipeline.analyze_working_tree(
            repo_root, settings=settings, provider=provider
        )

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=_err_console,
        transient=True,
    ) as progress:
        progress.add_task("Analysing working tree…", total=None)
        analysis = asyncio.run(_analyse())

    if output_format is OutputFormat.json:
        typer.echo(formatter.format_json(analysis))
    else:
        typer.echo(formatter.format_working_tree(analysis))


# ---------------------------------------------------------------------------
# branches command
# ---------------------------------------------------------------------------


@app.command()
def branches(
    repo_path: str = typer.Argument(
        ".",
        help="Path to the git repository (defaults to current directory).",
    ),
) -> None:
    """List branches, the commits each has not merged, and dangling commits."""
    repo_root = _validate_git_repo(repo_path)
    branch_set = analyzer.branches(repo_root)
    unmerged = analyzer.unmerged_commits(repo_root)
    dangling = analyzer.dangling_commits(repo_root)

    typer.echo(f"Current: {branch_set.current}")
    typer.echo("Local:")
    for name in branch_set.local:
        marker = "*" if name == branch_set.current else " "
        typer.echo(f"  {marker} {name}")
    if branch_set.remote:
        typer.echo("Remote:")
        for name in branch_set.remote:
            typer.echo(f"    {name}")

    if unmerged:
        typer.echo(f"Unmerged into {branch_set.current}:")
        for entry in unmerged:
            typer.echo(f"  {entry.branch} ({len(entry.commits)})")
            for record in entry.commits:
                typer.echo(f"    {record.short_hash} {record.subject}")
    if dangling:
        typer.echo(f"Dangling commits ({len(dangling)}):")
        for record in dangling:
            typer.echo(f"    {record.short_hash} {record.subject}")


# ---------------------------------------------------------------------------
# validate command
# ---------------------------------------------------------------------------


@app.command()
def validate(
    repo_path: str = typer.Argument(".", help="Path to the git repository to check."),
    since: str | None = typer.Option(None, "--since", help="Only commits after this date."),
    until: str | None = typer.Option(None, "--until", help="Only commits before this date."),
    author: str | None = typer.Option(None, "--author", help="Only commits by this author."),
    from_ref: str | None = typer.Option(None, "--from", help="Exclusive start ref."),
    to_ref: str | None = typer.Option(None, "--to", help="Inclusive end ref."),
    limit: int = typer.Option(100, "--limit", "-n", min=1, help="Maximum commits (capped at 1000)."),
    include_merges: bool = typer.Option(False, "--include-merges", help="Check merge commits too."),
) -> None:
    """Report commit subjects that break the conventional format or run over 72 characters."""
    repo_root = _validate_git_repo(repo_path)
    records = analyzer.list_commits(
        repo_root,
        LogFilter(
            since=since,
            until=until,
            author=author,
            from_ref=from_ref,
            to_ref=to_ref,
            exclude_merges=not include_merges,
            limit=limit,
        ),
    )
    if not records:
        typer.echo("No commits found in the specified range.")
        raise typer.Exit(0)

    failing = 0
    for record in records:
        issues = parser.validate_subject(record.subject)
        if not issues:
            continue
        failing += 1
        typer.echo(f"{record.short_hash} {record.subject}")
        for issue in issues:
            typer.echo(f"    - {issue}")

    if failing:
        typer.echo(f"{failing} of {len(records)} commit messages have issues.")
        raise typer.Exit(1)
    typer.echo(f"All {len(records)} commit messages are valid.")


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
