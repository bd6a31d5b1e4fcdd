"""Shared test fixtures for the changelens test suite.

CRITICAL: The autouse ``_mock_claude_sdk`` fixture globally prevents any real
Claude Agent SDK calls from being made during tests.  Without this, ``query()``
spawns a real Claude Code CLI subprocess, which hangs for 30-60+ seconds per
call, burns compute quota, and makes CI unusable.

The mock target is ``changelens.provider.query`` - the module-level
reference - NOT ``claude_agent_sdk.query``.  Patching the *source* module
does not affect code that has already imported the name.
"""

from __future__ import annotations

import os
import subprocess
import textwrap
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from changelens.aggregator import build_analysis
from changelens.classifier import classify_file
from changelens.models import (
    Author,
    CommitAnalysis,
    CommitRecord,
    DiffStats,
    FileChange,
)
from changelens.parser import extract_scope, extract_type, is_breaking
from changelens.provider import Completion

# ---------------------------------------------------------------------------
# Helpers for async-iterable mocking
# ---------------------------------------------------------------------------


class _AsyncIterableFromList:
    """Wrap a list of items as an async iterable (for ``async for``)."""

    def __init__(self, items: list[Any]) -> None:
        self._items = items

    def __aiter__(self):  # noqa: ANN204
        return self

    async def __anext__(self) -> Any:
        if not self._items:
            raise StopAsyncIteration
        return self._items.pop(0)


def make_mock_query(items: list[Any] | None = None) -> MagicMock:
    """Create a mock ``query()`` that returns an async iterable of *items*.

    If *items* is ``None`` (the default), an empty async iterable is returned
    so that any code path exercising ``query()`` receives no messages and
    does not spawn a real subprocess.
    """
    mock = MagicMock()
    mock.return_value = _AsyncIterableFromList(list(items or []))
    return mock


# ---------------------------------------------------------------------------
# Autouse fixture: globally mock Claude SDK query()
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _mock_claude_sdk():
    """Globally prevent real Claude SDK calls in ALL tests.

    Individual tests that need to verify SDK integration should patch
    with their own mock that returns specific test data.
    """
    mock_query = make_mock_query()
    with patch("changelens.provider.query", mock_query):
        yield mock_query


@pytest.fixture(autouse=True)
def _isolated_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop any ``CHANGELENS_*`` variables from the developer's shell."""
    for name in list(os.environ):
        if name.startswith("CHANGELENS_"):
            monkeypatch.delenv(name)


# ---------------------------------------------------------------------------
# Model builders
# ---------------------------------------------------------------------------


def make_record(
    subject: str = "feat: add widget",
    body: str = "",
    commit_hash: str | None = None,
    index: int = 0,
) -> CommitRecord:
    """Build a :class:`CommitRecord` the way the parser would."""
    commit_hash = commit_hash or f"{index:040x}"
    when = datetime(2026, 1, 15, 10, 0, index % 60, tzinfo=UTC)
    return CommitRecord(
        hash=commit_hash,
        short_hash=commit_hash[:7],
        author=Author(name="Test Author", email="test@example.com"),
        author_date=when,
        commit_date=when,
        subject=subject,
        body=body,
        conventional_type=extract_type(subject),
        scope=extract_scope(subject),
        breaking=is_breaking(subject, body),
    )


def make_diff(path: str, added: int = 5, removed: int = 0, line: str = "value = 1") -> str:
    """A unified diff for *path* with the given numbers of +/- lines."""
    lines = [
        f"diff --git a/{path} b/{path}",
        f"--- a/{path}",
        f"+++ b/{path}",
        f"@@ -1,{removed} +1,{added} @@",
    ]
    lines += [f"-old_{i} = {i}" for i in range(removed)]
    lines += [f"+{line}  # {i}" for i in range(added)]
    return "\n".join(lines) + "\n"


def make_file(path: str, added: int = 5, removed: int = 0, status: str = "M", **kw: Any) -> FileChange:
    diff = kw.pop("diff", None) or make_diff(path, added, removed)
    return classify_file(status, path, diff, **kw)


def make_analysis(
    subject: str = "feat: add widget",
    files: list[FileChange] | None = None,
    *,
    body: str = "",
    index: int = 0,
    stats: DiffStats | None = None,
) -> CommitAnalysis:
    record = make_record(subject, body, index=index)
    return build_analysis(record, files if files is not None else [make_file("src/widget.py")], stats)


class FakeSummarizer:
    """In-memory :class:`~changelens.provider.Summarizer` for orchestrator tests.

    ``responses`` maps a commit subject substring to either the text to
    return or an exception to raise.  ``delays`` maps substrings to sleep
    seconds so completion order can be shuffled; ``availability_delay`` slows
    every model availability check.
    """

    def __init__(
        self,
        default: str = '{"summary": "Service summary", "impact": "medium", "scope": "minor"}',
        responses: dict[str, Any] | None = None,
        delays: dict[str, float] | None = None,
        available: set[str] | None = None,
        tokens: int = 10,
        availability_delay: float = 0.0,
    ) -> None:
        self.default = default
        self.availability_delay = availability_delay
        self.responses = responses or {}
        self.delays = delays or {}
        self.available = available
        self.tokens = tokens
        self.calls: list[dict[str, Any]] = []
        self.probes: list[str] = []

    async def complete(self, messages, *, model, max_tokens, temperature=None,
                       reasoning_effort=None, timeout):  # noqa: ANN001, ANN201
        import asyncio

        prompt = messages[-1]["content"]
        self.calls.append({"model": model, "prompt": prompt, "reasoning_effort": reasoning_effort})
        for key, delay in self.delays.items():
            if key in prompt:
                await asyncio.sleep(delay)
        for key, response in self.responses.items():
            if key in prompt:
                if isinstance(response, BaseException):
                    raise response
                return Completion(content=response, model=model, tokens=self.tokens)
        return Completion(content=self.default, model=model, tokens=self.tokens)

    async def probe(self, model: str) -> bool:
        import asyncio

        self.probes.append(model)
        if self.availability_delay:
            await asyncio.sleep(self.availability_delay)
        return self.available is None or model in self.available


# ---------------------------------------------------------------------------
# Temporary git repository fixture
# ---------------------------------------------------------------------------


def _run_git(
    cwd: Path, *args: str, date: str = "2026-01-15T10:00:00+00:00"
) -> subprocess.CompletedProcess[str]:
    """Run a git command in *cwd* and return the completed process."""
    return subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        check=True,
        capture_output=True,
        text=True,
        env={
            "GIT_AUTHOR_NAME": "Test Author",
            "GIT_AUTHOR_EMAIL": "test@example.com",
            "GIT_COMMITTER_NAME": "Test Author",
            "GIT_COMMITTER_EMAIL": "test@example.com",
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_DATE": date,
            # Minimal PATH so git can find itself
            "PATH": subprocess.os.environ.get("PATH", ""),
            # Prevent git from reading user-level config
            "GIT_CONFIG_NOSYSTEM": "1",
            "HOME": str(cwd),
        },
    )


def _date(day: int) -> str:
    return f"2026-01-{day:02d}T10:00:00+00:00"


@pytest.fixture()
def tmp_git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository with conventional-commit history.

    The repo has, oldest first on ``main``:

    1. ``chore: initial scaffold`` - README, src/app.py, config.yaml
    2. ``feat(auth): add login`` - two new files under src/auth/
    3. ``fix: handle empty input`` - small edit to src/app.py
    4. ``fix!: drop legacy sessions table`` - a SQL migration with DROP TABLE
    5. a ``--no-ff`` merge of ``feature/docs`` (which adds docs/guide.md)

    Returns the path to the repository root.
    """
    repo = tmp_path / "repo"
    repo.mkdir()
    _run_git(repo, "init", "-b", "main")

    (repo / "README.md").write_text("# Sample\n\nA sample project.\n")
    src = repo / "src"
    src.mkdir()
    app_py = src / "app.py"
    app_py.write_text(textwrap.dedent("""\
        def handle(data):
            return data.strip()
    """))
    (repo / "config.yaml").write_text("debug: false\n")
    _run_git(repo, "add", ".")
    _run_git(repo, "commit", "-m", "chore: initial scaffold", date=_date(1))

    auth = src / "auth"
    auth.mkdir()
    (auth / "login.py").write_text(textwrap.dedent("""\
        def login(user, password):
            if not user:
                raise ValueError("user required")
            return {"user": user}
    """))
    (auth / "session.py").write_text(textwrap.dedent("""\
        SESSIONS = {}

        def open_session(user):
            SESSIONS[user] = True
            return user
    """))
    _run_git(repo, "add", ".")
    _run_git(repo, "commit", "-m", "feat(auth): add login", date=_date(2))

    app_py.write_text(textwrap.dedent("""\
        def handle(data):
            if not data:
                return ""
            return data.strip()
    """))
    _run_git(repo, "add", "src/app.py")
    _run_git(repo, "commit", "-m", "fix: handle empty input", date=_date(3))

    migrations = repo / "db" / "migrations"
    migrations.mkdir(parents=True)
    (migrations / "002_drop_sessions.sql").write_text("DROP TABLE legacy_sessions;\n")
    _run_git(repo, "add", ".")
    _run_git(
        repo,
        "commit",
        "-m",
        "fix!: drop legacy sessions table\n\nBREAKING CHANGE: sessions are gone",
        date=_date(4),
    )

    _run_git(repo, "checkout", "-b", "feature/docs")
    docs = repo / "docs"
    docs.mkdir()
    (docs / "guide.md").write_text("# Guide\n\nRun the app.\n")
    _run_git(repo, "add", ".")
    _run_git(repo, "commit", "-m", "docs: add guide", date=_date(5))
    _run_git(repo, "checkout", "main")
    _run_git(repo, "merge", "feature/docs", "--no-ff", "-m", "Merge branch 'feature/docs'", date=_date(6))

    return repo
