"""Read commits, diffs and working-tree state from git via subprocess.

All git interaction uses subprocess.run - no GitPython dependency.  Apart
from :func:`ensure_repository`, failures here degrade to empty results so
one unreadable commit never stops a run.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Any

from changelens.classifier import classify_file, map_status
from changelens.errors import RepositoryNotFoundError
from changelens.models import (
    BranchSet,
    CommitRecord,
    DiffStats,
    FileChange,
    FileStatus,
    LogFilter,
    UnmergedBranch,
    WorkingTreeStatus,
)
from changelens.parser import LOG_FORMAT, RECORD_SEP, parse_log

logger = logging.getLogger(__name__)

# SHA of the git empty tree - used to diff against the root commit.
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

# Unreachable commits reported by ``dangling_commits`` at most.
DANGLING_LIMIT = 20

# Default for the ``base`` arguments below: look the diff base up from git.
_UNSET: Any = object()


def _run_git(
    args: list[str],
    cwd: str,
    *,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess result.

    All output is decoded as UTF-8 with ``errors='replace'`` so binary
    file names or non-UTF-8 content never cause a crash.
    """
    cmd = ["git"] + args
    logger.debug("Running: %s (cwd=%s)", " ".join(cmd), cwd)
    return subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=True,
        text=True,
        errors="replace",
        check=check,
    )


def _parents(repo_path: str, commit_hash: str) -> list[str]:
    result = _run_git(["rev-parse", f"{commit_hash}^@"], cwd=repo_path, check=False)
    return [p.strip() for p in result.stdout.splitlines() if p.strip()]


def diff_base(repo_path: str, commit_hash: str) -> str | None:
    """Return the tree to diff *commit_hash* against, or ``None`` for merges."""
    parents = _parents(repo_path, commit_hash)
    if len(parents) > 1:
        return None
    return parents[0] if parents else EMPTY_TREE_SHA


def _parse_name_status(output: str) -> list[tuple[FileStatus, str]]:
    """Parse ``--name-status`` lines; renames and copies report the new path."""
    changes: list[tuple[FileStatus, str]] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 2:
            logger.debug("Ignoring name-status line %r", line)
            continue
        changes.append((map_status(parts[0].strip()), parts[-1].strip()))
    return changes


def _clean_diff(output: str) -> str | None:
    if not output.strip():
        return None
    if "\n@@" not in output and not output.startswith("@@"):
        # Only headers, e.g. "Binary files a/x and b/x differ" or a mode change.
        return None
    return output


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def ensure_repository(repo_path: str) -> str:
    """Return the top-level directory of the repository containing *repo_path*.

    Raises
    ------
    RepositoryNotFoundError
        If the path does not exist, is not a directory, is not inside a
        git work tree, or git itself is missing.
    """
    path = Path(repo_path)
    if not path.exists():
        raise RepositoryNotFoundError(f"path does not exist: {repo_path}")
    if not path.is_dir():
        raise RepositoryNotFoundError(f"path is not a directory: {repo_path}")
    try:
        result = _run_git(["rev-parse", "--show-toplevel"], cwd=str(path), check=False)
    except FileNotFoundError as exc:
        raise RepositoryNotFoundError("git is not installed or not on PATH") from exc
    if result.returncode != 0 or not result.stdout.strip():
        raise RepositoryNotFoundError(f"not a git repository: {repo_path}")
    return result.stdout.strip()


def build_log_args(log_filter: LogFilter) -> list[str]:
    """Translate *log_filter* into ``git log`` arguments."""
    args = [
        "log",
        f"--format={RECORD_SEP}{LOG_FORMAT}",
        f"--max-count={log_filter.limit}",
    ]
    if log_filter.exclude_merges:
        args.append("--no-merges")
    if log_filter.oldest_first:
        args.append("--reverse")
    if log_filter.since:
        args.append(f"--since={log_filter.since}")
    if log_filter.until:
        args.append(f"--until={log_filter.until}")
    if log_filter.author:
        args.append(f"--author={log_filter.author}")
    if log_filter.grep:
        args.append(f"--grep={log_filter.grep}")

    if log_filter.from_ref and log_filter.to_ref:
        args.append(f"{log_filter.from_ref}..{log_filter.to_ref}")
    elif log_filter.from_ref:
        args.append(f"{log_filter.from_ref}..HEAD")
    elif log_filter.to_ref:
        args.append(log_filter.to_ref)
    else:
        args.append("HEAD")
    return args


def list_commits(repo_path: str, log_filter: LogFilter | None = None) -> list[CommitRecord]:
    """Return commits matching *log_filter* in the order git reports them.

    With ``oldest_first`` (the default) git is asked for ``--reverse``
    output, so the list runs oldest to newest.  A failing ``git log`` (for
    example in a repository without commits) yields an empty list.
    """
    log_filter = log_filter or LogFilter()
    try:
        result = _run_git(build_log_args(log_filter), cwd=repo_path)
    except subprocess.CalledProcessError as exc:
        logger.warning("git log failed: %s", (exc.stderr or "").strip() or exc)
        return []
    return parse_log(result.stdout)


def file_changes_for(
    repo_path: str,
    commit_hash: str,
    base: str | None = _UNSET,
) -> list[tuple[FileStatus, str]]:
    """Return ``(status, path)`` pairs for files touched by *commit_hash*.

    Merge commits report no files, matching how their diffs are skipped.
    """
    if base is _UNSET:
        base = diff_base(repo_path, commit_hash)
    if base is None:
        return []
    result = _run_git(
        ["diff", "--name-status", "-M", base, commit_hash],
        cwd=repo_path,
        check=False,
    )
    if result.returncode != 0:
        logger.warning("Could not list files for %s: %s", commit_hash[:10], result.stderr.strip())
        return []
    return _parse_name_status(result.stdout)


def diff_for(
    repo_path: str,
    commit_hash: str,
    path: str,
    context_lines: int = 5,
    base: str | None = _UNSET,
) -> str | None:
    """Return the unified diff of *path* in *commit_hash*.

    ``None`` means the diff is unavailable: binary content, a merge commit,
    or a git failure.
    """
    if base is _UNSET:
        base = diff_base(repo_path, commit_hash)
    if base is None:
        return None
    result = _run_git(
        ["diff", f"-U{context_lines}", "-M", base, commit_hash, "--", path],
        cwd=repo_path,
        check=False,
    )
    if result.returncode != 0:
        logger.debug("Diff of %s@%s unavailable: %s", path, commit_hash[:10], result.stderr)
        return None
    return _clean_diff(result.stdout)


def file_snapshot(repo_path: str, rev: str, path: str) -> str | None:
    """Return the content of *path* at *rev* (``""`` rev means the index)."""
    result = _run_git(["show", f"{rev}:{path}"], cwd=repo_path, check=False)
    if result.returncode != 0:
        return None
    return result.stdout


def diff_stats(repo_path: str, commit_hash: str, base: str | None = _UNSET) -> DiffStats:
    """Run ``git diff --numstat`` and total files, insertions and deletions.

    Binary files report ``-`` for insertions/deletions; they count as a
    changed file but add no lines.
    """
    if base is _UNSET:
        base = diff_base(repo_path, commit_hash)
    if base is None:
        return DiffStats()
    result = _run_git(["diff", "--numstat", base, commit_hash], cwd=repo_path, check=False)
    if result.returncode != 0:
        return DiffStats()
    return _parse_numstat(result.stdout)


def _parse_numstat(output: str) -> DiffStats:
    files_changed = insertions = deletions = 0
    for line in output.strip().splitlines():
        parts = line.split("\t", maxsplit=2)
        if len(parts) < 3:
            continue
        add_str, del_str, _filename = parts
        files_changed += 1
        if add_str.isdigit():
            insertions += int(add_str)
        if del_str.isdigit():
            deletions += int(del_str)
    return DiffStats(files=files_changed, insertions=insertions, deletions=deletions)


def commit_file_changes(
    repo_path: str,
    commit_hash: str,
    context_lines: int = 5,
    base: str | None = _UNSET,
) -> list[FileChange]:
    """Classify every file touched by *commit_hash*.

    The diff base is resolved once and shared by every per-file git call.
    """
    if base is _UNSET:
        base = diff_base(repo_path, commit_hash)
    if base is None:
        return []
    changes: list[FileChange] = []
    for status, path in file_changes_for(repo_path, commit_hash, base):
        before = None
        if status is not FileStatus.added:
            before = file_snapshot(repo_path, base, path)
        after = None
        if status is not FileStatus.deleted:
            after = file_snapshot(repo_path, commit_hash, path)
        changes.append(
            classify_file(
                status,
                path,
                diff_for(repo_path, commit_hash, path, context_lines, base),
                before=before,
                after=after,
            )
        )
    return changes


def _worktree_changes(
    repo_path: str,
    diff_args: list[str],
    before_rev: str,
    after_rev: str | None,
    context_lines: int,
) -> list[FileChange]:
    result = _run_git(["diff", "--name-status", *diff_args], cwd=repo_path, check=False)
    if result.returncode != 0:
        return []

    changes: list[FileChange] = []
    for status, path in _parse_name_status(result.stdout):
        diff = _run_git(
            ["diff", f"-U{context_lines}", *diff_args, "--", path],
            cwd=repo_path,
            check=False,
        )
        before = None if status is FileStatus.added else file_snapshot(repo_path, before_rev, path)
        if status is FileStatus.deleted:
            after = None
        elif after_rev is None:
            after = _read_worktree_file(repo_path, path)
        else:
            after = file_snapshot(repo_path, after_rev, path)
        changes.append(
            classify_file(status, path, _clean_diff(diff.stdout), before=before, after=after)
        )
    return changes


def _read_worktree_file(repo_path: str, path: str) -> str | None:
    try:
        return (Path(repo_path) / path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


def working_tree_status(repo_path: str, context_lines: int = 5) -> WorkingTreeStatus:
    """Classify staged and unstaged changes in the working tree.

    Untracked files are reported as unstaged additions.
    """
    staged = _worktree_changes(repo_path, ["--cached"], "HEAD", "", context_lines)
    unstaged = _worktree_changes(repo_path, [], "", None, context_lines)

    untracked = _run_git(
        ["ls-files", "--others", "--exclude-standard"], cwd=repo_path, check=False
    )
    for path in untracked.stdout.splitlines():
        path = path.strip()
        if not path:
            continue
        content = _read_worktree_file(repo_path, path)
        diff = None
        if content is not None and "\x00" not in content:
            body = "".join(f"+{line}\n" for line in content.splitlines())
            diff = f"--- /dev/null\n+++ b/{path}\n@@ -0,0 +1 @@\n{body}" if body else None
        unstaged.append(classify_file(FileStatus.added, path, diff, after=content))

    return WorkingTreeStatus(staged=staged, unstaged=unstaged)


def branches(repo_path: str) -> BranchSet:
    """Return local branches, remote branches and the current branch."""
    local = _run_git(["branch", "--format=%(refname:short)"], cwd=repo_path, check=False)
    remote = _run_git(["branch", "-r", "--format=%(refname:short)"], cwd=repo_path, check=False)
    current = _run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=repo_path, check=False)

    local_names = [b.strip() for b in local.stdout.splitlines() if b.strip()]
    remote_names: list[str] = []
    for name in remote.stdout.splitlines():
        name = name.strip()
        if not name or name.endswith("/HEAD") or name in {"origin", "HEAD"}:
            continue
        name = name.removeprefix("origin/")
        if name not in remote_names:
            remote_names.append(name)

    current_name = current.stdout.strip() if current.returncode == 0 else ""
    return BranchSet(
        local=local_names,
        remote=remote_names,
        current=current_name or "unknown",
    )


def unmerged_commits(repo_path: str) -> list[UnmergedBranch]:
    """Return each local branch holding commits the current branch lacks.

    Branches with nothing to merge are left out.
    """
    branch_set = branches(repo_path)
    current = branch_set.current if branch_set.current != "unknown" else "HEAD"
    unmerged: list[UnmergedBranch] = []
    for name in branch_set.local:
        if name == branch_set.current:
            continue
        result = _run_git(
            ["log", f"--format={RECORD_SEP}{LOG_FORMAT}", f"{current}..{name}"],
            cwd=repo_path,
            check=False,
        )
        if result.returncode != 0:
            logger.warning("Could not compare %s with %s: %s", name, current, result.stderr.strip())
            continue
        commits = parse_log(result.stdout)
        if commits:
            unmerged.append(UnmergedBranch(branch=name, commits=commits))
    return unmerged


def dangling_commits(repo_path: str, limit: int = DANGLING_LIMIT) -> list[CommitRecord]:
    """Return commits no branch, tag or HEAD can reach (reflogs ignored)."""
    fsck = _run_git(["fsck", "--unreachable", "--no-reflogs"], cwd=repo_path, check=False)
    if fsck.returncode != 0:
        logger.debug("git fsck exited %d: %s", fsck.returncode, fsck.stderr.strip())
    hashes = [
        parts[2]
        for parts in (line.split() for line in fsck.stdout.splitlines())
        if len(parts) == 3 and parts[:2] == ["unreachable", "commit"]
    ][:limit]
    if not hashes:
        return []
    result = _run_git(
        ["log", "--no-walk", f"--format={RECORD_SEP}{LOG_FORMAT}", *hashes],
        cwd=repo_path,
        check=False,
    )
    if result.returncode != 0:
        logger.warning("Could not read dangling commits: %s", result.stderr.strip())
        return []
    return parse_log(result.stdout)
