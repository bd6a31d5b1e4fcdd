"""Parse raw ``git log`` output into :class:`CommitRecord` values.

The log is requested with sentinel separators (see :data:`LOG_FORMAT`) so
that multi-line commit bodies survive intact; splitting on newlines would
cut a body at its first line break.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime

from changelens.models import Author, CommitRecord, ConventionalType

logger = logging.getLogger(__name__)

# Separators unlikely to appear in commit messages.
FIELD_SEP = "---CHANGELENS_SEP---"
RECORD_SEP = "---CHANGELENS_RECORD---"

# hash, short hash, author name, author email, author date, commit date, raw message
LOG_FORMAT = FIELD_SEP.join(["%H", "%h", "%an", "%ae", "%aI", "%cI", "%B"])
_FIELD_COUNT = 7

# Prefixes accepted in front of ``(scope)!:`` and the type each maps to.
_TYPE_ALIASES: dict[str, ConventionalType] = {
    **{t.value: t for t in ConventionalType if t is not ConventionalType.other},
    "revert": ConventionalType.chore,
    "deps": ConventionalType.build,
    "ui": ConventionalType.feat,
    "api": ConventionalType.feat,
    "db": ConventionalType.chore,
    "wip": ConventionalType.chore,
    "breaking": ConventionalType.other,
}

_CONVENTIONAL_RE = re.compile(
    r"^(?P<type>[A-Za-z]+)(?:\((?P<scope>[^)]*)\))?(?P<bang>!)?:"
)
_BREAKING_RE = re.compile(r"BREAKING[ -]CHANGE", re.IGNORECASE)


def _words(*stems: str) -> re.Pattern[str]:
    """Match any of *stems* at the start of a word."""
    return re.compile(r"\b(?:" + "|".join(stems) + ")", re.IGNORECASE)


# Ordered (predicate, type) table used when the subject has no
# conventional prefix.  The first matching row wins.
TYPE_INFERENCE_RULES: tuple[tuple[re.Pattern[str], ConventionalType], ...] = (
    (_words("add", "new", "implement"), ConventionalType.feat),
    (_words("fix", "bug", "resolve"), ConventionalType.fix),
    (_words("update", "upgrade", "improve"), ConventionalType.refactor),
    (_words("remove", "delete", "clean"), ConventionalType.chore),
    (_words("test", "spec"), ConventionalType.test),
    (_words("doc", "readme"), ConventionalType.docs),
    (_words("style", "format", "lint"), ConventionalType.style),
    (_words("performance", "perf", "optimi[sz]e"), ConventionalType.perf),
    (_words("security", "vulnerab"), ConventionalType.security),
    (_words("config", "setting"), ConventionalType.config),
    (_words("build", "deploy", "release"), ConventionalType.build),
    (re.compile(r"\b(?:ci|workflow|actions?)\b", re.IGNORECASE), ConventionalType.ci),
)


# ---------------------------------------------------------------------------
# Subject-line helpers
# ---------------------------------------------------------------------------


def infer_type(subject: str) -> ConventionalType:
    """Guess a type from free-form subject text via :data:`TYPE_INFERENCE_RULES`."""
    if not subject:
        return ConventionalType.other
    for pattern, commit_type in TYPE_INFERENCE_RULES:
        if pattern.search(subject):
            return commit_type
    return ConventionalType.other


def extract_type(subject: str) -> ConventionalType:
    """Return the conventional type of *subject*, inferring it if unprefixed."""
    match = _CONVENTIONAL_RE.match(subject or "")
    if match:
        alias = _TYPE_ALIASES.get(match.group("type").lower())
        if alias is not None:
            return alias
    return infer_type(subject)


def extract_scope(subject: str) -> str | None:
    """Return the ``(scope)`` of a conventional subject, or ``None``."""
    match = _CONVENTIONAL_RE.match(subject or "")
    if not match or not match.group("scope"):
        return None
    scope = match.group("scope").strip()
    return scope or None


def is_breaking(subject: str, body: str = "") -> bool:
    """True for ``type!:`` subjects or a ``BREAKING CHANGE`` token anywhere."""
    if "!:" in (subject or ""):
        return True
    return bool(_BREAKING_RE.search(subject or "") or _BREAKING_RE.search(body or ""))


# ---------------------------------------------------------------------------
# Subject validation
# ---------------------------------------------------------------------------

VALID_TYPES = (
    "feat", "fix", "docs", "style", "refactor", "perf",
    "test", "build", "ci", "chore", "revert",
)
MAX_SUBJECT_LENGTH = 72

_STRICT_RE = re.compile(
    r"^(?:" + "|".join(VALID_TYPES) + r")(?:\([^)]+\))?!?: \S"
)


def validate_subject(subject: str) -> list[str]:
    """Return the problems found in a commit subject line (empty when valid)."""
    issues: list[str] = []
    if not _STRICT_RE.match(subject or ""):
        issues.append("Does not follow conventional commit format (type(scope): description)")
    if len(subject or "") > MAX_SUBJECT_LENGTH:
        issues.append(f"Subject line too long (max {MAX_SUBJECT_LENGTH} characters)")
    return issues


def parse_git_date(date_str: str) -> datetime:
    """Parse an ISO-8601 date string emitted by ``git log --format=%aI``."""
    try:
        return datetime.fromisoformat(date_str)
    except ValueError:
        cleaned = re.sub(r"([+-]\d{2}):(\d{2})$", r"\1\2", date_str)
        try:
            return datetime.strptime(cleaned, "%Y-%m-%dT%H:%M:%S%z")
        except ValueError:
            logger.warning("Could not parse date %r; using UTC now", date_str)
            return datetime.now(tz=UTC)


def build_record(
    commit_hash: str,
    short_hash: str,
    author_name: str,
    author_email: str,
    author_date: datetime,
    commit_date: datetime,
    message: str,
) -> CommitRecord:
    """Create a :class:`CommitRecord`, deriving type, scope and breaking flag."""
    message = message.strip()
    subject, _, body = message.partition("\n")
    subject = subject.strip()
    body = body.strip()

    return CommitRecord(
        hash=commit_hash,
        short_hash=short_hash or commit_hash[:7],
        author=Author(name=author_name, email=author_email),
        author_date=author_date,
        commit_date=commit_date,
        subject=subject,
        body=body,
        conventional_type=extract_type(subject),
        scope=extract_scope(subject),
        breaking=is_breaking(subject, body),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_log(raw: str, *, reverse: bool = False) -> list[CommitRecord]:
    """Parse a block of ``git log --format=RECORD_SEP + LOG_FORMAT`` output.

    Records keep the order they appear in *raw*; pass ``reverse=True``
    to reverse it.  Records with too few fields are logged and skipped.
    """
    if not raw or not raw.strip():
        return []

    records: list[CommitRecord] = []
    for chunk in raw.split(RECORD_SEP):
        chunk = chunk.strip("\n\x00")
        if not chunk.strip():
            continue

        parts = chunk.split(FIELD_SEP, maxsplit=_FIELD_COUNT - 1)
        if len(parts) < _FIELD_COUNT:
            logger.warning("Skipping malformed log record: %r", chunk[:120])
            continue

        commit_hash, short_hash, name, email, author_date, commit_date, message = parts
        commit_hash = commit_hash.strip()
        if not commit_hash:
            logger.warning("Skipping log record without a hash: %r", chunk[:120])
            continue

        records.append(
            build_record(
                commit_hash,
                short_hash.strip(),
                name.strip(),
                email.strip(),
                parse_git_date(author_date.strip()),
                parse_git_date(commit_date.strip()),
                message,
            )
        )

    if reverse:
        records.reverse()
    return records
