"""Classify a single file change: category, language, complexity and patterns.

Everything here is deterministic and side-effect free.  The indicator
tables at the top of the module are plain data; extending detection means
adding rows, not branches.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from changelens.models import (
    BusinessRelevance,
    DeploymentImpact,
    FileCategory,
    FileChange,
    FileStatus,
    FunctionalImpact,
)
from changelens.policy import DEFAULT_POLICY, ScoringPolicy

logger = logging.getLogger(__name__)

# Before/after snapshots are cut to this many characters.
SNAPSHOT_CHARS = 1000

_STATUS_LETTERS: dict[str, FileStatus] = {
    "A": FileStatus.added,
    "M": FileStatus.modified,
    "D": FileStatus.deleted,
    "R": FileStatus.renamed,
    "C": FileStatus.copied,
    "U": FileStatus.unmerged,
    "T": FileStatus.type_changed,
}

# ---------------------------------------------------------------------------
# Path tables
# ---------------------------------------------------------------------------

# Checked in order against the lower-cased path; the first hit wins.
CATEGORY_RULES: tuple[tuple[re.Pattern[str], FileCategory], ...] = (
    (re.compile(r"(^|/)(tests?|__tests__|specs?)/"), FileCategory.test),
    (re.compile(r"\.(test|spec)\.[a-z]+$"), FileCategory.test),
    (re.compile(r"(^|/)test_[^/]+\.py$|_test\.(py|go)$"), FileCategory.test),
    (re.compile(r"\.(sql|prisma)$|migration"), FileCategory.database),
    (
        re.compile(
            r"\.(ts|tsx|js|jsx|mjs|cjs|py|java|c|cc|cpp|h|hpp|go|rs|php|rb|"
            r"swift|kt|cs|scala|vue|svelte|html)$"
        ),
        FileCategory.source,
    ),
    (re.compile(r"\.(css|scss|sass|less|styl)$"), FileCategory.style),
    (
        re.compile(
            r"\.(json|ya?ml|toml|ini|xml|cfg|conf|lock)$|(^|/)\.env|(^|/)dockerfile$|"
            r"docker-compose"
        ),
        FileCategory.config,
    ),
    (re.compile(r"\.(md|txt|rst|adoc)$"), FileCategory.docs),
    (re.compile(r"\.(png|jpe?g|gif|svg|webp|ico|woff2?|ttf|eot)$"), FileCategory.asset),
    (re.compile(r"\.(sh|bash|zsh|ps1|bat)$"), FileCategory.script),
)

LANGUAGES: dict[str, str] = {
    "ts": "TypeScript",
    "tsx": "TypeScript React",
    "js": "JavaScript",
    "jsx": "JavaScript React",
    "mjs": "JavaScript",
    "cjs": "JavaScript",
    "py": "Python",
    "java": "Java",
    "c": "C",
    "h": "C",
    "cpp": "C++",
    "cc": "C++",
    "hpp": "C++",
    "go": "Go",
    "rs": "Rust",
    "php": "PHP",
    "rb": "Ruby",
    "swift": "Swift",
    "kt": "Kotlin",
    "cs": "C#",
    "scala": "Scala",
    "vue": "Vue",
    "svelte": "Svelte",
    "css": "CSS",
    "scss": "SCSS",
    "sass": "Sass",
    "less": "Less",
    "html": "HTML",
    "json": "JSON",
    "md": "Markdown",
    "rst": "reStructuredText",
    "sql": "SQL",
    "prisma": "Prisma",
    "yml": "YAML",
    "yaml": "YAML",
    "toml": "TOML",
    "xml": "XML",
    "sh": "Shell",
    "bash": "Bash",
    "zsh": "Shell",
    "ps1": "PowerShell",
}

# Path segments (matched against "/" + path) and the change scope they imply.
SCOPE_MARKERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("/lib/", "/utils/", "/shared/"), "wide"),
    (("/components/", "/hooks/"), "moderate"),
)

USER_FACING_MARKERS: tuple[str, ...] = (
    "/pages/",
    "/app/",
    "/src/",
    "/components/",
    "/views/",
    "/templates/",
    "/public/",
    ".css",
    ".scss",
    ".html",
)

DEPENDENCY_MANIFESTS: frozenset[str] = frozenset(
    {
        "package.json",
        "requirements.txt",
        "pyproject.toml",
        "setup.py",
        "setup.cfg",
        "go.mod",
        "cargo.toml",
        "gemfile",
        "composer.json",
    }
)

HIGH_PRIORITY_PATHS: tuple[str, ...] = (
    "/dashboard",
    "/billing",
    "/auth",
    "/onboarding",
    "/checkout",
    "/payment",
    "/subscription",
    "/profile",
)
MEDIUM_PRIORITY_PATHS: tuple[str, ...] = (
    "/app/",
    "/components/ui",
    "/components/forms",
    "/api/auth",
    "/api/users",
)

# ---------------------------------------------------------------------------
# Content tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FrameworkRule:
    """A framework recognised from the path, with content indicators for tags."""

    name: str
    path: re.Pattern[str]
    tags: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = ()


FRAMEWORK_RULES: tuple[FrameworkRule, ...] = (
    FrameworkRule(
        name="Database",
        path=re.compile(r"(^|/)(database|sql|migrations?|db)/|\.(sql|prisma)$"),
        tags=(
            (
                "database_schema",
                (re.compile(r"\b(CREATE|ALTER|DROP)\s+TABLE\b", re.IGNORECASE),),
            ),
            (
                "security_policy",
                (re.compile(r"\b(CREATE|ALTER)\s+POLICY\b", re.IGNORECASE),),
            ),
        ),
    ),
    FrameworkRule(
        name="React",
        path=re.compile(r"\.(tsx|jsx)$"),
        tags=(
            ("react_hooks", (re.compile(r"\buse(State|Effect)\b"),)),
            ("performance_optimization", (re.compile(r"\buse(Callback|Memo)\b"),)),
        ),
    ),
    FrameworkRule(
        name="API",
        path=re.compile(r"(^|/)api/|(^|/)routes?(/|\.)|(^|/)route\."),
    ),
)

HTTP_METHODS: tuple[str, ...] = ("GET", "POST", "PUT", "DELETE", "PATCH")

# Templates filled with the method name; ``{m}`` is lower-case, ``{M}`` upper.
API_ENDPOINT_TEMPLATES: tuple[str, ...] = (
    r"export\s+(?:async\s+)?function\s+{M}\b",
    r"\b(?:app|router)\.{m}\(",
    r"@(?:app|router|api|bp|blueprint)\.{m}\(",
)

CODE_ELEMENT_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "function_definition": (
        re.compile(r"(?:export\s+)?(?:async\s+)?function\s+(\w+)"),
        re.compile(r"^[+\- ]\s*(?:async\s+)?def\s+(\w+)", re.MULTILINE),
    ),
    "component_definition": (
        re.compile(r"(?:export\s+)?(?:const|function)\s+(\w+(?:Component|Page|Layout))\b"),
    ),
    "hook_definition": (re.compile(r"(?:export\s+)?(?:const|function)\s+(use[A-Z]\w*)"),),
    "type_definition": (
        re.compile(r"(?:export\s+)?(?:type|interface)\s+(\w+)"),
        re.compile(r"^[+\- ]\s*class\s+(\w+)", re.MULTILINE),
    ),
    "constant_definition": (re.compile(r"(?:export\s+)?const\s+(\w+)"),),
}

ADVANCED_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "error_handling": (
        re.compile(r"\btry\s*[{:]"),
        re.compile(r"\bcatch\s*\("),
        re.compile(r"\bexcept\b"),
        re.compile(r"\b(throw|raise)\s+"),
        re.compile(r"Error\("),
    ),
    "async_operations": (
        re.compile(r"\basync\s+"),
        re.compile(r"\bawait\s+"),
        re.compile(r"Promise\."),
        re.compile(r"\.then\("),
    ),
    "data_validation": (re.compile(r"validat|schema", re.IGNORECASE),),
    "authentication": (
        re.compile(r"\bauth|\blog(in|out)\b|\btoken|\bjwt\b|\bsession", re.IGNORECASE),
    ),
    "authorization": (
        re.compile(r"\bpermission|\brole|\bpolic(y|ies)\b|\bguard", re.IGNORECASE),
    ),
    "caching": (re.compile(r"cache|\bmemo", re.IGNORECASE),),
    "testing": (
        re.compile(r"\bdescribe\(|\bit\(|\bmock|\bassert\b|\bpytest\b"),
    ),
    "styling": (re.compile(r"className|styled\.|\bcss\b"),),
    "state_management": (
        re.compile(r"\buse(State|Reducer)\b|\bstore\b|\bredux\b", re.IGNORECASE),
    ),
    "routing": (re.compile(r"\brouter\b|\bnavigate\(|\bredirect\(|\broutes?\b", re.IGNORECASE),),
    "data_fetching": (
        re.compile(r"\bfetch\(|\baxios\b|\buse(Query|Mutation)\b|\brequests\.(get|post)"),
    ),
}

BREAKING_INDICATORS: tuple[re.Pattern[str], ...] = (
    re.compile(r"BREAKING[\s-]*CHANGE", re.IGNORECASE),
    re.compile(r"\bDROP\s+TABLE\b", re.IGNORECASE),
    re.compile(r"\bALTER\s+TABLE\b.*\bDROP\b", re.IGNORECASE),
    re.compile(r"\bremoveField\b|\bdeleteColumn\b|\bdrop_column\b|\bRemoveField\("),
)

_EXPORT_RE = re.compile(
    r"^(?P<sign>[+-])\s*export\s+(?:default\s+)?(?:async\s+)?"
    r"(?:function|const|let|class|interface|type|enum)\s+(?P<name>\w+)",
    re.MULTILINE,
)

API_INDICATORS: tuple[re.Pattern[str], ...] = (
    re.compile(r"export\s+async\s+function"),
    re.compile(r"\bapp\.(get|post|put|delete|patch)\("),
    re.compile(r"@(?:app|router)\.(get|post|put|delete|patch)\("),
)

DATA_PATH_MARKERS: tuple[str, ...] = ("database/", "migration", "schema")
DATA_INDICATORS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(CREATE|ALTER)\s+TABLE\b", re.IGNORECASE),
)

SECURITY_INDICATORS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"auth|security|password|passwd|secret|\btoken|\bjwt\b|encrypt|decrypt|"
        r"sanitiz|permission|\bcors\b|csrf|\bpolicy\b",
        re.IGNORECASE,
    ),
)

PERFORMANCE_INDICATORS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\blazy|\bmemo|optimi[sz]|cache|\bindex\b|\bbatch|concurren|parallel|"
        r"debounce|throttle",
        re.IGNORECASE,
    ),
)

REVENUE_INDICATORS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"payment|billing|subscription|checkout|revenue|pricing|\binvoice",
        re.IGNORECASE,
    ),
)


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------


def map_status(status: str | FileStatus) -> FileStatus:
    """Map a git status letter (``A``, ``M``, ``R100`` ...) to :class:`FileStatus`."""
    if isinstance(status, FileStatus):
        return status
    if not status:
        return FileStatus.unknown
    if status in FileStatus.__members__:
        return FileStatus(status)
    return _STATUS_LETTERS.get(status[0].upper(), FileStatus.unknown)


def categorize_file(path: str) -> FileCategory:
    if not path:
        return FileCategory.other
    lowered = path.lower()
    for pattern, category in CATEGORY_RULES:
        if pattern.search(lowered):
            return category
    return FileCategory.other


def detect_language(path: str) -> str:
    suffix = PurePosixPath(path or "").suffix.lower().lstrip(".")
    return LANGUAGES.get(suffix, "Unknown")


def is_unavailable(diff: str | None) -> bool:
    """True when *diff* is absent or carries no textual hunks (binary)."""
    if not diff or not diff.strip():
        return True
    if "Binary files " in diff and "\n@@" not in diff and not diff.startswith("@@"):
        return True
    return False


def _changed_lines(diff: str) -> list[str]:
    return [
        line
        for line in diff.splitlines()
        if (line.startswith("+") and not line.startswith("+++"))
        or (line.startswith("-") and not line.startswith("---"))
    ]


def _any(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def _segment_path(path: str) -> str:
    """Prefix a slash so root-level directories match ``/name/`` markers."""
    return "/" + path.lstrip("/")


def change_complexity(diff: str | None, policy: ScoringPolicy = DEFAULT_POLICY) -> int:
    """Bucket the number of changed lines into a 1..5 score (0 when unavailable)."""
    if is_unavailable(diff):
        return 0
    total = len(_changed_lines(diff or ""))
    for score, bound in enumerate(policy.file_complexity_bounds, start=1):
        if total < bound:
            return score
    return len(policy.file_complexity_bounds) + 1


def determine_change_scope(path: str) -> str:
    segmented = _segment_path(path)
    for markers, scope in SCOPE_MARKERS:
        if any(m in segmented for m in markers):
            return scope
    return "local"


def key_diff_lines(diff: str | None, limit: int = 5) -> list[str]:
    """Return up to *limit* meaningful added/removed lines, sign stripped."""
    if is_unavailable(diff):
        return []
    picked: list[str] = []
    for line in _changed_lines(diff or ""):
        if len(line.strip()) <= 10:
            continue
        picked.append(line[1:].strip())
        if len(picked) >= limit:
            break
    return picked


# ---------------------------------------------------------------------------
# Semantic analysis
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SemanticFindings:
    tags: frozenset[str]
    frameworks: frozenset[str]
    code_elements: frozenset[str]
    api_changes: tuple[str, ...]


_EMPTY_FINDINGS = SemanticFindings(frozenset(), frozenset(), frozenset(), ())


def analyze_semantics(diff: str | None, path: str) -> SemanticFindings:
    """Evaluate the framework, API, code-element and pattern tables."""
    if is_unavailable(diff):
        return _EMPTY_FINDINGS
    text = diff or ""
    lowered_path = path.lower()

    tags: set[str] = set()
    frameworks: set[str] = set()
    elements: set[str] = set()
    api_changes: list[str] = []

    for rule in FRAMEWORK_RULES:
        if not rule.path.search(lowered_path):
            continue
        frameworks.add(rule.name)
        for tag, indicators in rule.tags:
            if _any(indicators, text):
                tags.add(tag)

    if "API" in frameworks:
        for method in HTTP_METHODS:
            for template in API_ENDPOINT_TEMPLATES:
                pattern = template.replace("{M}", method).replace("{m}", method.lower())
                if re.search(pattern, text):
                    api_changes.append(f"{method} endpoint")
                    tags.add("api_endpoint")
                    break

    for tag, patterns in CODE_ELEMENT_PATTERNS.items():
        for pattern in patterns:
            names = pattern.findall(text)
            if names:
                tags.add(tag)
                elements.update(names)

    for tag, patterns in ADVANCED_PATTERNS.items():
        if _any(patterns, text):
            tags.add(tag)

    return SemanticFindings(
        tags=frozenset(tags),
        frameworks=frozenset(frameworks),
        code_elements=frozenset(elements),
        api_changes=tuple(api_changes),
    )


def _removes_exports(diff: str) -> bool:
    """True when an exported symbol is removed and not re-added."""
    removed: set[str] = set()
    added: set[str] = set()
    for match in _EXPORT_RE.finditer(diff):
        (removed if match.group("sign") == "-" else added).add(match.group("name"))
    return bool(removed - added)


def detect_breaking(diff: str | None) -> bool:
    """Match breaking indicators against added and removed lines only."""
    if is_unavailable(diff):
        return False
    changed = "\n".join(_changed_lines(diff or ""))
    return _any(BREAKING_INDICATORS, changed) or _removes_exports(changed)


def analyze_functional_impact(
    diff: str | None,
    path: str,
    category: FileCategory | None = None,
) -> FunctionalImpact:
    """Derive the functional impact of one file change."""
    scope = determine_change_scope(path)
    if is_unavailable(diff):
        return FunctionalImpact(scope=scope)

    text = diff or ""
    changed = "\n".join(_changed_lines(text))
    segmented = _segment_path(path)
    lowered = path.lower()
    category = category or categorize_file(path)

    breaking = detect_breaking(text)
    user_facing = any(marker in segmented for marker in USER_FACING_MARKERS)
    api_changes = (
        "/api/" in segmented
        or "route." in lowered
        or _any(API_INDICATORS, text)
    )
    data_changes = any(m in lowered for m in DATA_PATH_MARKERS) or _any(DATA_INDICATORS, text)
    security_related = _any(SECURITY_INDICATORS, changed)
    performance_impact = _any(PERFORMANCE_INDICATORS, changed)
    manifest = PurePosixPath(lowered).name in DEPENDENCY_MANIFESTS or ".env" in lowered
    migration_required = breaking or data_changes or manifest

    if breaking or data_changes:
        deployment = DeploymentImpact.high
    elif (
        api_changes
        or security_related
        or category is FileCategory.config
        or "config" in lowered
    ):
        deployment = DeploymentImpact.medium
    else:
        deployment = DeploymentImpact.low

    return FunctionalImpact(
        scope=scope,
        breaking=breaking,
        user_facing=user_facing,
        api_changes=api_changes,
        data_changes=data_changes,
        security_related=security_related,
        performance_impact=performance_impact,
        migration_required=migration_required,
        deployment_impact=deployment,
    )


def assess_business_relevance(path: str, diff: str | None) -> BusinessRelevance:
    segmented = _segment_path(path).lower()
    if any(p in segmented for p in HIGH_PRIORITY_PATHS):
        priority, customer_facing = "high", True
    elif any(p in segmented for p in MEDIUM_PRIORITY_PATHS):
        priority, customer_facing = "medium", True
    else:
        priority, customer_facing = "low", False

    revenue = not is_unavailable(diff) and _any(REVENUE_INDICATORS, diff or "")
    return BusinessRelevance(
        priority=priority,
        customer_facing=customer_facing,
        revenue_impact=revenue,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def classify_file(
    status: str | FileStatus,
    path: str,
    diff_text: str | None,
    *,
    before: str | None = None,
    after: str | None = None,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> FileChange:
    """Classify one ``(status, path, diff)`` tuple into a :class:`FileChange`.

    Binary or missing diffs yield empty tags and a zero complexity score.
    A failure inside any detector degrades to that same empty structure so
    sibling files are still classified.
    """
    file_status = map_status(status)
    category = categorize_file(path)
    language = detect_language(path)
    snapshot_before = (before or "")[:SNAPSHOT_CHARS]
    snapshot_after = (after or "")[:SNAPSHOT_CHARS]

    try:
        findings = analyze_semantics(diff_text, path)
        impact = analyze_functional_impact(diff_text, path, category)
        relevance = assess_business_relevance(path, diff_text)
        complexity = change_complexity(diff_text, policy)
    except (re.error, ValueError, TypeError) as exc:
        logger.warning("Classification of %s degraded: %s", path, exc)
        findings = _EMPTY_FINDINGS
        impact = FunctionalImpact(scope=determine_change_scope(path))
        relevance = BusinessRelevance()
        complexity = 0

    return FileChange(
        path=path,
        status=file_status,
        category=category,
        language=language,
        diff_text=None if is_unavailable(diff_text) else diff_text,
        before_content=snapshot_before,
        after_content=snapshot_after,
        complexity_score=complexity,
        semantic_tags=findings.tags,
        frameworks=findings.frameworks,
        code_elements=findings.code_elements,
        api_changes=findings.api_changes,
        functional_impact=impact,
        business_relevance=relevance,
    )
