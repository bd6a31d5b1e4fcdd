"""Pydantic v2 models for changelens commit analysis and release insights."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class ConventionalType(StrEnum):
    """Closed set of conventional-commit types a commit can be filed under."""

    feat = "feat"
    fix = "fix"
    docs = "docs"
    style = "style"
    refactor = "refactor"
    perf = "perf"
    test = "test"
    chore = "chore"
    ci = "ci"
    build = "build"
    security = "security"
    config = "config"
    other = "other"


class FileStatus(StrEnum):
    added = "added"
    modified = "modified"
    deleted = "deleted"
    renamed = "renamed"
    copied = "copied"
    unmerged = "unmerged"
    type_changed = "type_changed"
    unknown = "unknown"


class FileCategory(StrEnum):
    source = "source"
    style = "style"
    config = "config"
    docs = "docs"
    test = "test"
    database = "database"
    asset = "asset"
    script = "script"
    other = "other"


class DeploymentImpact(StrEnum):
    low = "low"
    medium = "medium"
    high = "high"


class ComplexityLevel(StrEnum):
    minimal = "minimal"
    low = "low"
    medium = "medium"
    high = "high"
    very_high = "very high"


class RiskLevel(StrEnum):
    low = "low"
    low_medium = "low-medium"
    medium = "medium"
    high = "high"
    critical = "critical"


class Impact(StrEnum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class ReleaseScope(StrEnum):
    major = "major"
    minor = "minor"
    patch = "patch"


class SummarySource(StrEnum):
    """Where an :class:`AISummary` came from."""

    service = "service"
    rules = "rules"


# Ordering used to compare risk levels (index == severity).
RISK_ORDER: tuple[RiskLevel, ...] = (
    RiskLevel.low,
    RiskLevel.low_medium,
    RiskLevel.medium,
    RiskLevel.high,
    RiskLevel.critical,
)


def _sorted(values: frozenset[str]) -> list[str]:
    return sorted(values)


# ---------------------------------------------------------------------------
# Commit records
# ---------------------------------------------------------------------------


class Author(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str = ""


class CommitRecord(BaseModel):
    """One commit parsed from ``git log`` output."""

    model_config = ConfigDict(frozen=True)

    hash: str
    short_hash: str
    author: Author
    author_date: datetime
    commit_date: datetime
    subject: str
    body: str = ""
    conventional_type: ConventionalType = ConventionalType.other
    scope: str | None = None
    breaking: bool = False

    @property
    def message(self) -> str:
        """Subject and body joined the way git stores them."""
        if self.body:
            return f"{self.subject}\n\n{self.body}"
        return self.subject


# ---------------------------------------------------------------------------
# File-level classification
# ---------------------------------------------------------------------------


class FunctionalImpact(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope: str = "local"
    breaking: bool = False
    user_facing: bool = False
    api_changes: bool = False
    data_changes: bool = False
    security_related: bool = False
    performance_impact: bool = False
    migration_required: bool = False
    deployment_impact: DeploymentImpact = DeploymentImpact.low


class BusinessRelevance(BaseModel):
    model_config = ConfigDict(frozen=True)

    priority: str = "low"
    customer_facing: bool = False
    revenue_impact: bool = False


class FileChange(BaseModel):
    """Classification of one file touched by a commit or the working tree."""

    model_config = ConfigDict(frozen=True)

    path: str
    status: FileStatus
    category: FileCategory = FileCategory.other
    language: str = "Unknown"
    diff_text: str | None = None
    before_content: str = ""
    after_content: str = ""
    complexity_score: int = Field(default=0, ge=0, le=5)
    semantic_tags: frozenset[str] = frozenset()
    frameworks: frozenset[str] = frozenset()
    code_elements: frozenset[str] = frozenset()
    api_changes: tuple[str, ...] = ()
    functional_impact: FunctionalImpact = Field(default_factory=FunctionalImpact)
    business_relevance: BusinessRelevance = Field(default_factory=BusinessRelevance)

    @field_serializer("semantic_tags", "frameworks", "code_elements")
    def _serialize_sets(self, value: frozenset[str]) -> list[str]:
        return _sorted(value)

    @property
    def changed_lines(self) -> tuple[int, int]:
        """Return ``(added, removed)`` line counts from :attr:`diff_text`."""
        if not self.diff_text:
            return 0, 0
        added = removed = 0
        for line in self.diff_text.splitlines():
            if line.startswith("+") and not line.startswith("+++"):
                added += 1
            elif line.startswith("-") and not line.startswith("---"):
                removed += 1
        return added, removed


class DiffStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: int = 0
    insertions: int = 0
    deletions: int = 0

    @property
    def lines_changed(self) -> int:
        return self.insertions + self.deletions


# ---------------------------------------------------------------------------
# Commit-level analysis
# ---------------------------------------------------------------------------


class Complexity(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    level: ComplexityLevel
    files_count: int = 0
    lines_changed: int = 0
    categories_count: int = 0


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    level: RiskLevel
    factors: list[str] = Field(default_factory=list)


class SemanticSummary(BaseModel):
    """Commit-level rollup of the per-file semantic findings."""

    model_config = ConfigDict(frozen=True)

    has_api_changes: bool = False
    has_db_changes: bool = False
    has_ui_changes: bool = False
    has_config_changes: bool = False
    patterns: frozenset[str] = frozenset()
    frameworks: frozenset[str] = frozenset()
    code_elements: frozenset[str] = frozenset()
    risk_level: str = "low"

    @field_serializer("patterns", "frameworks", "code_elements")
    def _serialize_sets(self, value: frozenset[str]) -> list[str]:
        return _sorted(value)


class AISummary(BaseModel):
    """Summary of one commit, from Claude or from the rule-based fallback.

    Every field is required so that both sources produce the same shape.
    """

    model_config = ConfigDict(frozen=True)

    summary: str
    technical_summary: str
    category: str
    impact: Impact
    scope: ReleaseScope
    user_facing: bool
    breaking: bool
    business_impact: str
    technical_impact: str
    highlights: list[str]
    migration_notes: str | None
    tags: list[str]
    related_areas: list[str]
    risk_level: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: SummarySource = SummarySource.service
    model: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: object) -> float:
        """Clamp out-of-range confidence values into ``[0, 1]``."""
        try:
            value = float(v)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.5
        return min(max(value, 0.0), 1.0)


class CommitAnalysis(BaseModel):
    """A commit together with its file classifications and derived scores."""

    model_config = ConfigDict(frozen=True)

    commit: CommitRecord
    files: list[FileChange] = Field(default_factory=list)
    diff_stats: DiffStats = Field(default_factory=DiffStats)
    semantic: SemanticSummary = Field(default_factory=SemanticSummary)
    complexity: Complexity
    risk: RiskAssessment
    ai_summary: AISummary | None = None

    def with_summary(self, summary: AISummary) -> CommitAnalysis:
        """Return a copy of this analysis carrying *summary*."""
        return self.model_copy(update={"ai_summary": summary})

    @property
    def breaking(self) -> bool:
        if self.commit.breaking:
            return True
        return self.ai_summary is not None and self.ai_summary.breaking


# ---------------------------------------------------------------------------
# Release-level results
# ---------------------------------------------------------------------------


class ReleaseInsights(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    total_commits: int = 0
    commit_type_counts: dict[str, int] = Field(default_factory=dict)
    risk_level: RiskLevel = RiskLevel.low
    affected_areas: frozenset[str] = frozenset()
    breaking: bool = False
    complexity: str = "low"
    business_impact: str = "minor"
    deployment_requirements: list[str] = Field(default_factory=list)
    headline: str = ""
    key_highlights: list[str] = Field(default_factory=list)

    @field_serializer("affected_areas")
    def _serialize_areas(self, value: frozenset[str]) -> list[str]:
        return _sorted(value)


class RunMetrics(BaseModel):
    """Snapshot of the counters accumulated during one analysis run."""

    model_config = ConfigDict(frozen=True)

    commits_processed: int = 0
    api_calls: int = 0
    errors: int = 0
    total_tokens: int = 0
    batches_processed: int = 0
    total_cost: float = 0.0


class AnalysisResult(BaseModel):
    """Everything one invocation hands to the rendering layer."""

    model_config = ConfigDict(frozen=True)

    repo_path: str
    from_ref: str | None = None
    to_ref: str | None = None
    version: str | None = None
    commits: list[CommitAnalysis] = Field(default_factory=list)
    insights: ReleaseInsights
    metrics: RunMetrics = Field(default_factory=RunMetrics)
    analyzed_at: datetime = Field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# Git collaborator inputs/outputs
# ---------------------------------------------------------------------------


class LogFilter(BaseModel):
    """Options accepted by :func:`changelens.analyzer.list_commits`."""

    model_config = ConfigDict(frozen=True)

    since: str | None = None
    until: str | None = None
    author: str | None = None
    grep: str | None = None
    from_ref: str | None = None
    to_ref: str | None = None
    exclude_merges: bool = True
    limit: int = Field(default=100, ge=1)
    oldest_first: bool = True

    @field_validator("limit")
    @classmethod
    def cap_limit(cls, v: int) -> int:
        """git log is capped at 1000 commits per run."""
        return min(v, 1000)


class WorkingTreeStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    staged: list[FileChange] = Field(default_factory=list)
    unstaged: list[FileChange] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.staged and not self.unstaged


class WorkingTreeAnalysis(BaseModel):
    """Pending changes, each side analysed as if it were a commit."""

    model_config = ConfigDict(frozen=True)

    repo_path: str
    status: WorkingTreeStatus
    staged: CommitAnalysis | None = None
    unstaged: CommitAnalysis | None = None


class BranchSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    local: list[str] = Field(default_factory=list)
    remote: list[str] = Field(default_factory=list)
    current: str = "unknown"


class UnmergedBranch(BaseModel):
    """Commits on a local branch that the current branch does not contain."""

    model_config = ConfigDict(frozen=True)

    branch: str
    commits: list[CommitRecord] = Field(default_factory=list)
