"""Summarize analysed commits through Claude, falling back to rules.

The :class:`Orchestrator` runs commits in fixed-size batches.  Items inside a
batch run concurrently; a failure in one item only sends that item down the
rule-based path.  Results are re-emitted in the order they were given.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from changelens.classifier import key_diff_lines
from changelens.config import Settings
from changelens.errors import NoModelAvailable, ProviderError
from changelens.models import (
    AISummary,
    CommitAnalysis,
    Impact,
    ReleaseScope,
    RunMetrics,
    SummarySource,
)
from changelens.provider import Summarizer
from changelens.rules import rule_based_summary
from changelens.selector import ProbeCache, choose_model, preferred_tier

logger = logging.getLogger(__name__)

SERVICE_CONFIDENCE = 0.8

# Keys a response must carry for a bracket-scanned object to be accepted.
_EXPECTED_KEYS = {"summary"}
_SUMMARY_JSON_RE = re.compile(r'\{\s*"summary"', re.DOTALL)

SYSTEM_PROMPT = (
    "You are an expert technical writer and software engineer specializing in "
    "changelog generation. You understand common frameworks, databases and "
    "development practices.\n\n"
    "Analyze git commits and write changelog entries that balance technical "
    "accuracy with user-friendly language. Always respond with valid JSON in "
    "the exact format requested - no prose, no markdown fences."
)

SUMMARY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string"},
        "technicalSummary": {"type": "string"},
        "category": {"type": "string"},
        "impact": {"type": "string", "enum": [i.value for i in Impact]},
        "scope": {"type": "string", "enum": [s.value for s in ReleaseScope]},
        "userFacing": {"type": "boolean"},
        "breaking": {"type": "boolean"},
        "businessImpact": {"type": "string"},
        "technicalImpact": {"type": "string"},
        "highlights": {"type": "array", "items": {"type": "string"}},
        "migrationNotes": {"type": ["string", "null"]},
        "tags": {"type": "array", "items": {"type": "string"}},
        "relatedAreas": {"type": "array", "items": {"type": "string"}},
        "riskLevel": {"type": "string"},
        "confidence": {"type": "number"},
    },
    "required": ["summary", "category", "impact", "scope", "breaking"],
}

_RESPONSE_FORMAT = """\
Return ONLY valid JSON in this exact structure:
{
  "summary": "Clear, user-friendly description (1-2 sentences)",
  "technicalSummary": "Detailed technical description for developers",
  "category": "feature|fix|improvement|refactor|docs|chore|breaking|security",
  "impact": "critical|high|medium|low",
  "scope": "major|minor|patch",
  "userFacing": true,
  "breaking": false,
  "businessImpact": "How this affects users, business goals, or product value",
  "technicalImpact": "How this affects codebase, architecture, or development",
  "highlights": ["key point 1", "key point 2"],
  "migrationNotes": "Steps needed for upgrade/deployment or null",
  "tags": ["tag1", "tag2"],
  "relatedAreas": ["area1", "area2"],
  "riskLevel": "low|medium|high",
  "confidence": 0.9
}"""


# ---------------------------------------------------------------------------
# Prompt builder
# ---------------------------------------------------------------------------


def build_prompt(analysis: CommitAnalysis, max_files: int = 15, context_lines: int = 5) -> str:
    """Build the analysis prompt for one commit.

    At most *max_files* file entries are included; past that the list is
    cut rather than any field inside an entry.
    """
    commit = analysis.commit
    semantic = analysis.semantic
    stats = analysis.diff_stats

    files_context = [
        {
            "path": f.path,
            "status": str(f.status),
            "category": str(f.category),
            "language": f.language,
            "complexity": f.complexity_score,
            "semanticChanges": sorted(f.semantic_tags),
            "frameworks": sorted(f.frameworks),
            "functionalImpact": f.functional_impact.model_dump(mode="json"),
            "businessRelevance": f.business_relevance.model_dump(mode="json"),
            "keyChanges": key_diff_lines(f.diff_text, limit=context_lines),
        }
        for f in analysis.files[:max_files]
    ]
    omitted = len(analysis.files) - len(files_context)

    lines = [
        "<task>",
        "Analyze this git commit for changelog generation.",
        "",
        "<commit_context>",
        f"Subject: {commit.subject}",
    ]
    if commit.body:
        lines.append(f"Body: {commit.body}")
    lines += [
        f"Type: {commit.conventional_type}" + (f" (scope: {commit.scope})" if commit.scope else ""),
        f"Breaking: {'yes' if commit.breaking else 'no'}",
        f"Files changed: {len(analysis.files)}",
        f"Lines: +{stats.insertions} -{stats.deletions}",
        f"Frameworks: {', '.join(sorted(semantic.frameworks)) or 'none'}",
        f"Patterns: {', '.join(sorted(semantic.patterns)) or 'none'}",
        f"Complexity: {analysis.complexity.level} (score: {analysis.complexity.score})",
        f"Risk Level: {analysis.risk.level}",
        f"Risk Factors: {', '.join(analysis.risk.factors) or 'none'}",
        "</commit_context>",
        "",
        "<files_analysis>",
        json.dumps(files_context, indent=2),
    ]
    if omitted > 0:
        lines.append(f"... {omitted} more file(s) not shown")
    lines += [
        "</files_analysis>",
        "",
        "<analysis_requirements>",
        "1. Primary Impact: what does this change do for end users?",
        "2. Technical Scope: how does this affect the codebase architecture?",
        "3. Business Value: what problem does this solve?",
        "4. Risk Assessment: what could this change break?",
        "5. Migration Needs: are there breaking changes or upgrade steps?",
        "</analysis_requirements>",
        "",
        "<response_format>",
        _RESPONSE_FORMAT,
        "</response_format>",
        "</task>",
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# JSON extraction (multi-strategy)
# ---------------------------------------------------------------------------


def _validate_json_keys(data: object) -> bool:
    return isinstance(data, dict) and _EXPECTED_KEYS.issubset(data.keys())


def _scan_balanced(text: str, open_char: str, close_char: str) -> dict | None:
    """Parse the first balanced ``open_char ... close_char`` span of *text*."""
    depth = 0
    for i, ch in enumerate(text):
        if ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                try:
                    result = json.loads(text[: i + 1])
                except (json.JSONDecodeError, ValueError):
                    return None
                return result if isinstance(result, dict) else None
    return None


def extract_json(text: str) -> dict:
    """Extract the summary object from Claude's response.

    Strategy 1: direct ``json.loads`` on the full text.
    Strategy 2: every markdown code fence, in order.
    Strategy 3: first ``{`` onward, with key validation.
    Strategy 4: regex for the expected ``{"summary"`` shape.

    A top-level array is unwrapped to its first object.  Every strategy
    only accepts an object carrying a ``summary`` key.

    Raises ``ValueError`` if no valid JSON object can be extracted.
    """
    text = text.strip()

    def _unwrap(result: object) -> dict | None:
        if isinstance(result, list) and result and isinstance(result[0], dict):
            result = result[0]
        return result if isinstance(result, dict) else None

    # Strategy 1: direct parse
    try:
        found = _unwrap(json.loads(text))
        if _validate_json_keys(found):
            return found  # type: ignore[return-value]
    except (json.JSONDecodeError, ValueError):
        pass

    # Strategy 2: markdown code fences (try ALL fences)
    fence_pattern = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)
    for match in fence_pattern.finditer(text):
        try:
            found = _unwrap(json.loads(match.group(1).strip()))
        except (json.JSONDecodeError, ValueError):
            continue
        if _validate_json_keys(found):
            return found  # type: ignore[return-value]

    # Strategy 3: first '{' with key validation
    idx = text.find("{")
    if idx != -1:
        candidate = _scan_balanced(text[idx:], "{", "}")
        if _validate_json_keys(candidate):
            return candidate  # type: ignore[return-value]

    # Strategy 4: expected shape anywhere in the text
    shape_match = _SUMMARY_JSON_RE.search(text)
    if shape_match:
        candidate = _scan_balanced(text[shape_match.start() :], "{", "}")
        if _validate_json_keys(candidate):
            return candidate  # type: ignore[return-value]

    preview = text if len(text) <= 200 else f"{text[:200]}..."
    raise ValueError(f"Could not extract valid JSON from Claude response: {preview}")


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _pick(raw: dict, *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _as_str_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v).strip()]


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def _as_enum(enum_cls: type, value: object, default: Any) -> Any:
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default


def parse_summary(raw: dict, analysis: CommitAnalysis, model: str | None = None) -> AISummary:
    """Coerce a parsed response into a complete :class:`AISummary`.

    Accepts both camelCase and snake_case keys.  Missing or malformed
    fields are filled from the commit itself.
    """
    commit = analysis.commit
    migration = _pick(raw, "migrationNotes", "migration_notes")
    confidence = _pick(raw, "confidence")

    return AISummary(
        summary=str(_pick(raw, "summary") or commit.subject or commit.short_hash),
        technical_summary=str(_pick(raw, "technicalSummary", "technical_summary") or ""),
        category=str(_pick(raw, "category") or commit.conventional_type),
        impact=_as_enum(Impact, _pick(raw, "impact"), Impact.low),
        scope=_as_enum(ReleaseScope, _pick(raw, "scope"), ReleaseScope.patch),
        user_facing=_as_bool(_pick(raw, "userFacing", "user_facing")),
        breaking=_as_bool(_pick(raw, "breaking")) or commit.breaking,
        business_impact=str(_pick(raw, "businessImpact", "business_impact") or ""),
        technical_impact=str(_pick(raw, "technicalImpact", "technical_impact") or ""),
        highlights=_as_str_list(_pick(raw, "highlights")),
        migration_notes=str(migration) if migration else None,
        tags=_as_str_list(_pick(raw, "tags")),
        related_areas=_as_str_list(_pick(raw, "relatedAreas", "related_areas")),
        risk_level=str(_pick(raw, "riskLevel", "risk_level") or analysis.risk.level),
        confidence=confidence if confidence is not None else SERVICE_CONFIDENCE,
        source=SummarySource.service,
        model=model,
    )


# ---------------------------------------------------------------------------
# Run counters
# ---------------------------------------------------------------------------


@dataclass
class MetricsCounter:
    """Counters shared by every task in one run.

    Increments take a lock so concurrent batch items never lose an update.
    """

    commits_processed: int = 0
    api_calls: int = 0
    errors: int = 0
    total_tokens: int = 0
    batches_processed: int = 0
    total_cost: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def add(
        self,
        *,
        commits_processed: int = 0,
        api_calls: int = 0,
        errors: int = 0,
        total_tokens: int = 0,
        batches_processed: int = 0,
        total_cost: float = 0.0,
    ) -> None:
        with self._lock:
            self.commits_processed += commits_processed
            self.api_calls += api_calls
            self.errors += errors
            self.total_tokens += total_tokens
            self.batches_processed += batches_processed
            self.total_cost += total_cost

    def snapshot(self) -> RunMetrics:
        with self._lock:
            return RunMetrics(
                commits_processed=self.commits_processed,
                api_calls=self.api_calls,
                errors=self.errors,
                total_tokens=self.total_tokens,
                batches_processed=self.batches_processed,
                total_cost=self.total_cost,
            )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """Summarize commit analyses with bounded concurrency.

    Parameters
    ----------
    provider:
        Summarization backend, or ``None`` to use rules for every commit.
    settings:
        Run settings: tiers, batch size, delays and timeouts.
    metrics:
        Counter object updated in place; a fresh one is created if omitted.
    on_batch:
        Optional ``(done, total)`` callback invoked after each batch.
    """

    def __init__(
        self,
        provider: Summarizer | None,
        settings: Settings | None = None,
        metrics: MetricsCounter | None = None,
        on_batch: Callable[[int, int], None] | None = None,
    ) -> None:
        self.provider = provider
        self.settings = settings or Settings()
        self.metrics = metrics if metrics is not None else MetricsCounter()
        self.on_batch = on_batch
        self._probe = ProbeCache(provider.probe) if provider is not None else None

    @property
    def uses_service(self) -> bool:
        return self.provider is not None and self.settings.ai_enabled

    def _fallback(self, analysis: CommitAnalysis) -> CommitAnalysis:
        return analysis.with_summary(rule_based_summary(analysis))

    async def _select_model(self, analysis: CommitAnalysis, timeout: float) -> str:
        """Pick a model, spending at most *timeout* seconds on availability probes."""
        tiers = self.settings.tiers
        override = self.settings.model_override
        preferred = preferred_tier(analysis, tiers, override)
        if override is not None and preferred == override:
            return override
        assert self._probe is not None
        choice = await asyncio.wait_for(choose_model(preferred, self._probe, tiers), timeout)
        return choice.model

    def _remaining(self, deadline: float | None) -> float:
        """Seconds the next external call may take."""
        timeout = self.settings.call_timeout
        if deadline is not None:
            timeout = min(timeout, deadline - time.monotonic())
            if timeout <= 0:
                raise asyncio.TimeoutError("Run deadline reached before the call")
        return timeout

    async def _summarize_with_service(
        self,
        analysis: CommitAnalysis,
        deadline: float | None,
    ) -> CommitAnalysis:
        assert self.provider is not None
        settings = self.settings
        model = await self._select_model(analysis, self._remaining(deadline))
        timeout = self._remaining(deadline)

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": build_prompt(
                    analysis, settings.max_prompt_files, settings.context_lines
                ),
            },
        ]
        reasoning_effort = (
            settings.reasoning_effort if model in settings.tiers.reasoning_models else None
        )
        completion = await self.provider.complete(
            messages,
            model=model,
            max_tokens=settings.max_tokens,
            temperature=0.3,
            reasoning_effort=reasoning_effort,
            timeout=timeout,
        )
        self.metrics.add(
            api_calls=1,
            total_tokens=completion.tokens,
            total_cost=completion.cost,
        )

        if not completion.content.strip():
            raise ValueError(f"Empty response from Claude for commit {analysis.commit.short_hash}")

        raw = extract_json(completion.content)
        return analysis.with_summary(parse_summary(raw, analysis, completion.model or model))

    async def summarize(
        self,
        analysis: CommitAnalysis,
        deadline: float | None = None,
    ) -> CommitAnalysis:
        """Return *analysis* carrying a summary; never raises for service failures.

        *deadline* is a :func:`time.monotonic` timestamp after which no new
        service calls are started.
        """
        try:
            if not self.uses_service:
                return self._fallback(analysis)
            if deadline is not None and time.monotonic() >= deadline:
                logger.info(
                    "Deadline passed; using rules for %s", analysis.commit.short_hash
                )
                return self._fallback(analysis)
            try:
                return await self._summarize_with_service(analysis, deadline)
            except (ProviderError, ValueError, NoModelAvailable, asyncio.TimeoutError) as exc:
                self.metrics.add(errors=1)
                logger.warning(
                    "Summarizing %s failed (%s); using rule-based summary",
                    analysis.commit.short_hash,
                    exc,
                )
                return self._fallback(analysis)
            except Exception as exc:
                self.metrics.add(errors=1)
                logger.exception(
                    "Unexpected error summarizing %s (%s); using rule-based summary",
                    analysis.commit.short_hash,
                    exc,
                )
                return self._fallback(analysis)
        finally:
            self.metrics.add(commits_processed=1)

    async def summarize_all(
        self,
        analyses: Sequence[CommitAnalysis],
        deadline: float | None = None,
    ) -> list[CommitAnalysis]:
        """Summarize every analysis, batch by batch, preserving input order."""
        if not analyses:
            return []

        batch_size = self.settings.batch_size
        total = len(analyses)
        done: list[CommitAnalysis] = []

        for start in range(0, total, batch_size):
            batch = analyses[start : start + batch_size]
            results = await asyncio.gather(
                *(self.summarize(a, deadline) for a in batch),
                return_exceptions=True,
            )
            for item, result in zip(batch, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    self.metrics.add(errors=1)
                    logger.error(
                        "Unexpected error summarizing %s: %s", item.commit.short_hash, result
                    )
                    result = self._fallback(item)
                done.append(result)

            self.metrics.add(batches_processed=1)
            finished = min(start + batch_size, total)
            if self.on_batch is not None:
                self.on_batch(finished, total)

            more = finished < total
            if more and self.uses_service and self.settings.batch_delay > 0:
                if deadline is None or time.monotonic() < deadline:
                    await asyncio.sleep(self.settings.batch_delay)

        return done
