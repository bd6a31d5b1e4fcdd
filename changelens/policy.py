"""Tunable scoring thresholds for complexity, risk and model selection.

The numbers below are hand-tuned heuristics rather than measured values.
They live in one frozen dataclass so a caller can swap in a different
policy without touching the scoring code.

Bucket tables are ``(exclusive_lower_bound, points)`` pairs checked in
order; level tables are ``(inclusive_min_score, level)`` pairs checked in
order.  Both must be sorted from the largest bound down.
"""

from __future__ import annotations

from dataclasses import dataclass

from changelens.models import ComplexityLevel, RiskLevel


@dataclass(frozen=True)
class ScoringPolicy:
    """Point values and thresholds used by the aggregator and selector."""

    # -- per-file diff complexity (exclusive upper bounds -> score 1..4, else 5)
    file_complexity_bounds: tuple[int, ...] = (10, 50, 100, 200)

    # -- commit complexity
    files_buckets: tuple[tuple[int, int], ...] = ((50, 5), (20, 3), (10, 2), (5, 1))
    lines_buckets: tuple[tuple[int, int], ...] = (
        (5000, 5),
        (1000, 4),
        (500, 3),
        (100, 2),
        (20, 1),
    )
    category_buckets: tuple[tuple[int, int], ...] = ((4, 2), (2, 1))
    complexity_levels: tuple[tuple[int, ComplexityLevel], ...] = (
        (8, ComplexityLevel.very_high),
        (6, ComplexityLevel.high),
        (4, ComplexityLevel.medium),
        (1, ComplexityLevel.low),
    )

    # -- commit risk
    breaking_points: int = 5
    database_points: int = 3
    config_points: int = 2
    large_scale_points: int = 2
    security_points: int = 3
    large_scale_files: int = 50
    large_scale_lines: int = 2000
    security_keywords: tuple[str, ...] = (
        "auth",
        "security",
        "password",
        "token",
        "permission",
    )
    risk_levels: tuple[tuple[int, RiskLevel], ...] = (
        (9, RiskLevel.critical),
        (7, RiskLevel.high),
        (5, RiskLevel.medium),
        (4, RiskLevel.low_medium),
    )

    # -- model selection
    reasoning_files: int = 100
    reasoning_lines: int = 5000
    breaking_reasoning_files: int = 20
    complex_files: int = 20
    complex_lines: int = 1000
    minimal_files: int = 3
    minimal_lines: int = 50
    simple_files: int = 10
    simple_lines: int = 200
    architecture_keywords: tuple[str, ...] = ("refactor", "architecture", "algorithm")

    # -- release insights
    high_complexity_avg_files: float = 20.0
    medium_complexity_avg_files: float = 10.0


DEFAULT_POLICY = ScoringPolicy()


def bucket_points(value: int, buckets: tuple[tuple[int, int], ...]) -> int:
    """Return the points of the first bucket whose bound *value* exceeds."""
    for bound, points in buckets:
        if value > bound:
            return points
    return 0


def level_for(score: int, levels: tuple[tuple[int, object], ...], default: object) -> object:
    """Map *score* to the first level whose minimum it reaches."""
    for minimum, level in levels:
        if score >= minimum:
            return level
    return default
