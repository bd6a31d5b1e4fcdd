"""Exception types raised across changelens.

Only :class:`RepositoryNotFoundError` is fatal to a run.  Everything else is
caught at the item boundary and turned into a degraded result.
"""

from __future__ import annotations


class ChangelensError(Exception):
    """Base class for changelens errors."""


class RepositoryNotFoundError(ChangelensError):
    """The target path is not inside a git working tree."""


class NoModelAvailable(ChangelensError):
    """No model tier answered the availability probe."""

    def __init__(self, tried: list[str]) -> None:
        self.tried = list(tried)
        super().__init__(
            "No model available (tried: " + (", ".join(tried) or "none") + ")"
        )


# ---------------------------------------------------------------------------
# Summarization provider failures
# ---------------------------------------------------------------------------


class ProviderError(ChangelensError):
    """The summarization service failed to produce a completion."""

    kind = "unknown"


class Unauthorized(ProviderError):
    kind = "unauthorized"


class RateLimited(ProviderError):
    kind = "rate_limited"


class ModelUnavailable(ProviderError):
    kind = "model_unavailable"


class ProviderTimeout(ProviderError):
    kind = "timeout"


class UnknownProviderError(ProviderError):
    kind = "unknown"
