"""Runtime settings for changelens.

Settings come from ``CHANGELENS_*`` environment variables (model tiers from
``CHANGELENS_MODEL_*``) and are then overridden by CLI options.  Both
models are frozen: the selector and orchestrator read them but never change
them mid-run.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

AnalysisMode = Literal["standard", "detailed", "enterprise"]


class ModelTiers(BaseSettings):
    """Model names for each summarization tier.

    ``reasoning`` and ``advanced_reasoning`` may be ``None`` (``none`` in the
    environment) when the provider offers no extended-thinking tier; the
    selector then falls back to ``complex``.  ``CHANGELENS_MODEL_LEGACY`` is
    a comma-separated list.
    """

    model_config = SettingsConfigDict(
        env_prefix="CHANGELENS_MODEL_",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    nano: str = "haiku"
    simple: str = "haiku"
    default: str = "sonnet"
    complex: str = "sonnet"
    reasoning: str | None = "opus"
    advanced_reasoning: str | None = "opus"
    legacy: Annotated[tuple[str, ...], NoDecode] = ("claude-3-5-haiku-latest",)

    @field_validator("reasoning", "advanced_reasoning", mode="before")
    @classmethod
    def _disable_tier(cls, v: object) -> object:
        if isinstance(v, str) and v.strip().lower() in {"", "none"}:
            return None
        return v

    @field_validator("legacy", mode="before")
    @classmethod
    def _split_legacy(cls, v: object) -> object:
        if isinstance(v, str):
            return tuple(m.strip() for m in v.split(",") if m.strip())
        return v

    @property
    def reasoning_models(self) -> frozenset[str]:
        return frozenset(m for m in (self.reasoning, self.advanced_reasoning) if m)

    def deepest(self) -> str:
        """Return the deepest reasoning tier offered, else ``complex``."""
        return self.advanced_reasoning or self.reasoning or self.complex

    def fallback_order(self) -> list[str]:
        """Models to try, in order, when the preferred one is unavailable."""
        ordered: list[str] = []
        for name in (self.default, self.simple, *self.legacy):
            if name and name not in ordered:
                ordered.append(name)
        return ordered


class Settings(BaseSettings):
    """All knobs of one analysis run."""

    model_config = SettingsConfigDict(
        env_prefix="CHANGELENS_",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
        protected_namespaces=("settings_",),
    )

    tiers: ModelTiers = Field(default_factory=ModelTiers)
    ai_enabled: bool = True
    model_override: str | None = None
    analysis_mode: AnalysisMode = "standard"
    batch_size: int = Field(default=10, ge=1)
    batch_delay: float = Field(default=1.0, ge=0)
    call_timeout: float = Field(default=120.0, gt=0)
    max_prompt_files: int = Field(default=15, ge=1)
    max_tokens: int = Field(default=1000, ge=1)
    context_lines: int = Field(default=5, ge=0)

    @property
    def reasoning_effort(self) -> str:
        return "high" if self.analysis_mode == "enterprise" else "medium"

    def with_overrides(self, **changes: object) -> Settings:
        """Return a validated copy with every non-``None`` value in *changes* applied.

        Raises ``pydantic.ValidationError`` (a ``ValueError``) on bad values.
        """
        updates = {k: v for k, v in changes.items() if v is not None}
        if not updates:
            return self
        return self.model_validate({**self.model_dump(), **updates})
