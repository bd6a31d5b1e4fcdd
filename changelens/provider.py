"""Claude Agent SDK client used for commit summarization.

Wraps ``query()`` the same way for every call: a restricted tool set, the
API key stripped from the child environment and a bounded number of turns.
Failures are mapped onto the :class:`~changelens.errors.ProviderError`
taxonomy so callers can decide between retrying elsewhere and falling back
to rule-based summaries.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Protocol

from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKError, query
from claude_agent_sdk.types import AssistantMessage, ResultMessage

from changelens.errors import (
    ModelUnavailable,
    ProviderError,
    ProviderTimeout,
    RateLimited,
    Unauthorized,
    UnknownProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert software analyst. You read git commit metadata and "
    "diff excerpts and explain what changed for a release changelog. "
    "Always respond with ONLY valid JSON - no prose, no markdown fences."
)

# Thinking budget handed to the SDK for each reasoning effort.
THINKING_BUDGETS: dict[str, int] = {
    "low": 1024,
    "medium": 4096,
    "high": 16384,
}

PROBE_PROMPT = "Reply with the single word: ok"
PROBE_TIMEOUT = 30.0

# Checked in order against the lower-cased error text.
_ERROR_PATTERNS: tuple[tuple[re.Pattern[str], type[ProviderError]], ...] = (
    (
        re.compile(r"\b401\b|unauthori[sz]ed|authentication|invalid api key|not logged in"),
        Unauthorized,
    ),
    (re.compile(r"\b429\b|rate.?limit|overloaded|too many requests"), RateLimited),
    (
        re.compile(
            r"\b404\b|model.*not.?found|not_found|invalid model|model.*does not exist|"
            r"unknown model"
        ),
        ModelUnavailable,
    ),
    (re.compile(r"timed? ?out|timeout"), ProviderTimeout),
)


@dataclass(frozen=True)
class Completion:
    """Text returned by one completion plus its accounting."""

    content: str
    model: str
    tokens: int = 0
    cost: float = 0.0


class Summarizer(Protocol):
    """What the orchestrator needs from a summarization backend."""

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        max_tokens: int,
        temperature: float | None = None,
        reasoning_effort: str | None = None,
        timeout: float,
    ) -> Completion: ...

    async def probe(self, model: str) -> bool: ...


def classify_error(error: BaseException | str) -> ProviderError:
    """Map an SDK exception or error text onto the provider taxonomy."""
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, asyncio.TimeoutError):
        return ProviderTimeout("Summarization call timed out")

    text = str(error)
    stderr = getattr(error, "stderr", None)
    if stderr:
        text = f"{text}\n{stderr}"
    lowered = text.lower()
    for pattern, error_cls in _ERROR_PATTERNS:
        if pattern.search(lowered):
            return error_cls(text.strip())
    return UnknownProviderError(text.strip() or type(error).__name__)


def _split_messages(messages: list[dict[str, str]]) -> tuple[str | None, str]:
    """Return ``(system_prompt, prompt)`` from chat-style *messages*."""
    system = [m["content"] for m in messages if m.get("role") == "system"]
    user = [m["content"] for m in messages if m.get("role") != "system"]
    return ("\n\n".join(system) or None), "\n\n".join(user)


def _child_env(max_tokens: int) -> dict[str, str]:
    env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}
    env["CLAUDE_CODE_MAX_OUTPUT_TOKENS"] = str(max_tokens)
    return env


class ClaudeProvider:
    """:class:`Summarizer` backed by the Claude Agent SDK.

    Parameters
    ----------
    cwd:
        Working directory for the agent, normally the repository root.
    output_schema:
        Optional JSON schema passed as ``output_format``.
    """

    def __init__(self, cwd: str, output_schema: dict[str, Any] | None = None) -> None:
        self.cwd = cwd
        self.output_schema = output_schema

    def _build_options(
        self,
        system_prompt: str | None,
        model: str,
        max_tokens: int,
        reasoning_effort: str | None,
        *,
        structured: bool = True,
    ) -> ClaudeAgentOptions:
        kwargs: dict[str, Any] = {
            "system_prompt": system_prompt or DEFAULT_SYSTEM_PROMPT,
            "allowed_tools": ["Read"],
            "permission_mode": "bypassPermissions",
            "cwd": self.cwd,
            "model": model,
            "max_buffer_size": 10 * 1024 * 1024,  # 10 MB
            "max_turns": 3,
            "env": _child_env(max_tokens),
        }
        if structured and self.output_schema is not None:
            kwargs["output_format"] = self.output_schema
        if reasoning_effort in THINKING_BUDGETS:
            kwargs["max_thinking_tokens"] = THINKING_BUDGETS[reasoning_effort]
        return ClaudeAgentOptions(**kwargs)

    async def _run(self, prompt: str, options: ClaudeAgentOptions, model: str) -> Completion:
        output_parts: list[str] = []
        total_cost = 0.0
        total_tokens = 0

        try:
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, AssistantMessage):
                    error = getattr(message, "error", None)
                    if error:
                        raise classify_error(str(error))
                    for block in message.content:
                        if hasattr(block, "text"):
                            output_parts.append(block.text)
                elif isinstance(message, ResultMessage):
                    total_cost = getattr(message, "total_cost_usd", 0.0) or 0.0
                    usage = getattr(message, "usage", None)
                    if usage and isinstance(usage, dict):
                        total_tokens = usage.get("input_tokens", 0) + usage.get(
                            "output_tokens", 0
                        )
                    if getattr(message, "is_error", False):
                        raise classify_error(
                            str(getattr(message, "result", None) or "error result")
                        )
        except ProviderError:
            raise
        except ClaudeSDKError as exc:
            raise classify_error(exc) from exc

        return Completion(
            content="\n".join(output_parts),
            model=model,
            tokens=total_tokens,
            cost=total_cost,
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        max_tokens: int,
        temperature: float | None = None,
        reasoning_effort: str | None = None,
        timeout: float,
    ) -> Completion:
        """Run one completion with a wall-clock *timeout*.

        *temperature* is accepted for interface compatibility; the agent
        runtime does not expose a sampling temperature, so it is ignored.

        Raises
        ------
        ProviderError
            Classified failure: :class:`Unauthorized`, :class:`RateLimited`,
            :class:`ModelUnavailable`, :class:`ProviderTimeout` or
            :class:`UnknownProviderError`.
        """
        system_prompt, prompt = _split_messages(messages)
        options = self._build_options(system_prompt, model, max_tokens, reasoning_effort)
        try:
            completion = await asyncio.wait_for(self._run(prompt, options, model), timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(f"{model} did not answer within {timeout:.0f}s") from exc

        logger.debug(
            "Completion from %s: tokens=%d cost=%.4f",
            model,
            completion.tokens,
            completion.cost,
        )
        return completion

    async def probe(self, model: str) -> bool:
        """Return True if *model* answers a minimal round trip."""
        options = self._build_options(None, model, 16, None, structured=False)
        try:
            await asyncio.wait_for(self._run(PROBE_PROMPT, options, model), PROBE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.info("Probe of %s timed out", model)
            return False
        except ProviderError as exc:
            logger.info("Probe of %s failed (%s): %s", model, exc.kind, exc)
            return False
        return True
