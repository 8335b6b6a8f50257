"""Model service clients.

The pipeline only depends on the ``ModelClient`` protocol; the default
implementation talks to Claude through the Claude Agent SDK.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKError,
    ResultMessage,
    query,
)

from ..config import DEFAULT_MODEL
from ..errors import ModelServiceError, RequestTimeoutError

logger = logging.getLogger(__name__)


class ModelClient(Protocol):
    """Anything that turns a prompt into a text completion."""

    async def complete(self, prompt: str, *, max_tokens: int | None = None) -> str:
        ...


@dataclass
class ModelUsageStats:
    """Aggregated usage across model calls."""

    total_cost_usd: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    calls: int = 0
    session_ids: list[str] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    def record_result(self, result: ResultMessage) -> None:
        """Record stats from a ResultMessage."""
        self.calls += 1
        if getattr(result, "total_cost_usd", None) is not None:
            self.total_cost_usd += result.total_cost_usd
        usage = getattr(result, "usage", None)
        if isinstance(usage, dict):
            self.total_input_tokens += usage.get("input_tokens") or 0
            self.total_output_tokens += usage.get("output_tokens") or 0
        elif usage is not None:
            self.total_input_tokens += getattr(usage, "input_tokens", 0) or 0
            self.total_output_tokens += getattr(usage, "output_tokens", 0) or 0
        if getattr(result, "session_id", None):
            self.session_ids.append(result.session_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_cost_usd": self.total_cost_usd,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_tokens": self.total_tokens,
            "calls": self.calls,
        }


def create_agent_options(
    *,
    system_prompt: str = "",
    model: str = DEFAULT_MODEL,
    max_turns: int | None = 1,
    permission_mode: str = "bypassPermissions",
) -> ClaudeAgentOptions:
    """Create single-shot ClaudeAgentOptions with no tools enabled.

    Args:
        system_prompt: Optional system prompt
        model: Claude model to use
        max_turns: Maximum conversation turns
        permission_mode: Permission mode (bypassPermissions for automated use)

    Returns:
        Configured ClaudeAgentOptions
    """
    kwargs: dict[str, Any] = {
        "permission_mode": permission_mode,
        "allowed_tools": [],
    }
    if system_prompt:
        kwargs["system_prompt"] = system_prompt
    if model:
        kwargs["model"] = model
    if max_turns is not None:
        kwargs["max_turns"] = max_turns
    return ClaudeAgentOptions(**kwargs)


def collect_text_from_messages(messages: list) -> str:
    """Concatenate the text blocks of all assistant messages."""
    texts = []
    for message in messages:
        if isinstance(message, AssistantMessage):
            for block in message.content:
                if hasattr(block, "text"):
                    texts.append(block.text)
    return "\n".join(texts)


class ClaudeAgentModelClient:
    """ModelClient backed by the Claude Agent SDK ``query`` API."""

    def __init__(self, model: str = DEFAULT_MODEL, timeout: float = 300.0):
        self.model = model
        self.timeout = timeout
        self.usage = ModelUsageStats()

    async def _run(self, prompt: str) -> str:
        options = create_agent_options(model=self.model)
        messages: list = []
        async for message in query(prompt=prompt, options=options):
            messages.append(message)
            if isinstance(message, ResultMessage):
                self.usage.record_result(message)
        return collect_text_from_messages(messages)

    async def complete(self, prompt: str, *, max_tokens: int | None = None) -> str:
        # max_tokens is governed by the SDK session; accepted for protocol compatibility
        try:
            text = await asyncio.wait_for(self._run(prompt), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"Model service did not answer within {self.timeout}s", timeout=self.timeout
            ) from e
        except ClaudeSDKError as e:
            raise ModelServiceError(f"Model service failed: {e}") from e

        if not text.strip():
            raise ModelServiceError("No text response from model service")
        logger.debug("Model reply: %d characters", len(text))
        return text
