"""
LLM Provider Protocol

Contract between the orchestration core and the language-model transport.
The transport owns provider selection, authentication and network retries;
the core only sees completions and classified stream chunks.

Stream chunk dicts yielded by ``complete_stream``:
    {"type": "reasoning", "content": str}      model reasoning text
    {"type": "token", "content": str}          output text
    {"type": "finish", "finish_reason": str}   end of stream
    {"type": "error", "message": str}          transport failure
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class LLMRequest:
    """
    A language-model request as issued by the core.

    Attributes:
        messages: OpenAI-style message dicts
        model: Model alias understood by the provider
        max_tokens: Completion token limit
        temperature: Sampling temperature
    """

    messages: list[dict[str, Any]] = field(default_factory=list)
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None

    def params(self) -> dict[str, Any]:
        """Sampling parameters that were set explicitly."""
        params: dict[str, Any] = {}
        if self.max_tokens is not None:
            params["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            params["temperature"] = self.temperature
        return params


class LLMProviderProtocol(Protocol):
    """Language-model transport used by the planner and agent runners."""

    async def complete(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Perform a non-streaming completion.

        Returns:
            Dict with ``success``, ``content``, ``tool_calls`` (OpenAI format
            or None) and ``usage``; ``error`` when ``success`` is False.
        """
        ...

    def complete_stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream a completion as classified chunk dicts."""
        ...
