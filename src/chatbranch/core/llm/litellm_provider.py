"""LiteLLM provider implementation.

Talks to local and hosted models through litellm:
- Local Ollama: "ollama/llama3.1", "ollama_chat/qwen2.5"
- OpenAI-compatible local servers via ``api_base``
- Hosted providers: "gpt-4o", "claude-3-5-sonnet-20241022", ...

See https://docs.litellm.ai/docs/providers for the full list.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import litellm

from chatbranch.core.llm.provider import (
    CompletionResult,
    Message,
    StreamChunk,
    ToolCall,
)
from chatbranch.logging import get_logger

log = get_logger("llm")


def _to_wire(message: Message) -> dict[str, Any]:
    """Convert a Message to the OpenAI-style dict litellm expects."""
    wire: dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.images:
        parts: list[dict[str, Any]] = [{"type": "text", "text": message.content}]
        for image in message.images:
            url = image if image.startswith("data:") else f"data:image/png;base64,{image}"
            parts.append({"type": "image_url", "image_url": {"url": url}})
        wire["content"] = parts
    if message.tool_calls:
        wire["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments},
            }
            for call in message.tool_calls
        ]
    return wire


class _ToolCallAccumulator:
    """Reassembles tool calls that arrive split across stream deltas."""

    def __init__(self) -> None:
        self._calls: dict[int, dict[str, str]] = {}

    def add(self, deltas: list[Any]) -> None:
        for delta in deltas:
            index = getattr(delta, "index", None) or 0
            entry = self._calls.setdefault(index, {"id": "", "name": "", "arguments": ""})
            if getattr(delta, "id", None):
                entry["id"] = delta.id
            function = getattr(delta, "function", None)
            if function is not None:
                if getattr(function, "name", None):
                    entry["name"] = function.name
                if getattr(function, "arguments", None):
                    entry["arguments"] += function.arguments

    def result(self) -> list[ToolCall]:
        return [
            ToolCall(id=c["id"], name=c["name"], arguments=c["arguments"] or "{}")
            for _, c in sorted(self._calls.items())
        ]


class LiteLLMProvider:
    """LLM provider using litellm for multi-provider support.

    Usage:
        # Local Ollama
        provider = LiteLLMProvider("ollama/llama3.1")

        # OpenAI-compatible local server
        provider = LiteLLMProvider("openai/qwen2.5", api_base="http://localhost:8000/v1")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        **kwargs: Any,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(
        self,
        messages: list[Message],
        *,
        max_tokens: int,
        temperature: float | None,
        stream: bool,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [_to_wire(m) for m in messages],
            "max_tokens": max_tokens,
            "stream": stream,
            **self._kwargs,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> CompletionResult:
        """Generate a completion (non-streaming)."""
        kwargs = self._build_kwargs(
            messages, max_tokens=max_tokens, temperature=temperature, stream=False
        )
        response = await litellm.acompletion(**kwargs)

        choice = response.choices[0]
        usage: dict[str, int] = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return CompletionResult(
            content=choice.message.content or "",
            finish_reason=choice.finish_reason,
            usage=usage,
        )

    async def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Generate a streaming completion.

        Reasoning deltas (``reasoning_content``) are surfaced as ``thinking``;
        tool-call fragments are accumulated and emitted on the final chunk.
        """
        kwargs = self._build_kwargs(
            messages, max_tokens=max_tokens, temperature=temperature, stream=True
        )
        log.debug("Streaming %d messages to %s", len(messages), self._model)
        response = await litellm.acompletion(**kwargs)

        tool_calls = _ToolCallAccumulator()
        finish_reason: str | None = None

        async for chunk in response:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            if choice.finish_reason:
                finish_reason = choice.finish_reason
            if delta is None:
                continue
            if getattr(delta, "tool_calls", None):
                tool_calls.add(delta.tool_calls)
            text = getattr(delta, "content", None) or ""
            thinking = getattr(delta, "reasoning_content", None) or ""
            if text or thinking:
                yield StreamChunk(text=text, thinking=thinking)

        yield StreamChunk(
            tool_calls=tool_calls.result(),
            is_final=True,
            finish_reason=finish_reason,
        )
