"""LLM provider protocol and base types.

The model transport is an external collaborator: the core hands it an
ordered message list and consumes a stream of content tokens, optional
thinking tokens and a terminal tool-call list.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class Role(Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the model.

    Attributes:
        id: Provider-assigned call id
        name: Tool/function name
        arguments: Raw JSON argument string as produced by the model
    """

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            arguments=data.get("arguments", "{}"),
        )


@dataclass(frozen=True, slots=True)
class Message:
    """A message in an LLM request.

    Attributes:
        role: The role (system, user, assistant)
        content: The message content
        images: Base64-encoded images attached to the message
        tool_calls: Tool calls the assistant made in this message
    """

    role: Role
    content: str
    images: tuple[str, ...] = ()
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(slots=True)
class StreamChunk:
    """A chunk from a streaming LLM response.

    Attributes:
        text: Content delta
        thinking: Reasoning delta (models with a separate thinking channel)
        tool_calls: Terminal tool-call list, set on the final chunk
        is_final: True on the last chunk of the stream
        finish_reason: Provider finish reason on the final chunk
    """

    text: str = ""
    thinking: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    is_final: bool = False
    finish_reason: str | None = None


@dataclass(slots=True)
class CompletionResult:
    """Result from a non-streaming completion."""

    content: str
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for LLM providers.

    Implementations should support both streaming and non-streaming completions.
    """

    @property
    def model(self) -> str:
        """The model identifier being used."""
        ...

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> CompletionResult:
        """Generate a completion (non-streaming)."""
        ...

    def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Generate a streaming completion.

        Yields:
            StreamChunk objects in arrival order
        """
        ...
