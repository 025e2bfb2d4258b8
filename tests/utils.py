"""Shared test utilities for chatbranch tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Any
from unittest.mock import Mock

from chatbranch.context.nodes import MessageDraft, MessageNode
from chatbranch.context.tree import MessageTree
from chatbranch.core.llm.provider import CompletionResult, Message, Role, StreamChunk
from chatbranch.core.tokens import TokenEstimator


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CharEstimator(TokenEstimator):
    """One token per content character, no image or format overhead.

    Makes budget arithmetic in tests exact.
    """

    def estimate(self, content: str, images: Sequence[str] | None = None) -> int:
        return len(content)


def build_chain(
    tree: MessageTree,
    messages: Sequence[tuple[str, str]],
    parent_id: str | None = None,
) -> list[str]:
    """Append ``(role, content)`` pairs as a linear chain.

    Args:
        tree: Tree to add to
        messages: Role name and content for each message, oldest first
        parent_id: Node to hang the chain under (None = root level)

    Returns:
        The new node ids in order
    """
    ids: list[str] = []
    for role, content in messages:
        node_id = tree.add_message(parent_id, MessageDraft(role=Role(role), content=content))
        assert node_id is not None
        ids.append(node_id)
        parent_id = node_id
    return ids


def alternating(count: int, prefix: str = "message") -> list[tuple[str, str]]:
    """``count`` user/assistant messages, starting with a user message."""
    return [
        ("user" if i % 2 == 0 else "assistant", f"{prefix} {i}")
        for i in range(count)
    ]


def contents(nodes: Sequence[MessageNode]) -> list[str]:
    return [n.content for n in nodes]


class FakeProvider:
    """LLMProvider that replays scripted stream chunks.

    Args:
        chunks: Chunks to yield, in order
        error: Raised after all chunks have been yielded
    """

    def __init__(
        self,
        chunks: Sequence[StreamChunk] = (),
        *,
        error: BaseException | None = None,
        completion: str = "summary text",
        model: str = "fake-model",
    ) -> None:
        self._chunks = list(chunks)
        self._error = error
        self._completion = completion
        self._model = model
        self.requests: list[list[Message]] = []

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> CompletionResult:
        self.requests.append(list(messages))
        return CompletionResult(content=self._completion, finish_reason="stop")

    async def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 4096,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        self.requests.append(list(messages))
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


def text_chunks(*texts: str) -> list[StreamChunk]:
    return [StreamChunk(text=t) for t in texts] + [StreamChunk(is_final=True, finish_reason="stop")]


class FakeSummaryGenerator:
    """SummaryGenerator returning fixed text and recording its input."""

    def __init__(self, text: str = "They talked.", error: Exception | None = None) -> None:
        self._text = text
        self._error = error
        self.calls: list[list[MessageNode]] = []

    async def generate(self, nodes: Sequence[MessageNode]) -> str:
        self.calls.append(list(nodes))
        if self._error is not None:
            raise self._error
        return self._text


def create_mock_llm_response(content: str = "Test response") -> Any:
    """Create a mock litellm completion response."""
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message = Mock()
    response.choices[0].message.content = content
    response.choices[0].finish_reason = "stop"

    response.usage = Mock()
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = 20
    response.usage.total_tokens = 30

    return response


def create_mock_llm_stream_chunk(
    text: str | None = "chunk",
    *,
    reasoning: str | None = None,
    tool_calls: list[Any] | None = None,
    finish_reason: str | None = None,
) -> Any:
    """Create a mock litellm streaming chunk."""
    chunk = Mock()
    chunk.choices = [Mock()]
    chunk.choices[0].delta = Mock()
    chunk.choices[0].delta.content = text
    chunk.choices[0].delta.reasoning_content = reasoning
    chunk.choices[0].delta.tool_calls = tool_calls
    chunk.choices[0].finish_reason = finish_reason
    return chunk


def create_mock_tool_call_delta(
    index: int,
    *,
    call_id: str | None = None,
    name: str | None = None,
    arguments: str | None = None,
) -> Any:
    delta = Mock()
    delta.index = index
    delta.id = call_id
    delta.function = Mock()
    delta.function.name = name
    delta.function.arguments = arguments
    return delta


async def async_iter(items: Sequence[Any]) -> AsyncIterator[Any]:
    for item in items:
        yield item
