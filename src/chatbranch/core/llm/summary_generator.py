"""Summary generation.

A SummaryGenerator turns the messages selected for compaction into summary
text. The default implementation asks an LLMProvider for a single
non-streaming completion.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from chatbranch.context.nodes import MessageNode
from chatbranch.core.llm.provider import LLMProvider, Message, Role
from chatbranch.core.summarization import SUMMARIZATION_PROMPT, format_messages_for_summary
from chatbranch.logging import get_logger

log = get_logger("llm.summary")


@runtime_checkable
class SummaryGenerator(Protocol):
    """Produces summary text for a list of messages."""

    async def generate(self, nodes: Sequence[MessageNode]) -> str:
        ...


class LLMSummaryGenerator:
    """SummaryGenerator backed by an LLMProvider.

    Uses a low temperature so repeated summaries of the same history stay
    consistent.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        max_tokens: int = 500,
        temperature: float = 0.3,
        prompt: str = SUMMARIZATION_PROMPT,
    ) -> None:
        self._provider = provider
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._prompt = prompt

    def build_prompt(self, nodes: Sequence[MessageNode]) -> str:
        return self._prompt + format_messages_for_summary(nodes)

    async def generate(self, nodes: Sequence[MessageNode]) -> str:
        if not nodes:
            raise ValueError("No messages to summarize")

        log.debug("Summarizing %d messages with %s", len(nodes), self._provider.model)
        result = await self._provider.complete(
            [Message(role=Role.USER, content=self.build_prompt(nodes))],
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        return result.content.strip()
