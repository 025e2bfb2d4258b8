"""Token estimation for chat messages.

Exact tokenization differs per model, so budgeting uses a fast hybrid
heuristic by default:

- Character-based: ~3.7 characters per token (LLaMA-family average)
- Word-based: ~1.3 tokens per word (accounts for subword splits)
- Hybrid: weighted 60/40 blend of the two

A tiktoken-backed counter is available for callers that prefer a real BPE
count over speed.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import tiktoken

if TYPE_CHECKING:
    from chatbranch.context.nodes import MessageNode
    from chatbranch.core.llm.provider import ToolCall

# Vision models encode an image as a roughly fixed token block (LLaVA ~765)
TOKENS_PER_IMAGE = 765

CHARS_PER_TOKEN = 3.7

TOKENS_PER_WORD = 1.3

# Role markers and special tokens around every message
MESSAGE_OVERHEAD_TOKENS = 4

_CHAR_WEIGHT = 0.6
_WORD_WEIGHT = 0.4

_WORD_SPLIT = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class TokenEstimate:
    """Token estimate for a single message."""

    text_tokens: int
    image_tokens: int = 0
    overhead_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.text_tokens + self.image_tokens + self.overhead_tokens


def estimate_tokens_from_chars(text: str) -> int:
    """Estimate token count from character length."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_tokens_from_words(text: str) -> int:
    """Estimate token count from whitespace-separated word count."""
    if not text:
        return 0
    words = sum(1 for w in _WORD_SPLIT.split(text) if w)
    return math.ceil(words * TOKENS_PER_WORD)


def estimate_tokens(text: str) -> int:
    """Hybrid token estimate (weighted blend of char and word estimates)."""
    if not text:
        return 0
    char_estimate = estimate_tokens_from_chars(text)
    word_estimate = estimate_tokens_from_words(text)
    return math.ceil(char_estimate * _CHAR_WEIGHT + word_estimate * _WORD_WEIGHT)


def estimate_image_tokens(image_count: int) -> int:
    """Estimate tokens for ``image_count`` attached images."""
    return max(0, image_count) * TOKENS_PER_IMAGE


def estimate_format_overhead(message_count: int) -> int:
    """Estimate role-marker/special-token overhead for a message list."""
    return max(0, message_count) * MESSAGE_OVERHEAD_TOKENS


def estimate_message_tokens(
    content: str,
    images: Sequence[str] | None = None,
) -> TokenEstimate:
    """Get the complete token estimate for one message.

    Includes the per-message format overhead, so summing estimates over a
    conversation gives the full conversation cost.
    """
    return TokenEstimate(
        text_tokens=estimate_tokens(content),
        image_tokens=estimate_image_tokens(len(images) if images else 0),
        overhead_tokens=MESSAGE_OVERHEAD_TOKENS,
    )


def estimate_conversation_tokens(
    messages: Iterable[tuple[str, Sequence[str] | None]],
) -> int:
    """Estimate total tokens for ``(content, images)`` pairs."""
    return sum(estimate_message_tokens(c, i).total_tokens for c, i in messages)


# Singleton encoder (loaded once on first use)
_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Get cached tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("o200k_base")
    return _encoder


# Content hash -> token count cache
_token_cache: dict[int, int] = {}


def count_tokens(text: str) -> int:
    """Count tokens with tiktoken, cached by content hash."""
    if not text:
        return 0
    key = hash(text)
    if key not in _token_cache:
        _token_cache[key] = len(_get_encoder().encode(text))
    return _token_cache[key]


def invalidate_cache() -> None:
    """Clear the tiktoken count cache."""
    _token_cache.clear()


ESTIMATOR_STRATEGIES = ("heuristic", "tiktoken")


class TokenEstimator:
    """Per-message cost function used by budgeting and summarization.

    The estimator is stateless apart from its strategy choice; per-node
    caching lives on the nodes themselves.
    """

    def __init__(self, strategy: str = "heuristic") -> None:
        if strategy not in ESTIMATOR_STRATEGIES:
            raise ValueError(
                f"Unknown estimator strategy {strategy!r}; "
                f"expected one of {', '.join(ESTIMATOR_STRATEGIES)}"
            )
        self._strategy = strategy

    @property
    def strategy(self) -> str:
        return self._strategy

    def estimate_text(self, text: str) -> int:
        if self._strategy == "tiktoken":
            return count_tokens(text)
        return estimate_tokens(text)

    def estimate(self, content: str, images: Sequence[str] | None = None) -> int:
        """Cost of one message with the given content and images."""
        return (
            self.estimate_text(content)
            + estimate_image_tokens(len(images) if images else 0)
            + MESSAGE_OVERHEAD_TOKENS
        )

    def estimate_tool_calls(self, tool_calls: Sequence[ToolCall]) -> int:
        """Cost of tool-call records echoed back to the model."""
        return sum(self.estimate_text(call.name + call.arguments) for call in tool_calls)

    def estimate_node(self, node: MessageNode) -> int:
        """Cost of a message node (ignores any cached value on the node)."""
        return self.estimate(node.content, node.images) + self.estimate_tool_calls(node.tool_calls)

    def estimate_nodes(self, nodes: Iterable[MessageNode]) -> int:
        return sum(self.estimate_node(n) for n in nodes)


def format_token_count(tokens: int) -> str:
    """Format a token count for display (e.g., "950", "1.2K", "15K")."""
    if tokens < 1000:
        return str(tokens)
    if tokens < 10000:
        return f"{tokens / 1000:.1f}K"
    return f"{round(tokens / 1000)}K"
