"""Summarization (compaction) policy.

Selects a prefix of older messages on the active path to fold into a single
synthetic summary node, and splices the summary back into the tree once an
external generator has produced the text. Recent messages (the preserved
tail) and leading system messages are never summarized.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chatbranch.context.nodes import MessageNode
from chatbranch.context.state import ContextUsage
from chatbranch.core.llm.provider import Role
from chatbranch.core.tokens import TokenEstimator
from chatbranch.logging import get_logger

if TYPE_CHECKING:
    from chatbranch.context.tree import MessageTree

log = get_logger("summarization")

DEFAULT_PRESERVE_COUNT = 4

# Fewer eligible messages than this and there is nothing worth summarizing
MIN_MESSAGES_TO_SUMMARIZE = 2

SUMMARIZATION_PROMPT = """Summarize the following conversation concisely, capturing key points, decisions, and context that would be needed to continue the conversation. Focus on:
- Main topics discussed
- Important facts or information shared
- Decisions or conclusions reached
- Any pending questions or tasks

Keep the summary brief but complete. Write in third person.

Conversation:
"""


def format_messages_for_summary(nodes: Sequence[MessageNode]) -> str:
    """Render messages as a plain transcript for the summary prompt."""
    lines = []
    for node in nodes:
        speaker = "User" if node.role is Role.USER else "Assistant"
        images = f" [{len(node.images)} image(s)]" if node.images else ""
        lines.append(f"{speaker}:{images} {node.content}")
    return "\n\n".join(lines)


def format_summary_as_context(summary: str) -> str:
    """Inline form of a summary, for callers that prepend it to a prompt."""
    return f"[Previous conversation summary: {summary}]"


@dataclass
class SummarizationSelection:
    """Split of the context view into messages to fold and messages to keep."""

    to_summarize: list[MessageNode] = field(default_factory=list)
    to_keep: list[MessageNode] = field(default_factory=list)

    @property
    def nothing_to_summarize(self) -> bool:
        return not self.to_summarize

    @property
    def summarize_ids(self) -> list[str]:
        return [n.node_id for n in self.to_summarize]


@dataclass(frozen=True, slots=True)
class SummaryResult:
    """Outcome of splicing a summary into the tree."""

    summary_id: str
    summarized_count: int
    tokens_saved: int


class SummarizationPolicy:
    """Selection, savings and splicing for conversation compaction."""

    def __init__(
        self,
        preserve_count: int = DEFAULT_PRESERVE_COUNT,
        estimator: TokenEstimator | None = None,
    ) -> None:
        if preserve_count < 0:
            raise ValueError(f"preserve_count must be >= 0, got {preserve_count}")
        self.preserve_count = preserve_count
        self._estimator = estimator or TokenEstimator()

    def select_messages_for_summarization(
        self,
        nodes: Sequence[MessageNode],
        system_message_count: int | None = None,
        preserve_count: int | None = None,
    ) -> SummarizationSelection:
        """Pick the messages to fold into a summary.

        Args:
            nodes: The context view of the active path (summarized excluded)
            system_message_count: Number of leading system messages to skip;
                counted from ``nodes`` when None
            preserve_count: Most-recent messages that are never summarized;
                the policy default when None

        Returns:
            A selection whose ``to_summarize`` is empty when fewer than two
            messages are eligible
        """
        preserve = self.preserve_count if preserve_count is None else preserve_count
        nodes = list(nodes)

        if system_message_count is None:
            system_message_count = 0
            while (
                system_message_count < len(nodes)
                and nodes[system_message_count].role is Role.SYSTEM
            ):
                system_message_count += 1

        cutoff = max(system_message_count, len(nodes) - preserve)
        to_summarize: list[MessageNode] = []
        to_keep: list[MessageNode] = []
        for i, node in enumerate(nodes):
            if system_message_count <= i < cutoff and node.role is not Role.SYSTEM:
                to_summarize.append(node)
            else:
                to_keep.append(node)

        if len(to_summarize) < MIN_MESSAGES_TO_SUMMARIZE:
            log.debug("Nothing to summarize (%d eligible)", len(to_summarize))
            return SummarizationSelection(to_summarize=[], to_keep=nodes)

        return SummarizationSelection(to_summarize=to_summarize, to_keep=to_keep)

    def calculate_token_savings(
        self, to_summarize: Sequence[MessageNode], summary_text: str
    ) -> int:
        original = self._estimator.estimate_nodes(to_summarize)
        summary = self._estimator.estimate(summary_text)
        return max(0, original - summary)

    def apply_summary(
        self,
        tree: MessageTree,
        selection: SummarizationSelection,
        summary_text: str,
    ) -> SummaryResult | None:
        """Mark the selected messages summarized and insert the summary node.

        Returns:
            None when the selection is empty (the tree is left untouched)
        """
        if selection.nothing_to_summarize:
            return None

        tokens_saved = self.calculate_token_savings(selection.to_summarize, summary_text)
        count = tree.mark_as_summarized(selection.summarize_ids)
        summary_id = tree.insert_summary_message(summary_text)
        log.info("Summarized %d messages, ~%d tokens saved", count, tokens_saved)
        return SummaryResult(
            summary_id=summary_id,
            summarized_count=count,
            tokens_saved=tokens_saved,
        )

    def should_auto_compact(
        self,
        usage: ContextUsage,
        threshold: float,
        nodes: Sequence[MessageNode] | None = None,
    ) -> bool:
        """Whether compaction should run after a completed assistant turn.

        True once usage reaches ``threshold`` percent and, when ``nodes`` are
        given, there is something outside the preserved tail to summarize.
        """
        if usage.percentage < threshold:
            return False
        if nodes is None:
            return True
        return not self.select_messages_for_summarization(nodes).nothing_to_summarize
