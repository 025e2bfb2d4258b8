"""Streaming into a single assistant node.

At most one node is being generated at a time. Tokens are appended to that
node in place; the context budget is recomputed on a throttle while tokens
arrive and unconditionally when the stream finishes or is aborted.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

from chatbranch.context.nodes import MessageDraft
from chatbranch.context.tree import MessageTree
from chatbranch.core.budget import ContextBudgetTracker, RecomputeThrottle
from chatbranch.core.llm.provider import Role, ToolCall
from chatbranch.logging import get_logger

log = get_logger("streaming")

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

__all__ = [
    "RecomputeThrottle",
    "StreamState",
    "StreamingSession",
    "StreamingStateError",
    "THINK_CLOSE",
    "THINK_OPEN",
]


class StreamState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"

    def __str__(self) -> str:
        return self.value


class StreamingStateError(RuntimeError):
    """Raised when a streaming call does not fit the current state."""


class StreamingSession:
    """Owns the single in-flight assistant node of a conversation."""

    def __init__(self, tree: MessageTree, tracker: ContextBudgetTracker) -> None:
        self._tree = tree
        self._tracker = tracker
        self._state = StreamState.IDLE
        self._node_id: str | None = None
        self._token_count = 0
        self._in_thinking = False

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._state is StreamState.STREAMING

    @property
    def node_id(self) -> str | None:
        return self._node_id

    @property
    def token_count(self) -> int:
        return self._token_count

    def start(self, node_id: str | None = None) -> str:
        """Begin streaming.

        Args:
            node_id: An empty, unfinalized assistant node to stream into
                (as created by regeneration). When None, a new assistant
                node is created under the active leaf.

        Returns:
            The id of the node being streamed into

        Raises:
            StreamingStateError: If a stream is already active, or
                ``node_id`` is not an empty unfinalized assistant node
        """
        if self.is_streaming:
            raise StreamingStateError(f"Already streaming into {self._node_id}")

        if node_id is None:
            node_id = self._tree.append_to_path(
                MessageDraft(role=Role.ASSISTANT), finalized=False
            )
        else:
            node = self._tree.get(node_id)
            if (
                node is None
                or node.role is not Role.ASSISTANT
                or node.finalized
                or node.content
            ):
                raise StreamingStateError(f"Cannot stream into node {node_id}")
            self._tree.cursor.select(node_id)

        self._state = StreamState.STREAMING
        self._node_id = node_id
        self._token_count = 0
        self._in_thinking = False
        self._tracker.update_messages(self._tree.messages_for_context(), force=True)
        log.debug("Streaming started into %s", node_id)
        return node_id

    def _require_streaming(self) -> str:
        if not self.is_streaming or self._node_id is None:
            raise StreamingStateError("No active stream")
        return self._node_id

    def _tick(self) -> None:
        self._token_count += 1
        self._tracker.throttle.record()
        self._tracker.update_messages(self._tree.messages_for_context())

    def append(self, token: str) -> None:
        node_id = self._require_streaming()
        if not token:
            return
        if self._in_thinking:
            self._tree.append_content(node_id, THINK_CLOSE)
            self._in_thinking = False
        self._tree.append_content(node_id, token)
        self._tick()

    def append_thinking(self, token: str) -> None:
        """Append a reasoning token inside a <think> block of the content."""
        node_id = self._require_streaming()
        if not token:
            return
        if not self._in_thinking:
            self._tree.append_content(node_id, THINK_OPEN)
            self._in_thinking = True
        self._tree.append_content(node_id, token)
        self._tick()

    def set_tool_calls(self, tool_calls: Sequence[ToolCall]) -> None:
        node_id = self._require_streaming()
        self._tree.set_tool_calls(node_id, list(tool_calls))

    def _end(self, close_thinking: bool) -> str:
        node_id = self._require_streaming()
        if close_thinking and self._in_thinking:
            self._tree.append_content(node_id, THINK_CLOSE)
        self._tree.finalize(node_id)

        self._state = StreamState.IDLE
        self._node_id = None
        self._in_thinking = False
        self._tracker.update_messages(self._tree.messages_for_context(), force_full=True)
        return node_id

    def finish(self) -> str:
        """Finalize the node after a complete stream."""
        node_id = self._end(close_thinking=True)
        log.debug("Streaming finished for %s (%d tokens)", node_id, self._token_count)
        return node_id

    def abort(self) -> str:
        """Finalize the node with whatever content has arrived so far."""
        node_id = self._end(close_thinking=False)
        log.info("Streaming aborted for %s after %d tokens", node_id, self._token_count)
        return node_id
