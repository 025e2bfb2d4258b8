"""Chat session orchestration.

A ChatSession is created when a conversation starts and torn down by
reset(). It owns the branch tree, the budget tracker, the summarization
policy and the streaming session, and keeps the tracker in step with every
change to the active path.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from typing import Any

from chatbranch.config import get_config
from chatbranch.config.schema import Config
from chatbranch.context.nodes import MessageDraft, MessageNode
from chatbranch.context.state import BranchInfo, ContextUsage, ThresholdNotification
from chatbranch.context.tree import MessageTree
from chatbranch.core.budget import ContextBudgetTracker
from chatbranch.core.llm.provider import LLMProvider, Message, Role
from chatbranch.core.llm.summary_generator import SummaryGenerator
from chatbranch.core.model_limits import ModelLimitsTable
from chatbranch.core.summarization import SummarizationPolicy, SummaryResult
from chatbranch.core.tokens import TokenEstimator
from chatbranch.logging import get_logger
from chatbranch.session.streaming import StreamingSession, StreamingStateError

log = get_logger("session")

DEFAULT_MAX_TOKENS = 4096


class ContextFullError(RuntimeError):
    """Raised instead of sending a request that cannot fit the context window."""

    def __init__(self, usage: ContextUsage) -> None:
        super().__init__(
            f"Context window full: {usage.used_tokens}/{usage.max_tokens} tokens"
        )
        self.usage = usage


class ChatSession:
    """One conversation: tree, active path, budget and streaming state.

    Usage:
        session = ChatSession("ollama/llama3.1")
        session.send("Hello")
        await session.respond(provider)
    """

    def __init__(
        self,
        model: str | None = None,
        *,
        config: Config | None = None,
        limits: ModelLimitsTable | None = None,
        estimator: TokenEstimator | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config if config is not None else get_config()
        self.session_id = str(uuid.uuid4())

        estimator = estimator or TokenEstimator(self._config.context.estimator)
        limits = limits or ModelLimitsTable(
            self._config.models.context_limits,
            self._config.models.default_context_length,
        )
        tracker_kwargs: dict[str, Any] = {}
        if clock is not None:
            tracker_kwargs["clock"] = clock

        self.tree = MessageTree()
        self.tracker = ContextBudgetTracker(
            model or self._config.llm.model,
            limits=limits,
            estimator=estimator,
            config=self._config.context,
            **tracker_kwargs,
        )
        self.policy = SummarizationPolicy(
            self._config.summarization.preserve_count,
            estimator,
        )
        self.streaming = StreamingSession(self.tree, self.tracker)

    @property
    def config(self) -> Config:
        return self._config

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def active_path(self) -> list[str]:
        return self.tree.cursor.path

    def active_nodes(self) -> list[MessageNode]:
        return self.tree.active_nodes()

    def messages_for_context(self) -> list[MessageNode]:
        return self.tree.messages_for_context()

    def messages_for_display(self, include_summarized: bool = False) -> list[MessageNode]:
        return self.tree.messages_for_display(include_summarized)

    def branch_info(self, node_id: str) -> BranchInfo | None:
        return self.tree.cursor.get_branch_info(node_id)

    @property
    def context_usage(self) -> ContextUsage:
        self.tracker.flush_pending()
        return self.tracker.context_usage

    @property
    def status_message(self) -> str:
        return self.tracker.status_message

    @property
    def is_streaming(self) -> bool:
        return self.streaming.is_streaming

    @property
    def streaming_node_id(self) -> str | None:
        return self.streaming.node_id

    @property
    def can_send(self) -> bool:
        return not self.is_streaming and not self.context_usage.is_full

    def on_threshold(
        self, callback: Callable[[ThresholdNotification], None]
    ) -> Callable[[], None]:
        return self.tracker.on_threshold(callback)

    def flush_notifications(self) -> list[ThresholdNotification]:
        return self.tracker.flush_notifications()

    def flush_changes(self) -> list[MessageNode]:
        """Nodes created or changed since the last call, for persistence."""
        return [node for nid in self.tree.flush_changes() if (node := self.tree.get(nid))]

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def _ensure_idle(self, action: str) -> None:
        if self.is_streaming:
            raise StreamingStateError(f"Cannot {action} while streaming")

    def _recompute(self, force_full: bool = False) -> None:
        self.tracker.update_messages(
            self.tree.messages_for_context(), force_full, force=True
        )

    def send(self, content: str, images: list[str] | None = None) -> str:
        """Append a user message at the end of the active path."""
        self._ensure_idle("send")
        node_id = self.tree.append_to_path(
            MessageDraft(role=Role.USER, content=content, images=images)
        )
        self._recompute()
        return node_id

    def add_system_message(self, content: str) -> str:
        """Append a system message (normally once, before the first send)."""
        self._ensure_idle("add a system message")
        node_id = self.tree.append_to_path(MessageDraft(role=Role.SYSTEM, content=content))
        self._recompute()
        return node_id

    def regenerate(self, node_id: str) -> str | None:
        """Open a new assistant branch next to ``node_id``; stream it with respond()."""
        self._ensure_idle("regenerate")
        new_id = self.tree.start_regeneration(node_id)
        if new_id is not None:
            self._recompute()
        return new_id

    def edit(self, node_id: str, content: str, images: list[str] | None = None) -> str | None:
        """Branch off an edited copy of user message ``node_id``."""
        self._ensure_idle("edit")
        new_id = self.tree.start_edit_with_new_branch(node_id, content, images)
        if new_id is not None:
            self._recompute()
        return new_id

    def switch_branch(self, node_id: str, direction: str) -> bool:
        self._ensure_idle("switch branches")
        switched = self.tree.cursor.switch_branch(node_id, direction)
        if switched:
            self._recompute()
        return switched

    def set_model(self, model_id: str) -> None:
        self.tracker.set_model(model_id)

    def set_custom_limit(self, tokens: int | None) -> None:
        self.tracker.set_custom_context_limit(tokens)

    async def summarize_now(
        self,
        generator: SummaryGenerator,
        preserve_count: int | None = None,
    ) -> SummaryResult | None:
        """Compact older messages into a summary node.

        Returns:
            None when there is nothing to summarize. Generator failures
            propagate and leave the tree untouched.
        """
        self._ensure_idle("summarize")
        selection = self.policy.select_messages_for_summarization(
            self.tree.messages_for_context(),
            preserve_count=preserve_count,
        )
        if selection.nothing_to_summarize:
            log.info("Nothing to summarize")
            return None

        summary_text = await generator.generate(selection.to_summarize)
        result = self.policy.apply_summary(self.tree, selection, summary_text)
        self._recompute(force_full=True)
        return result

    async def maybe_auto_compact(self, generator: SummaryGenerator) -> SummaryResult | None:
        """Summarize after a completed assistant turn if usage warrants it."""
        settings = self._config.summarization
        if not settings.auto_compact or self.is_streaming:
            return None
        if not self.policy.should_auto_compact(
            self.context_usage,
            settings.auto_compact_threshold,
            self.tree.messages_for_context(),
        ):
            return None
        log.info("Auto-compacting at %.0f%%", self.context_usage.percentage)
        return await self.summarize_now(generator)

    def reset(self) -> None:
        """Drop the whole conversation."""
        if self.is_streaming:
            self.streaming.abort()
        self.tree.reset()
        self.tracker.reset()
        log.info("Session %s reset", self.session_id)

    # -------------------------------------------------------------------------
    # Model requests
    # -------------------------------------------------------------------------

    def _pending_assistant_id(self) -> str | None:
        """Id of an empty unfinalized assistant leaf awaiting its stream."""
        leaf_id = self.tree.cursor.leaf_id
        leaf = self.tree.get(leaf_id) if leaf_id else None
        if leaf is not None and leaf.is_placeholder:
            return leaf.node_id
        return None

    def build_request_messages(self) -> list[Message]:
        """The model request for the active path."""
        return [node.to_message() for node in self.tree.messages_for_context()]

    async def respond(
        self,
        provider: LLMProvider,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Stream the model's reply into the tree.

        Streams into a pending regeneration node if there is one, otherwise
        into a new assistant node at the end of the active path.

        Returns:
            The id of the completed assistant node

        Raises:
            ContextFullError: The context is full; nothing was sent
        """
        self._ensure_idle("respond")
        usage = self.context_usage
        if usage.is_full:
            log.warning("Send intercepted: %s", self.tracker.status_message)
            raise ContextFullError(usage)

        messages = self.build_request_messages()
        node_id = self.streaming.start(self._pending_assistant_id())
        try:
            async for chunk in provider.stream(
                messages,
                max_tokens=max_tokens or self._config.llm.max_tokens or DEFAULT_MAX_TOKENS,
                temperature=temperature,
            ):
                if chunk.thinking:
                    self.streaming.append_thinking(chunk.thinking)
                if chunk.text:
                    self.streaming.append(chunk.text)
                if chunk.tool_calls:
                    self.streaming.set_tool_calls(chunk.tool_calls)
        except (Exception, asyncio.CancelledError):
            self.streaming.abort()
            raise

        self.streaming.finish()
        return node_id

    def GetDigest(self) -> dict[str, Any]:
        usage = self.tracker.context_usage
        return {
            "session_id": self.session_id,
            "model": self.tracker.model,
            "tree": self.tree.GetDigest(),
            "used_tokens": usage.used_tokens,
            "max_tokens": usage.max_tokens,
            "level": str(usage.level),
            "streaming": str(self.streaming.state),
        }
