"""Context budget tracking.

The ContextBudgetTracker estimates how many tokens the active context
consumes against the model's window, classifies the result into usage
levels, and emits one notification each time usage crosses into a worse
level. During streaming, recomputation is throttled to every N appended
tokens or T seconds (whichever comes first); a forced update always
recomputes immediately.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from chatbranch.config.schema import ContextConfig
from chatbranch.context.nodes import MessageNode
from chatbranch.context.state import (
    ContextUsage,
    ThresholdNotification,
    UsageLevel,
    classify_usage,
)
from chatbranch.core.llm.provider import Role
from chatbranch.core.model_limits import ModelLimitsTable, format_context_size
from chatbranch.core.tokens import TokenEstimator, format_token_count
from chatbranch.logging import TRACE, get_logger

log = get_logger("budget")

ThresholdCallback = Callable[[ThresholdNotification], None]


class RecomputeThrottle:
    """Decides when a throttled recompute is due.

    Due after ``every_tokens`` recorded tokens or ``interval`` seconds since
    the last recompute, whichever happens first.
    """

    def __init__(
        self,
        every_tokens: int = 20,
        interval: float = 0.15,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.every_tokens = every_tokens
        self.interval = interval
        self._clock = clock
        self._tokens = 0
        self._last: float | None = None

    def record(self, tokens: int = 1) -> None:
        self._tokens += tokens

    @property
    def is_due(self) -> bool:
        if self._last is None or self._tokens >= self.every_tokens:
            return True
        return self._clock() - self._last >= self.interval

    def mark(self) -> None:
        """Note that a recompute just happened."""
        self._tokens = 0
        self._last = self._clock()

    def reset(self) -> None:
        self._tokens = 0
        self._last = None


class ContextBudgetTracker:
    """Token budget for the active context of one conversation."""

    def __init__(
        self,
        model: str | None = None,
        *,
        limits: ModelLimitsTable | None = None,
        estimator: TokenEstimator | None = None,
        config: ContextConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or ContextConfig()
        self._limits = limits or ModelLimitsTable()
        self._estimator = estimator or TokenEstimator(self._config.estimator)
        self._throttle = RecomputeThrottle(
            every_tokens=self._config.throttle_tokens,
            interval=self._config.throttle_interval,
            clock=clock,
        )
        self._model = model
        self._custom_limit = self._config.custom_limit

        self._nodes: list[MessageNode] = []
        self._pending: list[MessageNode] | None = None
        self._message_tokens: dict[str, int] = {}
        self._used_tokens = 0
        self._last_level = UsageLevel.NORMAL

        self._pending_notifications: list[ThresholdNotification] = []
        self._callbacks: list[ThresholdCallback] = []

    # -------------------------------------------------------------------------
    # Model and limits
    # -------------------------------------------------------------------------

    @property
    def model(self) -> str | None:
        return self._model

    @property
    def throttle(self) -> RecomputeThrottle:
        return self._throttle

    @property
    def estimator(self) -> TokenEstimator:
        return self._estimator

    @property
    def max_tokens(self) -> int:
        if self._custom_limit is not None:
            return self._custom_limit
        if self._model:
            return self._limits.get_context_limit(self._model)
        return self._limits.default_context_length

    def set_model(self, model_id: str) -> None:
        """Switch models; the window changes and usage is re-evaluated."""
        self._model = model_id
        log.info("Model set to %s (%s context)", model_id, format_context_size(self.max_tokens))
        self._limit_changed()

    def set_custom_context_limit(self, tokens: int | None) -> None:
        """Override the model-derived window (None restores it)."""
        if tokens is not None and tokens <= 0:
            raise ValueError(f"Context limit must be positive, got {tokens}")
        self._custom_limit = tokens
        log.info("Custom context limit: %s", tokens)
        self._limit_changed()

    def _limit_changed(self) -> None:
        self._last_level = UsageLevel.NORMAL
        nodes = self._pending if self._pending is not None else self._nodes
        self.update_messages(nodes, force_full=True)

    # -------------------------------------------------------------------------
    # Recompute
    # -------------------------------------------------------------------------

    def update_messages(
        self,
        nodes: Sequence[MessageNode],
        force_full: bool = False,
        *,
        force: bool = False,
    ) -> bool:
        """Recompute usage over the context nodes.

        Args:
            nodes: The context view of the active path
            force_full: Drop every cached per-node cost and re-estimate
            force: Bypass the throttle but keep cached costs

        Returns:
            True if usage was recomputed, False if the update was throttled
            and kept pending
        """
        if not (force or force_full) and not self._throttle.is_due:
            self._pending = list(nodes)
            return False

        if force_full:
            for node in nodes:
                node.cached_tokens = None

        self._pending = None
        self._recompute(list(nodes))
        return True

    def flush_pending(self) -> bool:
        """Apply a throttled update now. Returns False if none was pending."""
        if self._pending is None:
            return False
        return self.update_messages(self._pending, force=True)

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def _recompute(self, nodes: list[MessageNode]) -> None:
        total = 0
        costs: dict[str, int] = {}
        for node in nodes:
            if node.cached_tokens is None:
                node.cached_tokens = self._estimator.estimate_node(node)
            costs[node.node_id] = node.cached_tokens
            total += node.cached_tokens

        self._nodes = nodes
        self._message_tokens = costs
        self._used_tokens = total
        self._throttle.mark()
        log.log(TRACE, "Context usage: %d/%d tokens", total, self.max_tokens)
        self._check_threshold()

    def invalidate_message(self, node_id: str) -> None:
        """Drop the cached cost of one node; picked up by the next recompute."""
        for node in self._nodes:
            if node.node_id == node_id:
                node.cached_tokens = None
        self._message_tokens.pop(node_id, None)

    # -------------------------------------------------------------------------
    # Thresholds
    # -------------------------------------------------------------------------

    def _check_threshold(self) -> None:
        usage = self.context_usage
        level = usage.level
        previous = self._last_level
        self._last_level = level
        if level.severity <= previous.severity:
            return

        notification = ThresholdNotification(previous=previous, current=level, usage=usage)
        self._pending_notifications.append(notification)
        log.info(
            "Context usage %s -> %s (%.0f%%)", previous, level, usage.percentage
        )
        for callback in list(self._callbacks):
            callback(notification)

    def on_threshold(self, callback: ThresholdCallback) -> Callable[[], None]:
        """Subscribe to threshold crossings.

        Returns:
            Function that unsubscribes the callback
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    @property
    def pending_notifications(self) -> list[ThresholdNotification]:
        return list(self._pending_notifications)

    def flush_notifications(self) -> list[ThresholdNotification]:
        """Get and clear pending threshold notifications."""
        notifications = self._pending_notifications
        self._pending_notifications = []
        return notifications

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def used_tokens(self) -> int:
        return self._used_tokens

    @property
    def context_usage(self) -> ContextUsage:
        max_tokens = self.max_tokens
        percentage = self._used_tokens * 100 / max_tokens if max_tokens > 0 else 0.0
        return ContextUsage(
            used_tokens=self._used_tokens,
            max_tokens=max_tokens,
            level=classify_usage(
                percentage,
                warning=self._config.warning_threshold,
                critical=self._config.critical_threshold,
            ),
        )

    @property
    def usage_level(self) -> UsageLevel:
        return self.context_usage.level

    @property
    def is_full(self) -> bool:
        return self.usage_level is UsageLevel.FULL

    def would_exceed_context(self, new_tokens: int) -> bool:
        return self._used_tokens + new_tokens > self.max_tokens

    def estimate_new_message(self, content: str, images: Sequence[str] | None = None) -> int:
        return self._estimator.estimate(content, images)

    def get_message_tokens(self, node_id: str) -> int | None:
        return self._message_tokens.get(node_id)

    def get_messages_to_trim(self, target_free_tokens: int) -> list[str]:
        """Oldest non-system messages whose removal frees ``target_free_tokens``."""
        trimmed: list[str] = []
        freed = 0
        for node in self._nodes:
            if freed >= target_free_tokens:
                break
            if node.role is Role.SYSTEM:
                continue
            trimmed.append(node.node_id)
            freed += self._message_tokens.get(node.node_id, 0)
        return trimmed

    @property
    def status_message(self) -> str:
        usage = self.context_usage
        used = format_token_count(usage.used_tokens)
        limit = format_context_size(usage.max_tokens)
        summary = f"{used} / {limit} tokens ({usage.percentage:.0f}%)"
        if usage.level is UsageLevel.FULL:
            return f"Context full: {summary}"
        if usage.level is UsageLevel.CRITICAL:
            return f"Context almost full: {summary}"
        if usage.level is UsageLevel.WARNING:
            return f"Approaching context limit: {summary}"
        return summary

    def reset(self) -> None:
        """Forget all nodes, costs, pending work and notifications."""
        self._nodes = []
        self._pending = None
        self._message_tokens.clear()
        self._used_tokens = 0
        self._last_level = UsageLevel.NORMAL
        self._pending_notifications = []
        self._throttle.reset()
