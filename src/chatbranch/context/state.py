"""Derived, read-only state types for the conversation tree.

This module defines:
- BranchInfo: a node's position among its siblings ("2/3" navigators)
- UsageLevel: context budget classification
- ContextUsage: used/max tokens snapshot
- ThresholdNotification: one crossing into a worse UsageLevel
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True, slots=True)
class BranchInfo:
    """Position of a node among its siblings.

    Attributes:
        current_index: Zero-based index in the parent's child list
        total_count: Number of siblings, including the node itself
        sibling_ids: Sibling ids in creation order
    """

    current_index: int
    total_count: int
    sibling_ids: tuple[str, ...] = ()

    @property
    def has_siblings(self) -> bool:
        """Whether a branch navigator should render at all."""
        return self.total_count > 1

    def __str__(self) -> str:
        return f"{self.current_index + 1}/{self.total_count}"


class UsageLevel(Enum):
    """Context budget classification.

    - NORMAL: below the warning threshold (default < 85%)
    - WARNING: 85-94%
    - CRITICAL: 95-99%
    - FULL: at or above 100%; new sends must be intercepted
    """

    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    FULL = "full"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def __str__(self) -> str:
        return self.value


_SEVERITY = {
    UsageLevel.NORMAL: 0,
    UsageLevel.WARNING: 1,
    UsageLevel.CRITICAL: 2,
    UsageLevel.FULL: 3,
}


def classify_usage(
    percentage: float,
    warning: float = 85.0,
    critical: float = 95.0,
) -> UsageLevel:
    """Classify a usage percentage against the thresholds."""
    if percentage >= 100.0:
        return UsageLevel.FULL
    if percentage >= critical:
        return UsageLevel.CRITICAL
    if percentage >= warning:
        return UsageLevel.WARNING
    return UsageLevel.NORMAL


@dataclass(frozen=True, slots=True)
class ContextUsage:
    """Snapshot of context-window consumption."""

    used_tokens: int
    max_tokens: int
    level: UsageLevel = UsageLevel.NORMAL

    @property
    def percentage(self) -> float:
        if self.max_tokens <= 0:
            return 0.0
        return self.used_tokens * 100 / self.max_tokens

    @property
    def remaining_tokens(self) -> int:
        return max(0, self.max_tokens - self.used_tokens)

    @property
    def is_full(self) -> bool:
        return self.level is UsageLevel.FULL


@dataclass(slots=True)
class ThresholdNotification:
    """A crossing from ``previous`` into the worse level ``current``."""

    previous: UsageLevel
    current: UsageLevel
    usage: ContextUsage
    timestamp: float = field(default_factory=time.time)
