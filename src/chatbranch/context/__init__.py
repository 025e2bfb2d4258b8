"""Conversation tree: message nodes, branch arena and active path.

- MessageNode: one message, linked to its parent and children by id
- MessageTree: arena of nodes; regenerate/edit add siblings, never overwrite
- ActivePathCursor: the root-to-leaf path rendered and sent to the model
"""

from chatbranch.context.nodes import (
    SUMMARY_PREFIX,
    MessageDraft,
    MessageNode,
    NodeFinalizedError,
)
from chatbranch.context.path import ActivePathCursor
from chatbranch.context.state import (
    BranchInfo,
    ContextUsage,
    ThresholdNotification,
    UsageLevel,
    classify_usage,
)
from chatbranch.context.tree import MessageTree, SummaryMarker, TreeInvariantError

__all__ = [
    # Nodes
    "MessageDraft",
    "MessageNode",
    "NodeFinalizedError",
    "SUMMARY_PREFIX",
    # Tree
    "ActivePathCursor",
    "MessageTree",
    "SummaryMarker",
    "TreeInvariantError",
    # State
    "BranchInfo",
    "ContextUsage",
    "ThresholdNotification",
    "UsageLevel",
    "classify_usage",
]
