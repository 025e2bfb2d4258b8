"""Conversation branch tree.

The MessageTree owns every message of a conversation as an arena of nodes
keyed by id. Regenerate and edit never overwrite: they append a new sibling
under the target's parent, leaving the original subtree reachable by
switching branches. Nodes at the root level are children of a virtual root
(``root_ids``), so the first user message can be edited like any other.

All mutating methods are synchronous and touch nothing but the tree, its
cursor, and the changed-id log used for persistence mirroring.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from chatbranch.context.nodes import (
    SUMMARY_PREFIX,
    MessageDraft,
    MessageNode,
)
from chatbranch.context.path import ActivePathCursor
from chatbranch.core.llm.provider import Role, ToolCall
from chatbranch.logging import get_logger

log = get_logger("tree")


class TreeInvariantError(RuntimeError):
    """Raised by check_invariants() when parent/child links disagree."""


@dataclass(frozen=True, slots=True)
class SummaryMarker:
    """Where a summary sits in the display view and how much it replaced.

    Attributes:
        summary_id: The synthetic summary node
        position: Index of the summary node in messages_for_display()
        summarized_count: Number of messages folded into the summary
    """

    summary_id: str
    position: int
    summarized_count: int


@dataclass
class MessageTree:
    """Arena of message nodes with parent/child links by id.

    Attributes:
        _nodes: All nodes by id
        _root_ids: Root-level node ids in creation order
        _changed: Ids created or mutated since the last flush (insertion-ordered)
        cursor: The active path through the tree
    """

    _nodes: dict[str, MessageNode] = field(default_factory=dict)
    _root_ids: list[str] = field(default_factory=list)
    _changed: dict[str, None] = field(default_factory=dict)
    cursor: ActivePathCursor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.cursor = ActivePathCursor(self)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get(self, node_id: str) -> MessageNode | None:
        return self._nodes.get(node_id)

    @property
    def root_ids(self) -> tuple[str, ...]:
        return tuple(self._root_ids)

    def child_ids(self, parent_id: str | None) -> list[str]:
        """Child ids of ``parent_id`` (None = root level), in creation order.

        Returns the live list; callers outside the tree must not mutate it.
        """
        if parent_id is None:
            return self._root_ids
        node = self._nodes.get(parent_id)
        return node.children_ids if node else []

    def children(self, node_id: str | None) -> list[MessageNode]:
        return [self._nodes[cid] for cid in self.child_ids(node_id) if cid in self._nodes]

    def siblings(self, node_id: str) -> list[str]:
        """Ids of all nodes sharing ``node_id``'s parent, including itself."""
        node = self._nodes.get(node_id)
        if not node:
            return []
        return list(self.child_ids(node.parent_id))

    def path_to(self, node_id: str) -> list[str]:
        """Ids from the root level down to ``node_id`` (empty if unknown)."""
        path: list[str] = []
        current = self._nodes.get(node_id)
        while current is not None:
            path.append(current.node_id)
            if current.parent_id is None:
                break
            current = self._nodes.get(current.parent_id)
        path.reverse()
        return path

    def leaf_nodes(self) -> list[MessageNode]:
        return [n for n in self._nodes.values() if n.is_leaf]

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def _attach(self, node: MessageNode) -> None:
        self._nodes[node.node_id] = node
        self.child_ids(node.parent_id).append(node.node_id)
        self._record_change(node.node_id)
        if node.parent_id is not None:
            self._record_change(node.parent_id)

    def add_message(
        self,
        parent_id: str | None,
        draft: MessageDraft,
        *,
        finalized: bool = True,
    ) -> str | None:
        """Append a new node as the last child of ``parent_id``.

        The new node becomes part of the active path.

        Args:
            parent_id: Parent node id, or None to add at the root level
            draft: Role and content of the new node
            finalized: False for nodes that will be filled by streaming

        Returns:
            The new node id, or None if ``parent_id`` does not exist
        """
        if parent_id is not None and parent_id not in self._nodes:
            log.warning("add_message: unknown parent %s", parent_id)
            return None
        return self._create(parent_id, draft, finalized)

    def append_to_path(self, draft: MessageDraft, *, finalized: bool = True) -> str:
        """Append a new node under the leaf of the active path (or at the root)."""
        return self._create(self.cursor.leaf_id, draft, finalized)

    def _create(self, parent_id: str | None, draft: MessageDraft, finalized: bool) -> str:
        node = MessageNode(
            role=draft.role,
            content=draft.content,
            images=list(draft.images or []),
            tool_calls=list(draft.tool_calls or []),
            parent_id=parent_id,
            finalized=finalized,
        )
        self._attach(node)
        self.cursor.select(node.node_id)
        log.debug("Added %s node %s under %s", node.role, node.node_id, parent_id)
        return node.node_id

    def start_regeneration(self, assistant_id: str) -> str | None:
        """Create an empty assistant sibling to be streamed into.

        The original node and its subtree are kept and stay reachable by
        switching branches.

        Returns:
            The new node id, or None if the target is missing, is not an
            assistant message, or has no parent
        """
        target = self._nodes.get(assistant_id)
        if target is None or target.role is not Role.ASSISTANT or target.parent_id is None:
            log.warning("start_regeneration: invalid target %s", assistant_id)
            return None

        node = MessageNode(
            role=Role.ASSISTANT,
            parent_id=target.parent_id,
            finalized=False,
        )
        self._attach(node)
        self.cursor.select(node.node_id)
        log.debug("Regenerating %s as %s", assistant_id, node.node_id)
        return node.node_id

    def start_edit_with_new_branch(
        self,
        user_id: str,
        new_content: str,
        images: list[str] | None = None,
    ) -> str | None:
        """Create an edited copy of a user message as a new sibling.

        Returns:
            The new node id, or None if the target is missing or is not a
            user message
        """
        target = self._nodes.get(user_id)
        if target is None or target.role is not Role.USER:
            log.warning("start_edit_with_new_branch: invalid target %s", user_id)
            return None

        node = MessageNode(
            role=Role.USER,
            content=new_content,
            images=list(images or []),
            parent_id=target.parent_id,
        )
        self._attach(node)
        self.cursor.select(node.node_id)
        log.debug("Edited %s as %s", user_id, node.node_id)
        return node.node_id

    # -------------------------------------------------------------------------
    # Content mutation (streaming)
    # -------------------------------------------------------------------------

    def append_content(self, node_id: str, text: str) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.append_content(text)
        self._record_change(node_id)
        return True

    def update_content(self, node_id: str, content: str) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.set_content(content)
        self._record_change(node_id)
        return True

    def set_tool_calls(self, node_id: str, tool_calls: list[ToolCall]) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.set_tool_calls(tool_calls)
        self._record_change(node_id)
        return True

    def finalize(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.finalize()
        self._record_change(node_id)
        return True

    def invalidate_tokens(self, node_id: str) -> None:
        node = self._nodes.get(node_id)
        if node is not None:
            node.cached_tokens = None

    # -------------------------------------------------------------------------
    # Summarization
    # -------------------------------------------------------------------------

    def mark_as_summarized(self, node_ids: Iterable[str]) -> int:
        """Flag nodes as folded into a summary.

        Unknown ids and summary nodes are skipped.

        Returns:
            Number of nodes newly marked
        """
        marked = 0
        for node_id in node_ids:
            node = self._nodes.get(node_id)
            if node is None:
                log.warning("mark_as_summarized: unknown node %s", node_id)
                continue
            if node.is_summary:
                log.warning("mark_as_summarized: %s is a summary node", node_id)
                continue
            if not node.summarized:
                node.summarized = True
                self._record_change(node_id)
                marked += 1
        return marked

    def insert_summary_message(self, summary_text: str) -> str:
        """Splice a synthetic summary node into the active path.

        The summary goes directly after the last summarized node on the
        path, or after the leading system messages if nothing is summarized.
        It becomes the only child of that node and adopts all of its former
        children in order, so every branch below the summarization point
        sees the summary and sibling indices are unchanged.

        Returns:
            The summary node id
        """
        path = self.cursor.path
        nodes = [self._nodes[nid] for nid in path]

        insert_at = 0
        for i, node in enumerate(nodes):
            if node.summarized:
                insert_at = i + 1
        if insert_at == 0:
            while insert_at < len(nodes) and nodes[insert_at].role is Role.SYSTEM:
                insert_at += 1

        covered: set[str] = set()
        for node in nodes[:insert_at]:
            if node.is_summary:
                covered.update(node.summarized_ids)
        summarized_ids = [
            n.node_id for n in nodes[:insert_at] if n.summarized and n.node_id not in covered
        ]

        parent_id = path[insert_at - 1] if insert_at > 0 else None
        next_id = path[insert_at] if insert_at < len(path) else None

        summary = MessageNode(
            role=Role.SYSTEM,
            content=SUMMARY_PREFIX + summary_text,
            parent_id=parent_id,
            is_summary=True,
            summarized_ids=summarized_ids,
        )
        self._nodes[summary.node_id] = summary

        siblings = self.child_ids(parent_id)
        summary.children_ids = list(siblings)
        siblings[:] = [summary.node_id]
        for child_id in summary.children_ids:
            self._nodes[child_id].parent_id = summary.node_id
            self._record_change(child_id)

        self._record_change(summary.node_id)
        if parent_id is not None:
            self._record_change(parent_id)

        self.cursor.select(next_id if next_id is not None else summary.node_id)
        log.info(
            "Inserted summary %s replacing %d messages", summary.node_id, len(summarized_ids)
        )
        return summary.node_id

    # -------------------------------------------------------------------------
    # Views over the active path
    # -------------------------------------------------------------------------

    def active_nodes(self) -> list[MessageNode]:
        """All nodes on the active path, summarized ones included."""
        return [self._nodes[nid] for nid in self.cursor.path]

    def messages_for_context(self) -> list[MessageNode]:
        """Nodes sent to the model.

        Summarized originals and assistant placeholders that were never
        streamed into are excluded.
        """
        return [n for n in self.active_nodes() if not (n.summarized or n.is_placeholder)]

    def messages_for_display(self, include_summarized: bool = False) -> list[MessageNode]:
        """Nodes to render; summarized originals only when asked for."""
        if include_summarized:
            return self.active_nodes()
        return [n for n in self.active_nodes() if not n.summarized]

    def summary_markers(self) -> list[SummaryMarker]:
        """Summary nodes on the active path with their display position."""
        return [
            SummaryMarker(
                summary_id=node.node_id,
                position=i,
                summarized_count=len(node.summarized_ids),
            )
            for i, node in enumerate(self.messages_for_display())
            if node.is_summary
        ]

    # -------------------------------------------------------------------------
    # Persistence surface
    # -------------------------------------------------------------------------

    def _record_change(self, node_id: str) -> None:
        self._changed[node_id] = None

    def flush_changes(self) -> list[str]:
        """Get and clear the ids created or mutated since the last flush.

        An external store mirrors these nodes under the same ids.
        """
        changed = [nid for nid in self._changed if nid in self._nodes]
        self._changed = {}
        return changed

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self._nodes.values()],
            "root_ids": list(self._root_ids),
            "cursor": self.cursor.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageTree:
        tree = cls()
        for node_data in data.get("nodes", []):
            node = MessageNode.from_dict(node_data)
            tree._nodes[node.node_id] = node
        tree._root_ids = [rid for rid in data.get("root_ids", []) if rid in tree._nodes]
        tree.cursor.load_dict(data.get("cursor", {}))
        return tree

    def GetDigest(self) -> dict[str, Any]:
        return {
            "nodes": len(self._nodes),
            "roots": len(self._root_ids),
            "active_path_length": len(self.cursor.path),
            "leaves": len(self.leaf_nodes()),
            "summaries": sum(1 for n in self._nodes.values() if n.is_summary),
        }

    def reset(self) -> None:
        """Drop every node. The only destructive operation on the tree."""
        count = len(self._nodes)
        self._nodes.clear()
        self._root_ids.clear()
        self._changed = {}
        self.cursor.reset()
        log.info("Tree reset (%d nodes dropped)", count)

    # -------------------------------------------------------------------------
    # Consistency
    # -------------------------------------------------------------------------

    def check_invariants(self) -> None:
        """Verify parent/child links agree in both directions.

        Raises:
            TreeInvariantError: On the first inconsistency found
        """
        if len(set(self._root_ids)) != len(self._root_ids):
            raise TreeInvariantError("Duplicate root ids")

        for node_id, node in self._nodes.items():
            if node.summarized and node.is_summary:
                raise TreeInvariantError(f"{node_id} is both summary and summarized")
            if node.parent_id is None:
                if self._root_ids.count(node_id) != 1:
                    raise TreeInvariantError(f"Root {node_id} not listed once in root_ids")
            else:
                parent = self._nodes.get(node.parent_id)
                if parent is None:
                    raise TreeInvariantError(f"{node_id} has missing parent {node.parent_id}")
                if parent.children_ids.count(node_id) != 1:
                    raise TreeInvariantError(
                        f"{node_id} not listed once under parent {node.parent_id}"
                    )
            if len(set(node.children_ids)) != len(node.children_ids):
                raise TreeInvariantError(f"Duplicate children under {node_id}")
            for child_id in node.children_ids:
                child = self._nodes.get(child_id)
                if child is None or child.parent_id != node_id:
                    raise TreeInvariantError(f"{child_id} listed under {node_id} but not linked")

        for root_id in self._root_ids:
            root = self._nodes.get(root_id)
            if root is None or root.parent_id is not None:
                raise TreeInvariantError(f"root_ids entry {root_id} is not a root node")

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[MessageNode]:
        return iter(self._nodes.values())
