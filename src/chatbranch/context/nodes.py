"""Message nodes for the conversation branch tree.

A MessageNode is one user/assistant/system message. Parent and child links
are ids into the owning MessageTree's arena, never object references, so a
node serializes to a flat dict.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from chatbranch.core.llm.provider import Message, Role, ToolCall

SUMMARY_PREFIX = "[Previous conversation summary]\n\n"


class NodeFinalizedError(RuntimeError):
    """Raised when mutating the content of a finalized node."""


def generate_node_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class MessageDraft:
    """Caller-supplied content for a node that does not exist yet."""

    role: Role
    content: str = ""
    images: list[str] | None = None
    tool_calls: list[ToolCall] | None = None


@dataclass
class MessageNode:
    """A message in the conversation tree.

    Attributes:
        node_id: Opaque unique identifier
        role: system, user or assistant
        content: Message text; mutable only while the node is not finalized
        images: Base64 image payloads
        tool_calls: Tool calls requested by the model (assistant nodes)
        parent_id: Parent node id, None for nodes at the root level
        children_ids: Child ids in creation order (branch index 0 = oldest)
        summarized: Folded into a summary; hidden from display and context
        is_summary: Synthetic summary node created by compaction
        summarized_ids: For summary nodes, the ids this summary replaces
        cached_tokens: Cached token cost, None when it needs recomputing
        finalized: Content is frozen (streaming completed or never streamed)
        version: Incremented on every content mutation
    """

    role: Role
    content: str = ""
    node_id: str = field(default_factory=generate_node_id)
    images: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    parent_id: str | None = None
    children_ids: list[str] = field(default_factory=list)
    summarized: bool = False
    is_summary: bool = False
    summarized_ids: list[str] = field(default_factory=list)
    cached_tokens: int | None = None
    finalized: bool = True
    version: int = 0
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.summarized and self.is_summary:
            raise ValueError("A node cannot be both a summary and summarized")

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_leaf(self) -> bool:
        return not self.children_ids

    @property
    def is_placeholder(self) -> bool:
        """Empty assistant node created for a stream that has not started."""
        return (
            self.role is Role.ASSISTANT
            and not self.finalized
            and not self.content
            and not self.tool_calls
        )

    def _mark_changed(self) -> None:
        """Record a content mutation and drop the cached token count."""
        self.version += 1
        self.updated_at = time.time()
        self.cached_tokens = None

    def _check_mutable(self) -> None:
        if self.finalized:
            raise NodeFinalizedError(f"Node {self.node_id} is finalized")

    def set_content(self, content: str) -> MessageNode:
        self._check_mutable()
        if content != self.content:
            self.content = content
            self._mark_changed()
        return self

    def append_content(self, text: str) -> MessageNode:
        self._check_mutable()
        if text:
            self.content += text
            self._mark_changed()
        return self

    def set_images(self, images: list[str]) -> MessageNode:
        self._check_mutable()
        self.images = list(images)
        self._mark_changed()
        return self

    def set_tool_calls(self, tool_calls: list[ToolCall]) -> MessageNode:
        self._check_mutable()
        self.tool_calls = list(tool_calls)
        self._mark_changed()
        return self

    def finalize(self) -> MessageNode:
        self.finalized = True
        return self

    def to_message(self) -> Message:
        """Convert to the LLM transport shape."""
        return Message(
            role=self.role,
            content=self.content,
            images=tuple(self.images),
            tool_calls=tuple(self.tool_calls),
        )

    def GetDigest(self) -> dict[str, Any]:
        return {
            "id": self.node_id,
            "role": self.role.value,
            "content_length": len(self.content),
            "images": len(self.images),
            "children": len(self.children_ids),
            "summarized": self.summarized,
            "is_summary": self.is_summary,
            "cached_tokens": self.cached_tokens,
            "version": self.version,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an external store; reload restores the same id."""
        return {
            "node_id": self.node_id,
            "role": self.role.value,
            "content": self.content,
            "images": list(self.images),
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "parent_id": self.parent_id,
            "children_ids": list(self.children_ids),
            "summarized": self.summarized,
            "is_summary": self.is_summary,
            "summarized_ids": list(self.summarized_ids),
            "finalized": self.finalized,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageNode:
        """Deserialize a node. The token cache always starts empty."""
        return cls(
            node_id=data["node_id"],
            role=Role(data["role"]),
            content=data.get("content", ""),
            images=list(data.get("images", [])),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls", [])],
            parent_id=data.get("parent_id"),
            children_ids=list(data.get("children_ids", [])),
            summarized=data.get("summarized", False),
            is_summary=data.get("is_summary", False),
            summarized_ids=list(data.get("summarized_ids", [])),
            finalized=data.get("finalized", True),
            version=data.get("version", 0),
            created_at=data.get("created_at", time.time()),
            updated_at=data.get("updated_at", time.time()),
        )
