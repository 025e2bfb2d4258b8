"""Active path resolution.

The active path is the sequence of node ids from the root level down to a
leaf. At each branch point the cursor descends into the child the user last
selected there, or the most recently created child when no selection exists.
The resolved path is memoized and recomputed only after invalidate().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from chatbranch.context.state import BranchInfo
from chatbranch.logging import get_logger

if TYPE_CHECKING:
    from chatbranch.context.tree import MessageTree

log = get_logger("path")


class ActivePathCursor:
    """Per-tree selection state plus the memoized active path.

    Selections are keyed by parent id (None for the root level) and name the
    child to descend into. Unknown or stale selections fall back to the
    newest child.
    """

    def __init__(self, tree: MessageTree) -> None:
        self._tree = tree
        self._selected: dict[str | None, str] = {}
        self._path: list[str] | None = None

    def _choose(self, parent_id: str | None) -> str | None:
        children = self._tree.child_ids(parent_id)
        if not children:
            return None
        chosen = self._selected.get(parent_id)
        if chosen is not None and chosen in children:
            return chosen
        return children[-1]

    def _resolve(self) -> list[str]:
        path: list[str] = []
        child = self._choose(None)
        while child is not None:
            path.append(child)
            child = self._choose(child)
        return path

    @property
    def path(self) -> list[str]:
        """The active path, root first."""
        if self._path is None:
            self._path = self._resolve()
        return list(self._path)

    def get_path(self) -> list[str]:
        return self.path

    @property
    def leaf_id(self) -> str | None:
        path = self.path
        return path[-1] if path else None

    def invalidate(self) -> None:
        self._path = None

    def select(self, node_id: str) -> bool:
        """Make ``node_id`` part of the active path.

        Every ancestor's selection is pointed along the chain leading to it.
        Below ``node_id`` existing selections (or the newest child) apply.
        """
        if self._tree.get(node_id) is None:
            return False
        current = self._tree.get(node_id)
        while current is not None:
            self._selected[current.parent_id] = current.node_id
            if current.parent_id is None:
                break
            current = self._tree.get(current.parent_id)
        self.invalidate()
        return True

    def get_branch_info(self, node_id: str) -> BranchInfo | None:
        node = self._tree.get(node_id)
        if node is None:
            return None
        siblings = self._tree.child_ids(node.parent_id)
        if node_id not in siblings:
            return None
        return BranchInfo(
            current_index=siblings.index(node_id),
            total_count=len(siblings),
            sibling_ids=tuple(siblings),
        )

    def switch_branch(self, node_id: str, direction: str) -> bool:
        """Move to the previous or next sibling of ``node_id``, wrapping around.

        Args:
            node_id: Any node in the sibling group
            direction: "prev" or "next"

        Returns:
            True if the active path changed
        """
        if direction not in ("prev", "next"):
            raise ValueError(f"direction must be 'prev' or 'next', not {direction!r}")

        info = self.get_branch_info(node_id)
        if info is None or not info.has_siblings:
            return False

        step = 1 if direction == "next" else -1
        target_id = info.sibling_ids[(info.current_index + step) % info.total_count]
        return self.switch_to(node_id, target_id)

    def switch_to(self, node_id: str, target_id: str) -> bool:
        """Replace ``node_id`` on the active path with its sibling ``target_id``.

        The path above the branch point is kept as is. Below ``target_id`` the
        cursor follows the newest child at each level and drops selections
        left over from earlier visits to that subtree.
        """
        node = self._tree.get(node_id)
        target = self._tree.get(target_id)
        if node is None or target is None or node.parent_id != target.parent_id:
            return False

        path = self.path
        if node_id in path:
            prefix = path[: path.index(node_id)]
        else:
            prefix = self._tree.path_to(node.parent_id) if node.parent_id else []
            if node.parent_id is not None:
                self.select(node.parent_id)

        self._selected[target.parent_id] = target_id
        suffix = [target_id]
        current = target_id
        while True:
            self._selected.pop(current, None)
            children = self._tree.child_ids(current)
            if not children:
                break
            current = children[-1]
            suffix.append(current)

        self._path = prefix + suffix
        log.debug("Switched branch %s -> %s", node_id, target_id)
        return True

    def reset(self) -> None:
        self._selected.clear()
        self._path = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "selected": [[parent, child] for parent, child in self._selected.items()],
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        self._selected = {parent: child for parent, child in data.get("selected", [])}
        self._path = None
