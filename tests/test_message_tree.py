"""Tests for the MessageTree arena."""

from __future__ import annotations

import random

import pytest

from chatbranch.context.nodes import SUMMARY_PREFIX, MessageDraft, NodeFinalizedError
from chatbranch.context.tree import MessageTree, TreeInvariantError
from chatbranch.core.llm.provider import Role

from tests.utils import alternating, build_chain, contents


class TestAddMessage:
    """Tests for appending nodes."""

    def test_root_message(self, tree: MessageTree) -> None:
        node_id = tree.add_message(None, MessageDraft(role=Role.USER, content="hi"))
        assert node_id is not None
        node = tree.get(node_id)
        assert node is not None
        assert node.parent_id is None
        assert tree.root_ids == (node_id,)
        assert tree.cursor.path == [node_id]

    def test_child_linked_both_ways(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, [("user", "hi"), ("assistant", "hello")])
        assert tree.get(b).parent_id == a
        assert tree.get(a).children_ids == [b]
        assert tree.cursor.path == [a, b]

    def test_unknown_parent_returns_none(self, tree: MessageTree) -> None:
        assert tree.add_message("missing", MessageDraft(role=Role.USER)) is None
        assert len(tree) == 0

    def test_new_node_becomes_active(self, tree: MessageTree) -> None:
        a, b, c = build_chain(tree, alternating(3))
        # A second child under a: active path follows it
        d = tree.add_message(a, MessageDraft(role=Role.ASSISTANT, content="alt"))
        assert tree.cursor.path == [a, d]

    def test_append_to_path(self, tree: MessageTree) -> None:
        first = tree.append_to_path(MessageDraft(role=Role.USER, content="hi"))
        second = tree.append_to_path(MessageDraft(role=Role.ASSISTANT, content="hello"))
        assert tree.root_ids == (first,)
        assert tree.get(second).parent_id == first
        assert tree.cursor.path == [first, second]

    def test_lookup_helpers(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, [("user", "hi"), ("assistant", "hello")])
        assert a in tree
        assert "missing" not in tree
        assert tree.get("missing") is None
        assert [n.node_id for n in tree.children(a)] == [b]
        assert tree.siblings(b) == [b]
        assert tree.path_to(b) == [a, b]
        assert [n.node_id for n in tree.leaf_nodes()] == [b]
        assert {n.node_id for n in tree} == {a, b}


class TestRegeneration:
    """Regeneration adds a sibling and never touches the original."""

    def test_creates_sibling(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, [("user", "hi"), ("assistant", "hello")])
        c = tree.start_regeneration(b)
        assert c is not None
        assert tree.get(a).children_ids == [b, c]
        node = tree.get(c)
        assert node.role is Role.ASSISTANT
        assert node.content == ""
        assert not node.finalized
        assert tree.cursor.path == [a, c]

    def test_original_untouched(self, tree: MessageTree) -> None:
        a, b, c, d = build_chain(tree, alternating(4))
        before = tree.get(b).to_dict()
        tree.start_regeneration(b)
        assert tree.get(b).to_dict() == before
        assert tree.get(b).children_ids == [c]
        assert tree.get(c).children_ids == [d]

    def test_unstreamed_regeneration_not_in_context(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, [("user", "hi"), ("assistant", "hello")])
        c = tree.start_regeneration(b)
        d = tree.append_to_path(MessageDraft(role=Role.USER, content="next"))
        assert tree.cursor.path == [a, c, d]
        assert contents(tree.messages_for_context()) == ["hi", "next"]

        tree.append_content(c, "hey")
        assert contents(tree.messages_for_context()) == ["hi", "hey", "next"]

    @pytest.mark.parametrize("role", ["user", "system"])
    def test_wrong_role_returns_none(self, tree: MessageTree, role: str) -> None:
        (a,) = build_chain(tree, [(role, "x")])
        assert tree.start_regeneration(a) is None

    def test_root_assistant_returns_none(self, tree: MessageTree) -> None:
        (a,) = build_chain(tree, [("assistant", "orphan")])
        assert tree.start_regeneration(a) is None

    def test_unknown_returns_none(self, tree: MessageTree) -> None:
        assert tree.start_regeneration("missing") is None


class TestEdit:
    """Editing creates a new user sibling."""

    def test_edit_creates_sibling(self, tree: MessageTree) -> None:
        a, b, c, d = build_chain(tree, alternating(4))
        e = tree.start_edit_with_new_branch(c, "edited", ["img"])
        assert e is not None
        assert tree.get(b).children_ids == [c, e]
        assert tree.get(e).content == "edited"
        assert tree.get(e).images == ["img"]
        assert tree.get(c).content == "message 2"
        assert tree.cursor.path == [a, b, e]

    def test_edit_root_message(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, alternating(2))
        e = tree.start_edit_with_new_branch(a, "first, edited")
        assert tree.root_ids == (a, e)
        assert tree.get(e).parent_id is None
        assert tree.cursor.path == [e]
        tree.check_invariants()

    def test_edit_non_user_returns_none(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, alternating(2))
        assert tree.start_edit_with_new_branch(b, "nope") is None
        assert tree.start_edit_with_new_branch("missing", "nope") is None


class TestContentMutation:
    def test_append_to_unfinalized(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, [("user", "hi"), ("assistant", "hello")])
        c = tree.start_regeneration(b)
        tree.append_content(c, "hel")
        tree.append_content(c, "lo")
        assert tree.get(c).content == "hello"

    def test_finalized_rejects_content_change(self, tree: MessageTree) -> None:
        (a,) = build_chain(tree, [("user", "hi")])
        with pytest.raises(NodeFinalizedError):
            tree.update_content(a, "changed")

    def test_unknown_node_returns_false(self, tree: MessageTree) -> None:
        assert tree.append_content("missing", "x") is False
        assert tree.update_content("missing", "x") is False
        assert tree.finalize("missing") is False


class TestSummaryInsertion:
    """Tests for marking and splicing summaries."""

    def test_mark_skips_unknown_and_summary(self, tree: MessageTree) -> None:
        ids = build_chain(tree, alternating(6))
        assert tree.mark_as_summarized([ids[0], "missing"]) == 1
        summary_id = tree.insert_summary_message("short")
        assert tree.mark_as_summarized([summary_id]) == 0
        assert not tree.get(summary_id).summarized

    def test_summary_replaces_prefix_in_context(self, tree: MessageTree) -> None:
        ids = build_chain(tree, alternating(6))
        tree.mark_as_summarized(ids[:4])
        summary_id = tree.insert_summary_message("They said hello.")

        summary = tree.get(summary_id)
        assert summary.is_summary
        assert summary.role is Role.SYSTEM
        assert summary.content == SUMMARY_PREFIX + "They said hello."
        assert summary.summarized_ids == ids[:4]

        context = tree.messages_for_context()
        assert [n.node_id for n in context] == [summary_id, ids[4], ids[5]]
        assert tree.cursor.path == ids[:4] + [summary_id] + ids[4:]
        tree.check_invariants()

    def test_summary_adopts_whole_sibling_group(self, tree: MessageTree) -> None:
        ids = build_chain(tree, alternating(4))
        alt = tree.add_message(ids[1], MessageDraft(role=Role.USER, content="alt"))
        tree.cursor.switch_to(alt, ids[2])
        tree.mark_as_summarized(ids[:2])
        summary_id = tree.insert_summary_message("sum")

        assert tree.get(ids[1]).children_ids == [summary_id]
        assert tree.get(summary_id).children_ids == [ids[2], alt]
        assert tree.get(alt).parent_id == summary_id
        assert tree.cursor.path == ids[:2] + [summary_id] + ids[2:]
        tree.check_invariants()

    def test_branches_below_summary_keep_history(self, tree: MessageTree) -> None:
        ids = build_chain(tree, alternating(10))
        edited = tree.start_edit_with_new_branch(ids[6], "message 6 edited")
        tree.cursor.switch_to(edited, ids[6])
        assert tree.cursor.get_branch_info(ids[6]).total_count == 2

        tree.mark_as_summarized(ids[:6])
        summary_id = tree.insert_summary_message("sum")

        info = tree.cursor.get_branch_info(ids[6])
        assert (info.current_index, info.total_count) == (0, 2)
        assert not tree.cursor.get_branch_info(summary_id).has_siblings

        assert tree.cursor.switch_branch(ids[6], "next")
        assert contents(tree.messages_for_context()) == [
            SUMMARY_PREFIX + "sum",
            "message 6 edited",
        ]
        tree.check_invariants()

    def test_summary_after_leading_system(self, tree: MessageTree) -> None:
        ids = build_chain(tree, [("system", "be brief")] + alternating(4))
        summary_id = tree.insert_summary_message("nothing marked")
        assert tree.cursor.path[:2] == [ids[0], summary_id]
        assert tree.get(summary_id).summarized_ids == []

    def test_summary_on_empty_tree(self, tree: MessageTree) -> None:
        summary_id = tree.insert_summary_message("empty")
        assert tree.root_ids == (summary_id,)
        assert tree.cursor.path == [summary_id]

    def test_second_summary_records_only_new_nodes(self, tree: MessageTree) -> None:
        ids = build_chain(tree, alternating(8))
        tree.mark_as_summarized(ids[:2])
        first = tree.insert_summary_message("first")
        tree.mark_as_summarized(ids[2:5])
        second = tree.insert_summary_message("second")
        assert tree.get(first).summarized_ids == ids[:2]
        assert tree.get(second).summarized_ids == ids[2:5]
        assert contents(tree.messages_for_context()) == [
            SUMMARY_PREFIX + "first",
            SUMMARY_PREFIX + "second",
            "message 5",
            "message 6",
            "message 7",
        ]

    def test_markers(self, tree: MessageTree) -> None:
        ids = build_chain(tree, [("system", "sys")] + alternating(6))
        tree.mark_as_summarized(ids[1:5])
        summary_id = tree.insert_summary_message("s")
        (marker,) = tree.summary_markers()
        assert marker.summary_id == summary_id
        assert marker.position == 1
        assert marker.summarized_count == 4

    def test_display_can_include_originals(self, tree: MessageTree) -> None:
        ids = build_chain(tree, alternating(4))
        tree.mark_as_summarized(ids[:2])
        tree.insert_summary_message("s")
        assert len(tree.messages_for_display()) == 3
        assert len(tree.messages_for_display(include_summarized=True)) == 5


class TestPersistence:
    def test_flush_changes_in_first_change_order(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, alternating(2))
        assert tree.flush_changes() == [a, b]
        assert tree.flush_changes() == []

    def test_regeneration_reports_parent_and_new_node(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, alternating(2))
        tree.flush_changes()
        c = tree.start_regeneration(b)
        tree.append_content(c, "x")
        assert tree.flush_changes() == [c, a]

    def test_dict_roundtrip(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, alternating(2))
        c = tree.start_regeneration(b)
        tree.finalize(c)
        tree.cursor.switch_to(c, b)

        restored = MessageTree.from_dict(tree.to_dict())
        assert restored.root_ids == (a,)
        assert restored.cursor.path == [a, b]
        assert restored.get(a).children_ids == [b, c]
        restored.check_invariants()

    def test_reset(self, tree: MessageTree) -> None:
        build_chain(tree, alternating(3))
        tree.reset()
        assert len(tree) == 0
        assert tree.cursor.path == []
        assert tree.flush_changes() == []

    def test_digest(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, alternating(2))
        tree.start_regeneration(b)
        digest = tree.GetDigest()
        assert digest["nodes"] == 3
        assert digest["leaves"] == 2
        assert digest["active_path_length"] == 2


class TestInvariants:
    """Parent/child links stay consistent under arbitrary operations."""

    def test_detects_broken_link(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, alternating(2))
        tree.get(a).children_ids.clear()
        with pytest.raises(TreeInvariantError):
            tree.check_invariants()

    def test_detects_missing_parent(self, tree: MessageTree) -> None:
        a, b = build_chain(tree, alternating(2))
        tree.get(b).parent_id = "ghost"
        with pytest.raises(TreeInvariantError):
            tree.check_invariants()

    @pytest.mark.parametrize("seed", range(5))
    def test_randomized_operations(self, tree: MessageTree, seed: int) -> None:
        rng = random.Random(seed)
        for step in range(200):
            node_ids = [n.node_id for n in tree]
            op = rng.choice(["add", "add", "regenerate", "edit", "switch", "summarize"])
            if op == "add" or not node_ids:
                parent = rng.choice(node_ids + [None]) if node_ids else None
                role = rng.choice([Role.USER, Role.ASSISTANT])
                tree.add_message(parent, MessageDraft(role=role, content=f"m{step}"))
            elif op == "regenerate":
                new_id = tree.start_regeneration(rng.choice(node_ids))
                if new_id is not None:
                    tree.finalize(new_id)
            elif op == "edit":
                tree.start_edit_with_new_branch(rng.choice(node_ids), f"e{step}")
            elif op == "switch":
                tree.cursor.switch_branch(rng.choice(node_ids), rng.choice(["prev", "next"]))
            else:
                path = tree.cursor.path
                tree.mark_as_summarized(path[: len(path) // 2])
                tree.insert_summary_message(f"s{step}")
            tree.check_invariants()

        path = tree.cursor.path
        for parent_id, child_id in zip(path, path[1:]):
            assert tree.get(child_id).parent_id == parent_id
