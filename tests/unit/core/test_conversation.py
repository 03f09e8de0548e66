"""
test_conversation.py - ConversationStore bounding rules

- Length never exceeds max_history
- The first message (the instruction) is never dropped
- An invocation and its outcome are dropped together
- Only the most recent screenshots are kept
"""

from __future__ import annotations

import pytest

from omni_pilot.core.conversation import (
    AssistantToolInvocation,
    ConversationStore,
    ToolOutcome,
    UserTurn,
)


def _assert_pairs_intact(store: ConversationStore) -> None:
    invocation_ids = {
        m.invocation_id for m in store.messages if isinstance(m, AssistantToolInvocation)
    }
    outcome_ids = {
        m.invocation_id for m in store.messages if isinstance(m, ToolOutcome) and m.invocation_id
    }
    # Every linked outcome still has its invocation
    assert outcome_ids <= invocation_ids
    # At most the newest invocation may still be waiting
    assert len(invocation_ids - outcome_ids) <= 1


class TestAppending:
    """Tests for the append operations."""

    def test_messages_keep_order(self):
        """Should return messages in append order."""
        store = ConversationStore()
        store.add_user("open the browser", image="aGVsbG8=", width=800, height=600)
        store.add_invocation("t1", "click", {"x": 1, "y": 2})
        store.add_outcome(True, "Clicked", invocation_id="t1")

        kinds = [m.kind for m in store.messages]
        assert kinds == ["user", "tool_invocation", "tool_outcome"]
        assert store.original_instruction() == "open the browser"

    def test_outcome_must_answer_open_invocation(self):
        """Should reject an outcome linked to an unknown invocation."""
        store = ConversationStore()
        store.add_user("task")
        store.add_invocation("t1", "click", {"x": 1, "y": 2})

        with pytest.raises(ValueError, match="No open invocation"):
            store.add_outcome(True, invocation_id="t2")

    def test_duplicate_invocation_id_rejected(self):
        """Should refuse two invocations with one id."""
        store = ConversationStore()
        store.add_user("task")
        store.add_invocation("t1", "click", {"x": 1, "y": 2})
        store.add_outcome(True, invocation_id="t1")

        with pytest.raises(ValueError, match="Duplicate"):
            store.add_invocation("t1", "move", {"x": 3, "y": 4})

    def test_pending_invocation(self):
        """Should report the invocation still waiting for an outcome."""
        store = ConversationStore()
        store.add_user("task")
        assert store.pending_invocation() is None

        store.add_invocation("t1", "click", {"x": 1, "y": 2})
        assert store.pending_invocation().invocation_id == "t1"

        store.add_outcome(True, invocation_id="t1")
        assert store.pending_invocation() is None

    def test_unlinked_outcome_after_text(self):
        """Should accept an outcome for a prompt-embedded reply."""
        store = ConversationStore()
        store.add_user("task")
        store.add_assistant_text('{"action": "wait"}')
        outcome = store.add_outcome(True, "Waited 1000ms")

        assert outcome.invocation_id is None
        assert store.last_assistant_text() == '{"action": "wait"}'

    def test_max_history_lower_bound(self):
        """Should refuse a cap that cannot hold the instruction and a reply."""
        with pytest.raises(ValueError):
            ConversationStore(max_history=1)


class TestTruncation:
    """Tests for bounded length."""

    def test_length_never_exceeds_cap(self):
        """Should stay within max_history across many iterations."""
        store = ConversationStore(max_history=7)
        store.add_user("the instruction")
        for i in range(20):
            if i:
                store.add_user(f"screen {i}")
            store.add_invocation(f"t{i}", "click", {"x": i, "y": i})
            store.add_outcome(True, f"Clicked {i}", invocation_id=f"t{i}")

            assert len(store) <= 7
            assert store.messages[0].text == "the instruction"
            _assert_pairs_intact(store)

    def test_pair_dropped_together(self):
        """Should never orphan an outcome when the invocation is dropped."""
        store = ConversationStore(max_history=4)
        store.add_user("instruction")
        store.add_invocation("t1", "click", {"x": 1, "y": 1})
        store.add_outcome(True, invocation_id="t1")
        store.add_user("screen 2")
        store.add_invocation("t2", "click", {"x": 2, "y": 2})

        _assert_pairs_intact(store)
        ids = [m.invocation_id for m in store.messages if isinstance(m, AssistantToolInvocation)]
        assert ids == ["t2"]
        assert store.pending_invocation().invocation_id == "t2"

    def test_truncate_to_max_returns_dropped_count(self):
        """Should report how many messages were removed."""
        store = ConversationStore(max_history=50)
        store.add_user("instruction")
        for i in range(5):
            store.add_user(f"screen {i}")

        dropped = store.truncate_to_max(3)

        assert dropped == 3
        assert [m.text for m in store.messages] == ["instruction", "screen 3", "screen 4"]

    def test_truncate_noop_when_short(self):
        """Should leave a short log alone."""
        store = ConversationStore()
        store.add_user("instruction")
        assert store.truncate_to_max(5) == 0
        assert len(store) == 1


class TestImages:
    """Tests for screenshot retention."""

    def test_old_images_omitted(self):
        """Should keep images only on the newest keep_images user turns."""
        store = ConversationStore(max_history=20, keep_images=2)
        for i in range(4):
            store.add_user(f"turn {i}", image=f"img{i}")

        turns = [m for m in store.messages if isinstance(m, UserTurn)]
        assert [t.image for t in turns] == [None, None, "img2", "img3"]
        assert [t.image_omitted for t in turns] == [True, True, False, False]
        # Text survives the image
        assert turns[0].text == "turn 0"

    def test_turn_without_image_not_marked(self):
        """Should only mark turns that actually lost an image."""
        store = ConversationStore(keep_images=1)
        store.add_user("no image")
        store.add_user("with image", image="abc")
        store.add_user("newer", image="def")

        first, second, _ = store.messages
        assert first.image_omitted is False
        assert second.image_omitted is True
