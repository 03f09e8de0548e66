"""
test_actions_keys.py - Action models, key normalization, dangerous combinations
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from omni_pilot.core.actions import (
    ACTION_NAMES,
    Batch,
    Click,
    Drag,
    Key,
    Type,
    parse_action,
)
from omni_pilot.core.keys import (
    is_dangerous,
    is_dangerous_combination,
    is_known_key,
    normalize_key,
    normalize_modifiers,
)


class TestActionModels:
    """Tests for the closed action set."""

    def test_fourteen_variants(self):
        """Should define exactly the documented action names."""
        assert set(ACTION_NAMES) == {
            "click",
            "double_click",
            "triple_click",
            "right_click",
            "move",
            "drag",
            "scroll",
            "type",
            "key",
            "wait",
            "wait_for_element",
            "batch",
            "complete",
            "error",
        }

    def test_parse_and_describe(self):
        """Should parse a mapping into the tagged variant."""
        action = parse_action({"action": "click", "x": 10, "y": 20})

        assert isinstance(action, Click)
        assert action.point() == (10, 20)
        assert action.describe() == "click left at (10, 20)"
        assert action.to_args() == {"x": 10, "y": 20, "button": "left"}

    def test_unknown_fields_ignored(self):
        """Should drop extra fields models like to add."""
        action = parse_action({"action": "type", "text": "hi", "reasoning": "because"})
        assert action == Type(text="hi")

    def test_drag_duration_capped(self):
        """Should cap drag duration at five seconds."""
        drag = Drag(start_x=0, start_y=0, end_x=1, end_y=1, duration_ms=60_000)
        assert drag.duration_ms == 5000

    def test_invalid_button(self):
        """Should reject an unknown mouse button."""
        with pytest.raises(ValidationError):
            parse_action({"action": "click", "x": 1, "y": 1, "button": "side"})

    def test_empty_key(self):
        """Should reject an empty key name."""
        with pytest.raises(ValidationError):
            Key(key="")

    def test_batch_limit(self):
        """Should hold at most ten actions."""
        Batch(actions=[Type(text=str(i)) for i in range(10)])
        with pytest.raises(ValidationError):
            Batch(actions=[Type(text=str(i)) for i in range(11)])

    def test_long_text_description(self):
        """Should shorten long text in descriptions."""
        assert Type(text="a" * 60).describe().endswith("...'")

    def test_terminal_flags(self):
        """Should flag only complete and error as terminal."""
        assert parse_action({"action": "complete", "message": "m"}).is_terminal
        assert parse_action({"action": "error", "message": "m"}).is_terminal
        assert not Click(x=1, y=1).is_terminal


class TestKeyNormalization:
    """Tests for key aliases."""

    @pytest.mark.parametrize(
        "raw, expected",
        [("Return", "enter"), ("ESC", "escape"), ("ArrowUp", "up"), ("Tab", "tab"), ("A", "a")],
    )
    def test_aliases(self, raw, expected):
        """Should lower-case and resolve aliases."""
        assert normalize_key(raw) == expected

    def test_modifiers(self):
        """Should map aliases, drop unknown names and repeats."""
        assert normalize_modifiers(["Cmd", "command", "Option", "hyper", "CTRL"]) == [
            "meta",
            "alt",
            "ctrl",
        ]

    def test_known_keys(self):
        """Should accept named keys and single characters."""
        assert is_known_key("F12")
        assert is_known_key("Page_Down")
        assert is_known_key("x")
        assert not is_known_key("launch")


class TestDangerousCombinations:
    """Tests for the confirmation denylist."""

    @pytest.mark.parametrize(
        "key, modifiers",
        [
            ("w", ["cmd"]),
            ("q", ["meta"]),
            ("F4", ["alt"]),
            ("Delete", ["cmd"]),
            ("BackSpace", ["Command"]),
            ("Delete", ["shift", "ctrl"]),
            ("Delete", ["ctrl", "alt"]),
            ("Escape", ["cmd", "option"]),
        ],
    )
    def test_dangerous(self, key, modifiers):
        """Should flag destructive combinations."""
        assert is_dangerous_combination(key, modifiers)

    @pytest.mark.parametrize(
        "key, modifiers",
        [("c", ["ctrl"]), ("w", []), ("q", ["ctrl"]), ("Delete", []), ("Tab", ["alt"])],
    )
    def test_safe(self, key, modifiers):
        """Should leave ordinary combinations alone."""
        assert not is_dangerous_combination(key, modifiers)

    def test_actions(self):
        """Should check keys directly and batches by member."""
        assert is_dangerous(Key(key="w", modifiers=["meta"]))
        assert not is_dangerous(Click(x=1, y=1))
        assert is_dangerous(Batch(actions=[Type(text="x"), Key(key="q", modifiers=["cmd"])]))
        assert not is_dangerous(Batch(actions=[Type(text="x")]))
