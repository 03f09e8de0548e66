"""
keys.py - Key names, modifier aliases, and the dangerous-combination denylist

Models write keys loosely ("Return", "cmd", "ArrowUp"). Everything is
normalized here before it reaches the input driver or the confirmation gate.
"""

from __future__ import annotations

from collections.abc import Iterable

from .actions import ActionBase, Batch, Key

MODIFIER_ALIASES: dict[str, str] = {
    "ctrl": "ctrl",
    "control": "ctrl",
    "alt": "alt",
    "option": "alt",
    "shift": "shift",
    "meta": "meta",
    "cmd": "meta",
    "command": "meta",
    "win": "meta",
    "super": "meta",
}

KEY_ALIASES: dict[str, str] = {
    "return": "enter",
    "esc": "escape",
    "arrowup": "up",
    "arrowdown": "down",
    "arrowleft": "left",
    "arrowright": "right",
    "page_up": "pageup",
    "page_down": "pagedown",
    "del": "delete",
    " ": "space",
}

NAMED_KEYS = frozenset(
    {
        "enter",
        "tab",
        "space",
        "backspace",
        "delete",
        "escape",
        "up",
        "down",
        "left",
        "right",
        "home",
        "end",
        "pageup",
        "pagedown",
        *(f"f{n}" for n in range(1, 13)),
    }
)


def normalize_key(key: str) -> str:
    """Lower-case a key name and resolve aliases ("Return" -> "enter")."""
    lowered = key.strip().lower() if key.strip() else key
    return KEY_ALIASES.get(lowered, lowered)


def normalize_modifiers(modifiers: Iterable[str]) -> list[str]:
    """Map modifier aliases onto ctrl/alt/shift/meta, dropping unknown names and repeats."""
    result: list[str] = []
    for raw in modifiers:
        canonical = MODIFIER_ALIASES.get(raw.strip().lower())
        if canonical and canonical not in result:
            result.append(canonical)
    return result


def is_known_key(key: str) -> bool:
    key = normalize_key(key)
    return key in NAMED_KEYS or len(key) == 1


def is_dangerous_combination(key: str, modifiers: Iterable[str]) -> bool:
    """True for combinations that close, quit, or destroy things."""
    k = normalize_key(key)
    mods = set(normalize_modifiers(modifiers))

    if k in ("delete", "backspace") and "meta" in mods:
        return True
    if k == "w" and "meta" in mods:
        return True
    if k == "f4" and "alt" in mods:
        return True
    if k == "q" and "meta" in mods:
        return True
    # Clear browsing data
    if k in ("delete", "backspace") and "shift" in mods and mods & {"meta", "ctrl"}:
        return True
    # Task manager / force quit dialog
    if k == "delete" and {"ctrl", "alt"} <= mods:
        return True
    if k == "escape" and {"meta", "alt"} <= mods:
        return True
    return False


def is_dangerous(action: ActionBase) -> bool:
    """Whether executing ``action`` needs a human to confirm first."""
    if isinstance(action, Key):
        return is_dangerous_combination(action.key, action.modifiers)
    if isinstance(action, Batch):
        return any(is_dangerous(sub) for sub in action.actions)
    return False


__all__ = [
    "is_dangerous",
    "is_dangerous_combination",
    "is_known_key",
    "normalize_key",
    "normalize_modifiers",
]
