"""
prompts.py - System prompts, tool declarations, and task-type hints

``build_action_schema`` produces both encodings of the action set for one
screen size: tool declarations for structured backends and a prose
catalogue for prompt-embedded ones. A keyword classifier adds a few hints
tailored to the kind of task the instruction describes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from omni_pilot.providers.base import ActionSchema

from .actions import ACTION_MODELS, MAX_BATCH_SIZE

# =============================================================================
# Task classification
# =============================================================================


class TaskType(str, Enum):
    FORM_FILLING = "form_filling"
    WEB_NAVIGATION = "web_navigation"
    DATA_ENTRY = "data_entry"
    DATA_EXTRACTION = "data_extraction"
    FILE_MANAGEMENT = "file_management"
    TEXT_EDITING = "text_editing"
    APP_INTERACTION = "app_interaction"
    GENERAL = "general"


# Multi-word phrases weigh more than single words
TASK_KEYWORDS: dict[TaskType, dict[str, int]] = {
    TaskType.FORM_FILLING: {
        "fill out": 3,
        "fill in": 3,
        "input field": 3,
        "sign up": 3,
        "checkout": 2,
        "register": 2,
        "submit": 2,
        "form": 2,
        "fill": 1,
    },
    TaskType.WEB_NAVIGATION: {
        "navigate to": 3,
        "go to": 3,
        "search for": 3,
        "web page": 3,
        "click on": 2,
        "browse": 2,
        "url": 2,
        "website": 2,
        "open": 1,
    },
    TaskType.DATA_ENTRY: {
        "enter data": 3,
        "spreadsheet": 3,
        "excel": 3,
        "table": 2,
        "cell": 1,
        "row": 1,
        "column": 1,
    },
    TaskType.DATA_EXTRACTION: {
        "find the value": 4,
        "extract": 2,
        "scrape": 2,
        "read the": 2,
        "get the": 2,
        "copy": 1,
    },
    TaskType.FILE_MANAGEMENT: {
        "save as": 3,
        "delete file": 3,
        "move file": 3,
        "rename": 2,
        "download": 2,
        "folder": 2,
        "file": 1,
    },
    TaskType.TEXT_EDITING: {
        "edit text": 3,
        "compose": 2,
        "draft": 2,
        "email": 2,
        "document": 2,
        "write": 1,
        "type": 1,
    },
    TaskType.APP_INTERACTION: {
        "settings": 2,
        "preferences": 2,
        "menu": 2,
        "dialog": 2,
        "configure": 2,
        "toggle": 2,
    },
}

MIN_TASK_SCORE = 2

TASK_TIPS: dict[TaskType, list[str]] = {
    TaskType.FORM_FILLING: [
        "Move between fields with Tab instead of clicking each one.",
        "Look for required-field markers before submitting.",
        "After submitting, check for validation messages and fix them.",
    ],
    TaskType.WEB_NAVIGATION: [
        "Wait for pages to finish loading before acting.",
        "Type URLs into the address bar directly when you know them.",
        "Scroll to find links that are not visible yet.",
    ],
    TaskType.DATA_ENTRY: [
        "Click the target cell, type the value, then confirm with Tab or Enter.",
        "Re-read entered values before moving on.",
    ],
    TaskType.DATA_EXTRACTION: [
        "Triple-click selects a whole line of text.",
        "Scroll methodically so nothing is missed.",
        "Put the extracted data in your complete message.",
    ],
    TaskType.FILE_MANAGEMENT: [
        "Right-click files for rename, delete, and move options.",
        "Check the destination folder before saving or moving.",
        "Confirm the file list shows the result before completing.",
    ],
    TaskType.TEXT_EDITING: [
        "Place the cursor before typing.",
        "Use shift with arrow keys for precise selection.",
        "Undo mistakes right away with ctrl+z (meta+z on macOS).",
    ],
    TaskType.APP_INTERACTION: [
        "Application menus usually sit at the top of the window.",
        "Settings often use toggles, checkboxes, or radio buttons.",
    ],
    TaskType.GENERAL: [],
}


def classify_instruction(instruction: str) -> TaskType:
    """Pick the task type whose keywords score highest."""
    lowered = instruction.lower()
    best, best_score = TaskType.GENERAL, 0
    for task_type, keywords in TASK_KEYWORDS.items():
        score = sum(weight for phrase, weight in keywords.items() if phrase in lowered)
        if score > best_score:
            best, best_score = task_type, score
    return best if best_score >= MIN_TASK_SCORE else TaskType.GENERAL


def task_tips(instruction: str) -> str:
    """Hints for the instruction's task type, or an empty string."""
    task_type = classify_instruction(instruction)
    tips = TASK_TIPS[task_type]
    if not tips:
        return ""
    label = task_type.value.replace("_", " ")
    return f"Tips for {label} tasks:\n" + "\n".join(f"- {tip}" for tip in tips)


# =============================================================================
# Tool declarations
# =============================================================================

TOOL_DESCRIPTIONS: dict[str, str] = {
    "click": "Click at a screen coordinate.",
    "double_click": "Double-click at a screen coordinate.",
    "triple_click": "Triple-click at a screen coordinate (selects a line).",
    "right_click": "Right-click at a screen coordinate (opens context menus).",
    "move": "Move the pointer without clicking.",
    "drag": "Press at the start point, drag to the end point, release.",
    "scroll": "Scroll at a screen coordinate.",
    "type": "Type text at the current focus.",
    "key": "Press a key, optionally holding modifiers (ctrl, alt, shift, meta).",
    "wait": "Pause, then look at the screen again.",
    "wait_for_element": "Wait for something to appear; the next screenshot shows the result.",
    "batch": f"Run up to {MAX_BATCH_SIZE} actions in order within one step.",
    "complete": "The task is done. Summarize the result.",
    "error": "The task cannot be completed. Explain why.",
}


def _strip_titles(node: Any) -> Any:
    if isinstance(node, dict):
        return {k: _strip_titles(v) for k, v in node.items() if k != "title"}
    if isinstance(node, list):
        return [_strip_titles(v) for v in node]
    return node


def tool_definitions() -> list[dict[str, Any]]:
    """One machine-checkable declaration per action, named after the action."""
    tools = []
    for name, model in ACTION_MODELS.items():
        schema = _strip_titles(model.model_json_schema())
        # The tool name carries the tag; batch items keep theirs in $defs
        schema.get("properties", {}).pop("action", None)
        required = [r for r in schema.get("required", []) if r != "action"]
        if required:
            schema["required"] = required
        else:
            schema.pop("required", None)
        tools.append(
            {
                "name": name,
                "description": TOOL_DESCRIPTIONS[name],
                "input_schema": schema,
            }
        )
    return tools


# =============================================================================
# Prompts
# =============================================================================

ACTION_EXAMPLES = """\
{"action": "click", "x": 100, "y": 200, "button": "left"}   button: left | right | middle
{"action": "double_click", "x": 100, "y": 200}
{"action": "triple_click", "x": 100, "y": 200}
{"action": "right_click", "x": 100, "y": 200}
{"action": "move", "x": 100, "y": 200}
{"action": "drag", "start_x": 10, "start_y": 20, "end_x": 300, "end_y": 400, "duration_ms": 500}
{"action": "scroll", "x": 500, "y": 300, "direction": "down", "amount": 3}   up|down|left|right
{"action": "type", "text": "Hello World"}
{"action": "key", "key": "c", "modifiers": ["ctrl"]}   modifiers: ctrl | alt | shift | meta
{"action": "wait", "duration_ms": 1000}
{"action": "wait_for_element", "description": "the login dialog", "timeout_ms": 5000}
{"action": "batch", "actions": [{"action": "type", "text": "hi"}, {"action": "key", "key": "tab"}]}
{"action": "complete", "message": "what was done"}
{"action": "error", "message": "why it cannot be done"}"""

GUIDELINES = """\
Guidelines:
- Study the screenshot before acting and target visible elements precisely.
- Coordinates are screen pixels from the top-left corner and never negative.
- Use batch for short predictable sequences; a batch cannot contain another batch.
- The system waits for the UI between steps; use wait only for slow loads.
- Use complete when the task is done and error when it cannot be done."""


def _preamble(width: int, height: int, tips: str) -> str:
    parts = [
        "You are a computer use agent. You see the user's screen and control "
        "their mouse and keyboard to complete the task you are given.",
        f"Screen dimensions: {width}x{height} pixels",
        GUIDELINES,
    ]
    if tips:
        parts.append(tips)
    return "\n\n".join(parts)


def build_action_schema(
    width: int, height: int, instruction: str = "", tips: bool = True
) -> ActionSchema:
    """Both encodings of the action set for a ``width`` x ``height`` screen."""
    preamble = _preamble(width, height, task_tips(instruction) if tips and instruction else "")
    system_prompt = (
        f"{preamble}\n\nAct only through the provided tools, one tool call per response."
    )
    action_prompt = (
        f"{preamble}\n\nRespond with exactly one JSON action object. Available actions:\n"
        f"{ACTION_EXAMPLES}\n\nRespond with ONLY the JSON action."
    )
    return ActionSchema(
        system_prompt=system_prompt, tools=tool_definitions(), action_prompt=action_prompt
    )


__all__ = [
    "TaskType",
    "build_action_schema",
    "classify_instruction",
    "task_tips",
    "tool_definitions",
]
