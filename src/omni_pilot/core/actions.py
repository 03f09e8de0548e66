"""
actions.py - The closed set of things the model may ask us to do

Every action is a pydantic model tagged by its ``action`` field. ``Action``
is the discriminated union over all fourteen variants. ``BatchableAction``
is the same union minus ``batch``, so a batch can never contain a batch.

Usage:
    from omni_pilot.core.actions import parse_action
    action = parse_action({"action": "click", "x": 10, "y": 20})
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    TypeAdapter,
    field_validator,
)

MAX_BATCH_SIZE = 10
MAX_DRAG_DURATION_MS = 5000

MouseButton = Literal["left", "right", "middle"]
ScrollDirection = Literal["up", "down", "left", "right"]

Coordinate = Annotated[StrictInt, Field(ge=0)]


class ActionBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    @property
    def name(self) -> str:
        return self.action  # type: ignore[attr-defined]

    @property
    def is_terminal(self) -> bool:
        return False

    def point(self) -> tuple[int, int] | None:
        """Screen coordinate this action targets, if any."""
        return None

    def describe(self) -> str:
        return self.name

    def to_args(self) -> dict[str, Any]:
        """Arguments without the tag, as sent back in a tool invocation."""
        return self.model_dump(exclude={"action"})


class _PointAction(ActionBase):
    x: Coordinate
    y: Coordinate

    def point(self) -> tuple[int, int] | None:
        return (self.x, self.y)


# =============================================================================
# Pointer
# =============================================================================


class Click(_PointAction):
    """Single click with the given button."""

    action: Literal["click"] = "click"
    button: MouseButton = "left"

    def describe(self) -> str:
        return f"click {self.button} at ({self.x}, {self.y})"


class DoubleClick(_PointAction):
    action: Literal["double_click"] = "double_click"

    def describe(self) -> str:
        return f"double click at ({self.x}, {self.y})"


class TripleClick(_PointAction):
    action: Literal["triple_click"] = "triple_click"

    def describe(self) -> str:
        return f"triple click at ({self.x}, {self.y})"


class RightClick(_PointAction):
    action: Literal["right_click"] = "right_click"

    def describe(self) -> str:
        return f"right click at ({self.x}, {self.y})"


class Move(_PointAction):
    action: Literal["move"] = "move"

    def describe(self) -> str:
        return f"move to ({self.x}, {self.y})"


class Drag(ActionBase):
    """Press at the start point, glide to the end point, release."""

    action: Literal["drag"] = "drag"
    start_x: Coordinate
    start_y: Coordinate
    end_x: Coordinate
    end_y: Coordinate
    button: MouseButton = "left"
    duration_ms: StrictInt = Field(default=500, ge=0)

    @field_validator("duration_ms")
    @classmethod
    def _cap_duration(cls, value: int) -> int:
        return min(value, MAX_DRAG_DURATION_MS)

    def point(self) -> tuple[int, int] | None:
        return (self.start_x, self.start_y)

    def describe(self) -> str:
        return f"drag ({self.start_x}, {self.start_y}) -> ({self.end_x}, {self.end_y})"


class Scroll(_PointAction):
    action: Literal["scroll"] = "scroll"
    direction: ScrollDirection
    amount: StrictInt = Field(default=3, ge=1)

    @field_validator("direction", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    def describe(self) -> str:
        return f"scroll {self.direction} x{self.amount} at ({self.x}, {self.y})"


# =============================================================================
# Keyboard
# =============================================================================


class Type(ActionBase):
    action: Literal["type"] = "type"
    text: StrictStr

    def describe(self) -> str:
        shown = self.text if len(self.text) <= 50 else self.text[:50] + "..."
        return f"type {shown!r}"


class Key(ActionBase):
    """Press a key, optionally with held modifiers."""

    action: Literal["key"] = "key"
    key: StrictStr = Field(min_length=1)
    modifiers: list[StrictStr] = Field(default_factory=list)

    def combo(self) -> str:
        return "+".join([*self.modifiers, self.key])

    def describe(self) -> str:
        return f"key {self.combo()}"


# =============================================================================
# Timing
# =============================================================================


class Wait(ActionBase):
    action: Literal["wait"] = "wait"
    duration_ms: StrictInt = Field(default=1000, ge=0)

    def describe(self) -> str:
        return f"wait {self.duration_ms}ms"


class WaitForElement(ActionBase):
    """Give the UI time to show something; the next screenshot decides."""

    action: Literal["wait_for_element"] = "wait_for_element"
    description: StrictStr
    timeout_ms: StrictInt = Field(default=5000, ge=0)

    def describe(self) -> str:
        return f"wait for {self.description!r}"


# =============================================================================
# Terminal
# =============================================================================


class Complete(ActionBase):
    action: Literal["complete"] = "complete"
    message: StrictStr

    @property
    def is_terminal(self) -> bool:
        return True

    def describe(self) -> str:
        return f"complete: {self.message}"


class Error(ActionBase):
    action: Literal["error"] = "error"
    message: StrictStr

    @property
    def is_terminal(self) -> bool:
        return True

    def describe(self) -> str:
        return f"error: {self.message}"


BatchableAction = Annotated[
    Union[
        Click,
        DoubleClick,
        TripleClick,
        RightClick,
        Move,
        Drag,
        Scroll,
        Type,
        Key,
        Wait,
        WaitForElement,
        Complete,
        Error,
    ],
    Field(discriminator="action"),
]


class Batch(ActionBase):
    """Several actions executed in order within one iteration."""

    action: Literal["batch"] = "batch"
    actions: list[BatchableAction] = Field(max_length=MAX_BATCH_SIZE)

    def describe(self) -> str:
        return f"batch ({len(self.actions)} actions)"


Action = Annotated[
    Union[
        Click,
        DoubleClick,
        TripleClick,
        RightClick,
        Move,
        Drag,
        Scroll,
        Type,
        Key,
        Wait,
        WaitForElement,
        Batch,
        Complete,
        Error,
    ],
    Field(discriminator="action"),
]

ACTION_MODELS: dict[str, type[ActionBase]] = {
    model.model_fields["action"].default: model
    for model in (
        Click,
        DoubleClick,
        TripleClick,
        RightClick,
        Move,
        Drag,
        Scroll,
        Type,
        Key,
        Wait,
        WaitForElement,
        Batch,
        Complete,
        Error,
    )
}

ACTION_NAMES: tuple[str, ...] = tuple(ACTION_MODELS)

_ACTION_ADAPTER: TypeAdapter[Any] = TypeAdapter(Action)


def parse_action(data: Any) -> ActionBase:
    """Validate a mapping into an Action. Raises pydantic.ValidationError."""
    return _ACTION_ADAPTER.validate_python(data)


@dataclass
class ActionResult:
    """What happened when an action ran.

    ``completed`` ends the run whatever ``success`` says. ``execution_failed``
    marks a driver error, and ``fatal`` means its re-execution budget is spent.
    """

    success: bool
    message: str = ""
    completed: bool = False
    error: str | None = None
    retry_count: int = 0
    warnings: list[str] = field(default_factory=list)
    execution_failed: bool = False
    fatal: bool = False

    @classmethod
    def ok(cls, message: str, completed: bool = False) -> ActionResult:
        return cls(success=True, message=message, completed=completed)

    @classmethod
    def failed(cls, error: str, message: str = "") -> ActionResult:
        return cls(success=False, message=message or error, error=error)


__all__ = [
    "ACTION_MODELS",
    "ACTION_NAMES",
    "Action",
    "ActionBase",
    "ActionResult",
    "Batch",
    "BatchableAction",
    "Click",
    "Complete",
    "DoubleClick",
    "Drag",
    "Error",
    "Key",
    "MAX_BATCH_SIZE",
    "Move",
    "RightClick",
    "Scroll",
    "TripleClick",
    "Type",
    "Wait",
    "WaitForElement",
    "parse_action",
]
