"""
conversation.py - Bounded multimodal message log for one run

The store is append-only during a run. Two things keep it bounded:

- Screenshots survive only on the most recent ``keep_images`` user turns.
  Older turns keep their text and are marked ``image_omitted``.
- Length is capped at ``max_history``. The first message (the instruction)
  is never dropped, and an invocation is dropped together with its outcome.

Only the run loop appends. Providers read ``messages``.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from omni_pilot.config.logging import get_logger

log = get_logger("omni_pilot.conversation")

OMITTED_IMAGE_MARKER = "[screenshot omitted]"


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True)


class UserTurn(_Message):
    """Instruction or observation from our side, usually with a screenshot."""

    kind: Literal["user"] = "user"
    text: str
    image: str | None = None  # base64
    media_type: str = "image/png"
    width: int = 0
    height: int = 0
    image_omitted: bool = False


class AssistantText(_Message):
    kind: Literal["assistant_text"] = "assistant_text"
    text: str


class AssistantToolInvocation(_Message):
    """A structured call the model made."""

    kind: Literal["tool_invocation"] = "tool_invocation"
    invocation_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    text: str | None = None


class ToolOutcome(_Message):
    """What happened when we acted on the model's last response."""

    kind: Literal["tool_outcome"] = "tool_outcome"
    invocation_id: str | None = None
    success: bool
    message: str = ""
    error: str | None = None


ConversationMessage = Annotated[
    Union[UserTurn, AssistantText, AssistantToolInvocation, ToolOutcome],
    Field(discriminator="kind"),
]


class ConversationStore:
    """Ordered message log with bounded length and bounded image payload."""

    def __init__(self, max_history: int = 20, keep_images: int = 3) -> None:
        if max_history < 2:
            raise ValueError("max_history must be at least 2")
        self.max_history = max_history
        self.keep_images = max(1, keep_images)
        self._messages: list[ConversationMessage] = []

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    @property
    def messages(self) -> tuple[ConversationMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ConversationMessage]:
        return iter(tuple(self._messages))

    def original_instruction(self) -> str | None:
        """Text of the first user turn."""
        if self._messages and isinstance(self._messages[0], UserTurn):
            return self._messages[0].text
        return None

    def last_assistant_text(self) -> str | None:
        for message in reversed(self._messages):
            if isinstance(message, AssistantText):
                return message.text
            if isinstance(message, AssistantToolInvocation) and message.text:
                return message.text
        return None

    def pending_invocation(self) -> AssistantToolInvocation | None:
        """The latest invocation still waiting for its outcome."""
        answered = {
            m.invocation_id
            for m in self._messages
            if isinstance(m, ToolOutcome) and m.invocation_id
        }
        for message in reversed(self._messages):
            if isinstance(message, AssistantToolInvocation):
                return None if message.invocation_id in answered else message
        return None

    def to_records(self) -> list[dict[str, Any]]:
        return [m.model_dump() for m in self._messages]

    # -------------------------------------------------------------------------
    # Appending
    # -------------------------------------------------------------------------

    def add_user(
        self,
        text: str,
        image: str | None = None,
        width: int = 0,
        height: int = 0,
        media_type: str = "image/png",
    ) -> UserTurn:
        turn = UserTurn(
            text=text, image=image, width=width, height=height, media_type=media_type
        )
        self._append(turn)
        self._drop_old_images()
        return turn

    def add_assistant_text(self, text: str) -> AssistantText:
        message = AssistantText(text=text)
        self._append(message)
        return message

    def add_invocation(
        self,
        invocation_id: str,
        tool_name: str,
        args: dict[str, Any] | None = None,
        text: str | None = None,
    ) -> AssistantToolInvocation:
        if any(
            isinstance(m, AssistantToolInvocation) and m.invocation_id == invocation_id
            for m in self._messages
        ):
            raise ValueError(f"Duplicate invocation id: {invocation_id}")
        message = AssistantToolInvocation(
            invocation_id=invocation_id, tool_name=tool_name, args=args or {}, text=text
        )
        self._append(message)
        return message

    def add_outcome(
        self,
        success: bool,
        message: str = "",
        error: str | None = None,
        invocation_id: str | None = None,
    ) -> ToolOutcome:
        """Append an outcome; a linked outcome must answer an open invocation."""
        if invocation_id is not None:
            pending = self.pending_invocation()
            if pending is None or pending.invocation_id != invocation_id:
                raise ValueError(f"No open invocation with id {invocation_id}")
        outcome = ToolOutcome(
            invocation_id=invocation_id, success=success, message=message, error=error
        )
        self._append(outcome)
        return outcome

    def clear(self) -> None:
        self._messages.clear()

    def _append(self, message: ConversationMessage) -> None:
        self._messages.append(message)
        self.truncate_to_max(self.max_history)

    # -------------------------------------------------------------------------
    # Bounding
    # -------------------------------------------------------------------------

    def truncate_to_max(self, n: int) -> int:
        """Drop the oldest messages after the first until at most ``n`` remain.

        Invocation/outcome pairs are dropped together. Returns the number of
        messages removed.
        """
        n = max(n, 1)
        if len(self._messages) <= n:
            return 0

        outcome_index: dict[str, int] = {}
        for i, m in enumerate(self._messages):
            if isinstance(m, ToolOutcome) and m.invocation_id:
                outcome_index[m.invocation_id] = i

        drop: set[int] = set()
        remaining = len(self._messages)
        for i in range(1, len(self._messages)):
            if remaining <= n:
                break
            if i in drop:
                continue
            unit = {i}
            m = self._messages[i]
            if isinstance(m, AssistantToolInvocation) and m.invocation_id in outcome_index:
                unit.add(outcome_index[m.invocation_id])
            drop |= unit
            remaining -= len(unit)

        self._messages = [m for i, m in enumerate(self._messages) if i not in drop]
        if drop:
            log.debug("conversation.truncated", dropped=len(drop), kept=len(self._messages))
        return len(drop)

    def _drop_old_images(self) -> None:
        with_images = [
            i for i, m in enumerate(self._messages) if isinstance(m, UserTurn) and m.image
        ]
        for i in with_images[: -self.keep_images]:
            turn = self._messages[i]
            self._messages[i] = turn.model_copy(update={"image": None, "image_omitted": True})


__all__ = [
    "AssistantText",
    "AssistantToolInvocation",
    "ConversationMessage",
    "ConversationStore",
    "OMITTED_IMAGE_MARKER",
    "ToolOutcome",
    "UserTurn",
]
