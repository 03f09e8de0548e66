"""
history.py - Durable records of what the agent did

Two sinks, both plain JSON under the data directory
(``$XDG_DATA_HOME/omni-pilot`` by default):

- ``SessionHistory``: one run's action log, token metrics and final status,
  exportable as JSON or readable text. Written to ``sessions/`` when the run ends.
- ``InstructionHistory``: the most recent instructions, newest first, without
  duplicates. Feeds the CLI ``history`` command.

Usage:
    session = SessionHistory(instruction="open the settings")
    session.add_entry(ActionEntry(iteration=1, action_type="click", success=True))
    session.complete("completed")
    session.save()
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from omni_pilot.config.logging import get_logger
from omni_pilot.config.settings import data_home

log = get_logger("omni_pilot.history")

MAX_INSTRUCTION_ENTRIES = 50
LLM_PREVIEW_CHARS = 200


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Per-run session log
# =============================================================================


class ActionEntry(BaseModel):
    timestamp: datetime = Field(default_factory=_now)
    iteration: int
    action_type: str
    action_details: dict[str, Any] = Field(default_factory=dict)
    llm_response: str = ""
    success: bool
    error_message: str | None = None
    result_message: str | None = None


class SessionMetrics(BaseModel):
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_iterations: int = 0
    duration_seconds: float = 0.0


class SessionHistory(BaseModel):
    """Action log for one instruction."""

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    instruction: str
    started_at: datetime = Field(default_factory=_now)
    ended_at: datetime | None = None
    entries: list[ActionEntry] = Field(default_factory=list)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    final_status: str = "running"

    def add_entry(self, entry: ActionEntry) -> None:
        self.entries.append(entry)
        self.metrics.total_iterations = max(self.metrics.total_iterations, entry.iteration)

    def update_metrics(self, input_tokens: int, output_tokens: int) -> None:
        self.metrics.total_input_tokens += input_tokens
        self.metrics.total_output_tokens += output_tokens

    def complete(self, status: str) -> None:
        self.ended_at = _now()
        self.final_status = status
        self.metrics.duration_seconds = (self.ended_at - self.started_at).total_seconds()

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def to_text(self) -> str:
        lines = [
            f"Session: {self.started_at:%Y-%m-%d %H:%M:%S UTC}",
            f'Instruction: "{self.instruction}"',
            f"Status: {self.final_status}",
            "",
        ]
        for entry in self.entries:
            lines.append(f"[{entry.iteration}] {entry.timestamp:%H:%M:%S} - {entry.action_type}")
            details = ", ".join(
                f"{k}={json.dumps(v)}" for k, v in entry.action_details.items() if k != "action"
            )
            if details:
                lines.append(f"    Details: {details}")
            if entry.llm_response:
                preview = entry.llm_response[:LLM_PREVIEW_CHARS]
                if len(entry.llm_response) > LLM_PREVIEW_CHARS:
                    preview += "..."
                lines.append(f'    LLM: "{preview.replace(chr(10), " ")}"')
            result = "    Result: " + ("Success" if entry.success else "Failed")
            if entry.result_message:
                result += f" - {entry.result_message}"
            if entry.error_message:
                result += f" ({entry.error_message})"
            lines.extend([result, ""])

        m = self.metrics
        lines += [
            "--- Metrics ---",
            f"Total Iterations: {m.total_iterations}",
            f"Input Tokens: {m.total_input_tokens}",
            f"Output Tokens: {m.total_output_tokens}",
            f"Duration: {m.duration_seconds:.2f}s",
        ]
        if self.ended_at is not None:
            lines.append(f"Ended: {self.ended_at:%Y-%m-%d %H:%M:%S UTC}")
        return "\n".join(lines) + "\n"

    def save(self, directory: Path | None = None) -> Path:
        """Write the session as JSON and return the file path."""
        directory = directory or data_home() / "sessions"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{self.started_at:%Y%m%d-%H%M%S}-{self.session_id[:8]}.json"
        path.write_text(json.dumps(self.to_json(), indent=2), encoding="utf-8")
        log.debug("history.session_saved", path=str(path), entries=len(self.entries))
        return path


# =============================================================================
# Recent instructions
# =============================================================================


class HistoryEntry(BaseModel):
    instruction: str
    timestamp: datetime = Field(default_factory=_now)
    success: bool


class InstructionHistory:
    """Recent instructions, newest first, one entry per distinct text."""

    def __init__(
        self,
        path: Path | None = None,
        max_entries: int = MAX_INSTRUCTION_ENTRIES,
        entries: list[HistoryEntry] | None = None,
    ) -> None:
        self.path = path or data_home() / "history.json"
        self.max_entries = max_entries
        self._entries: list[HistoryEntry] = list(entries or [])

    @classmethod
    def load(cls, path: Path | None = None, max_entries: int = MAX_INSTRUCTION_ENTRIES):
        """Read the history file; a missing or corrupt file yields an empty history."""
        history = cls(path=path, max_entries=max_entries)
        if not history.path.exists():
            return history
        try:
            raw = json.loads(history.path.read_text(encoding="utf-8"))
            history._entries = [HistoryEntry.model_validate(e) for e in raw.get("entries", [])]
        except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as e:
            log.warning("history.load_failed", path=str(history.path), error=str(e))
        return history

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"entries": [e.model_dump(mode="json") for e in self._entries]}
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    @property
    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    def add(self, instruction: str, success: bool) -> None:
        """Record ``instruction`` at the top, replacing any older copy."""
        self._entries = [e for e in self._entries if e.instruction != instruction]
        self._entries.insert(0, HistoryEntry(instruction=instruction, success=success))
        del self._entries[self.max_entries :]

    def remove(self, index: int) -> bool:
        if 0 <= index < len(self._entries):
            del self._entries[index]
            return True
        return False

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "ActionEntry",
    "HistoryEntry",
    "InstructionHistory",
    "SessionHistory",
    "SessionMetrics",
]
