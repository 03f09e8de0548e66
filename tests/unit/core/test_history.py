"""
test_history.py - Session logs and recent-instruction history
"""

from __future__ import annotations

import json

from omni_pilot.core.history import (
    ActionEntry,
    InstructionHistory,
    SessionHistory,
)


def _session() -> SessionHistory:
    session = SessionHistory(instruction="rename the report")
    session.add_entry(
        ActionEntry(
            iteration=1,
            action_type="click",
            action_details={"action": "click", "x": 10, "y": 20},
            llm_response="I will click the file",
            success=True,
            result_message="Clicked left at (10, 20)",
        )
    )
    session.add_entry(
        ActionEntry(
            iteration=2,
            action_type="parse_error",
            llm_response="x" * 300,
            success=False,
            error_message="No JSON object found",
        )
    )
    session.update_metrics(1200, 80)
    session.complete("completed")
    return session


class TestSessionHistory:
    """Tests for the per-run action log."""

    def test_metrics_and_status(self):
        """Should track iterations, tokens, and the final status."""
        session = _session()

        assert session.final_status == "completed"
        assert session.ended_at is not None
        assert session.metrics.total_iterations == 2
        assert session.metrics.total_input_tokens == 1200
        assert session.metrics.duration_seconds >= 0

    def test_text_export(self):
        """Should render a readable log."""
        text = _session().to_text()

        assert 'Instruction: "rename the report"' in text
        assert "[1]" in text and "click" in text
        assert "x=10" in text
        assert "Result: Failed (No JSON object found)" in text
        # Long model output is shortened
        assert "x" * 201 not in text
        assert "Input Tokens: 1200" in text

    def test_save_and_reload(self, tmp_path):
        """Should write JSON that validates back into a session."""
        session = _session()

        path = session.save(tmp_path / "sessions")
        restored = SessionHistory.model_validate_json(path.read_text())

        assert path.parent == tmp_path / "sessions"
        assert restored.session_id == session.session_id
        assert len(restored.entries) == 2
        assert json.loads(path.read_text())["final_status"] == "completed"

    def test_default_directory(self, isolated_homes):
        """Should save under the data directory by default."""
        path = _session().save()
        assert path.is_relative_to(isolated_homes / "data" / "omni-pilot" / "sessions")


class TestInstructionHistory:
    """Tests for recent instructions."""

    def test_newest_first_without_duplicates(self, tmp_path):
        """Should move a repeated instruction to the top."""
        history = InstructionHistory(tmp_path / "history.json")
        history.add("open mail", success=True)
        history.add("archive newsletters", success=False)
        history.add("open mail", success=False)

        assert [e.instruction for e in history.entries] == ["open mail", "archive newsletters"]
        assert history.entries[0].success is False

    def test_capped(self, tmp_path):
        """Should keep at most max_entries."""
        history = InstructionHistory(tmp_path / "history.json", max_entries=3)
        for i in range(5):
            history.add(f"task {i}", success=True)

        assert len(history) == 3
        assert history.entries[0].instruction == "task 4"

    def test_persisted(self, tmp_path):
        """Should survive a save and load."""
        path = tmp_path / "nested" / "history.json"
        history = InstructionHistory(path)
        history.add("open mail", success=True)
        history.save()

        loaded = InstructionHistory.load(path)
        assert [e.instruction for e in loaded.entries] == ["open mail"]

    def test_corrupt_file_is_empty(self, tmp_path):
        """Should start fresh when the file cannot be read."""
        path = tmp_path / "history.json"
        path.write_text("{not json")

        assert len(InstructionHistory.load(path)) == 0

    def test_remove_and_clear(self, tmp_path):
        """Should remove by index and clear everything."""
        history = InstructionHistory(tmp_path / "history.json")
        history.add("a", success=True)
        history.add("b", success=True)

        assert history.remove(0) is True
        assert history.remove(5) is False
        assert [e.instruction for e in history.entries] == ["a"]
        history.clear()
        assert len(history) == 0
