"""
Unit tests for backend/quizgen/services/quiz/task_registry.py
Tests: TaskStatus transitions, TaskRegistry create/get/update/remove,
snapshot shape
No DB or network required.
"""

import sys
import os
import pytest

BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend"))
sys.path.insert(0, BACKEND_DIR)

os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")

from quizgen.core.errors import InvalidTransitionError
from quizgen.services.quiz.task_registry import (
    TaskKind,
    TaskRegistry,
    TaskStatus,
    check_transition,
)

S = TaskStatus


class TestTransitions:

    @pytest.mark.parametrize("current,new", [
        (S.STARTING, S.BUILDING_PROMPT),
        (S.BUILDING_PROMPT, S.GENERATING),
        (S.GENERATING, S.PARSING),
        (S.PARSING, S.ENHANCING),
        (S.ENHANCING, S.COMPLETED),
        (S.STARTING, S.GENERATING),
        (S.GENERATING, S.GENERATING),
    ])
    def test_forward_allowed(self, current, new):
        check_transition(current, new)

    @pytest.mark.parametrize("current", [S.STARTING, S.GENERATING, S.ENHANCING])
    def test_fail_or_cancel_from_any_live_status(self, current):
        check_transition(current, S.FAILED)
        check_transition(current, S.CANCELLED)

    def test_backwards_rejected(self):
        with pytest.raises(InvalidTransitionError):
            check_transition(S.PARSING, S.GENERATING)

    @pytest.mark.parametrize("terminal", [S.COMPLETED, S.FAILED, S.CANCELLED])
    def test_terminal_is_final(self, terminal):
        assert terminal.is_terminal
        with pytest.raises(InvalidTransitionError):
            check_transition(terminal, S.FAILED)

    def test_live_statuses_not_terminal(self):
        assert not S.GENERATING.is_terminal


class TestTaskRegistry:

    def test_create_and_get(self):
        registry = TaskRegistry()
        task = registry.create("teacher-1")
        assert task.id.startswith("gen_")
        assert task.status is S.STARTING
        assert task.kind is TaskKind.GENERATION
        assert registry.get(task.id) is task
        assert task.id in registry
        assert len(registry) == 1

    def test_update_merges_details(self):
        registry = TaskRegistry()
        task = registry.create("teacher-1")
        registry.update_status(task.id, S.GENERATING, {"attempt": 0})
        registry.update_status(task.id, S.GENERATING, {"attempt": 2})
        registry.update_status(task.id, S.PARSING, {"raw_length": 100})
        assert task.status is S.PARSING
        assert task.details == {"attempt": 2, "raw_length": 100}

    def test_update_bumps_last_update(self):
        registry = TaskRegistry()
        task = registry.create("teacher-1")
        before = task.last_update_at
        registry.update_status(task.id, S.BUILDING_PROMPT)
        assert task.last_update_at >= before

    def test_update_missing_returns_none(self):
        assert TaskRegistry().update_status("gen_missing", S.GENERATING) is None

    def test_update_backwards_raises(self):
        registry = TaskRegistry()
        task = registry.create("teacher-1")
        registry.update_status(task.id, S.PARSING)
        with pytest.raises(InvalidTransitionError):
            registry.update_status(task.id, S.BUILDING_PROMPT)

    def test_remove(self):
        registry = TaskRegistry()
        task = registry.create("teacher-1")
        assert registry.remove(task.id) is task
        assert registry.remove(task.id) is None
        assert registry.get(task.id) is None

    def test_snapshot(self):
        registry = TaskRegistry()
        task = registry.create("teacher-1", kind=TaskKind.REGENERATION, quiz_id="quiz_1")
        registry.update_status(task.id, S.GENERATING, {"attempt": 1})
        snap = task.snapshot()
        assert snap["generation_id"] == task.id
        assert snap["kind"] == "regeneration"
        assert snap["status"] == "generating"
        assert snap["details"] == {"attempt": 1}
        assert snap["quiz_id"] == "quiz_1"
        assert isinstance(snap["started_at"], str)

    def test_snapshot_is_a_copy(self):
        registry = TaskRegistry()
        task = registry.create("teacher-1")
        snap = task.snapshot()
        snap["details"]["x"] = 1
        assert task.details == {}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
