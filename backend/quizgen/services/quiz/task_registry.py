"""In-memory registry of in-flight generation tasks.

One registry is created per service instance (or shared explicitly) and
injected, so tests get a fresh one. Tasks are never persisted; a task is
removed as soon as it reaches a terminal state.

Status flow::

    starting -> building_prompt -> generating -> parsing -> enhancing -> completed
    (any non-terminal) -> failed | cancelled
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from quizgen.core.errors import InvalidTransitionError
from quizgen.core.utils import new_id

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    STARTING = "starting"
    BUILDING_PROMPT = "building_prompt"
    GENERATING = "generating"
    PARSING = "parsing"
    ENHANCING = "enhancing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


class TaskKind(str, Enum):
    GENERATION = "generation"
    REGENERATION = "regeneration"
    ADDITIONAL = "additional"


_PIPELINE = [
    TaskStatus.STARTING,
    TaskStatus.BUILDING_PROMPT,
    TaskStatus.GENERATING,
    TaskStatus.PARSING,
    TaskStatus.ENHANCING,
    TaskStatus.COMPLETED,
]
_ORDER = {status: i for i, status in enumerate(_PIPELINE)}
_TERMINAL = {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_transition(current: TaskStatus, new: TaskStatus) -> None:
    """Raise ``InvalidTransitionError`` unless ``current -> new`` is allowed."""
    if current.is_terminal:
        raise InvalidTransitionError(f"task already {current.value}, cannot move to {new.value}")
    if new is current:
        return
    if new in (TaskStatus.FAILED, TaskStatus.CANCELLED):
        return
    if _ORDER[new] < _ORDER[current]:
        raise InvalidTransitionError(f"cannot move task back from {current.value} to {new.value}")


@dataclass
class GenerationTask:
    user_id: str
    kind: TaskKind = TaskKind.GENERATION
    id: str = field(default_factory=lambda: new_id("gen"))
    status: TaskStatus = TaskStatus.STARTING
    started_at: datetime = field(default_factory=_utcnow)
    last_update_at: datetime = field(default_factory=_utcnow)
    details: Dict[str, Any] = field(default_factory=dict)
    source_request: Optional[Any] = None
    quiz_id: Optional[str] = None

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict view returned to callers."""
        return {
            "generation_id": self.id,
            "user_id": self.user_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "last_update_at": self.last_update_at.isoformat(),
            "details": dict(self.details),
            "quiz_id": self.quiz_id,
        }


class TaskRegistry:
    def __init__(self):
        self._tasks: Dict[str, GenerationTask] = {}

    def create(
        self,
        user_id: str,
        kind: TaskKind = TaskKind.GENERATION,
        source_request: Optional[Any] = None,
        quiz_id: Optional[str] = None,
    ) -> GenerationTask:
        task = GenerationTask(user_id=user_id, kind=kind, source_request=source_request, quiz_id=quiz_id)
        self._tasks[task.id] = task
        logger.info("Registered %s task %s for user=%s", kind.value, task.id, user_id)
        return task

    def get(self, task_id: str) -> Optional[GenerationTask]:
        return self._tasks.get(task_id)

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[GenerationTask]:
        """Move a task forward; returns ``None`` when the task is gone.

        Re-entering the current status only merges ``details``.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return None
        check_transition(task.status, status)
        task.status = status
        if details:
            task.details.update(details)
        task.last_update_at = _utcnow()
        logger.debug("Task %s -> %s %s", task_id, status.value, details or "")
        return task

    def remove(self, task_id: str) -> Optional[GenerationTask]:
        return self._tasks.pop(task_id, None)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)
