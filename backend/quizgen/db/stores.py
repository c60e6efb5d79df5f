"""Persistence protocols consumed by the generation service.

The embedding application supplies real implementations (SQL, document
store, ...). The in-memory versions here back the tests and local runs.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Set

from quizgen.services.quiz.schemas import Question, Quiz, QuizStatistics, User

logger = logging.getLogger(__name__)


class QuizStore(Protocol):
    async def find_by_id(self, quiz_id: str) -> Optional[Quiz]: ...

    async def save(self, quiz: Quiz) -> Quiz: ...

    async def update_questions(
        self, quiz_id: str, questions: List[Question], statistics: Optional[QuizStatistics] = None
    ) -> Quiz: ...

    async def count_generations_today(self, user_id: str, since: datetime) -> int: ...

    async def check_collaborator(self, quiz_id: str, user_id: str) -> bool: ...

    async def reserve_generation(self, user_id: str, since: datetime, ceiling: int) -> bool: ...

    async def release_generation(self, user_id: str, since: datetime) -> None: ...


class UserStore(Protocol):
    async def find_by_id(self, user_id: str) -> Optional[User]: ...


class InMemoryQuizStore:
    """Quiz store kept in a dict.

    Generation counters are keyed on ``(user_id, since)`` where ``since`` is
    the start of the user's local day, so a new day starts a new counter.
    """

    def __init__(self):
        self.quizzes: Dict[str, Quiz] = {}
        self.collaborators: Dict[str, Set[str]] = defaultdict(set)
        self._generations: Dict[tuple, int] = defaultdict(int)
        self._lock = asyncio.Lock()

    async def find_by_id(self, quiz_id: str) -> Optional[Quiz]:
        quiz = self.quizzes.get(quiz_id)
        if quiz is None or quiz.deleted_at is not None:
            return None
        return quiz

    async def save(self, quiz: Quiz) -> Quiz:
        self.quizzes[quiz.id] = quiz
        logger.debug("Saved quiz %s for user=%s", quiz.id, quiz.user_id)
        return quiz

    async def update_questions(
        self, quiz_id: str, questions: List[Question], statistics: Optional[QuizStatistics] = None
    ) -> Quiz:
        quiz = self.quizzes[quiz_id]
        changes = {
            "questions": list(questions),
            "version": quiz.version + 1,
            "updated_at": datetime.now(timezone.utc),
        }
        if statistics is not None:
            changes["statistics"] = statistics
        # Shallow copy keeps the untouched Question objects identical
        updated = quiz.model_copy(update=changes)
        self.quizzes[quiz_id] = updated
        return updated

    async def soft_delete(self, quiz_id: str) -> None:
        quiz = self.quizzes[quiz_id]
        self.quizzes[quiz_id] = quiz.model_copy(update={"deleted_at": datetime.now(timezone.utc)})

    def add_collaborator(self, quiz_id: str, user_id: str) -> None:
        self.collaborators[quiz_id].add(user_id)

    async def check_collaborator(self, quiz_id: str, user_id: str) -> bool:
        return user_id in self.collaborators.get(quiz_id, set())

    async def count_generations_today(self, user_id: str, since: datetime) -> int:
        return self._generations.get((user_id, since), 0)

    async def reserve_generation(self, user_id: str, since: datetime, ceiling: int) -> bool:
        """Atomically increment the day's counter if it is below ``ceiling``."""
        async with self._lock:
            key = (user_id, since)
            if self._generations[key] >= ceiling:
                return False
            self._generations[key] += 1
            return True

    async def release_generation(self, user_id: str, since: datetime) -> None:
        async with self._lock:
            key = (user_id, since)
            if self._generations.get(key, 0) > 0:
                self._generations[key] -= 1


class InMemoryUserStore:
    def __init__(self, users: Optional[List[User]] = None):
        self.users: Dict[str, User] = {u.id: u for u in users or []}

    def add(self, user: User) -> None:
        self.users[user.id] = user

    async def find_by_id(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)
