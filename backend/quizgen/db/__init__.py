"""
Persistence layer.

- stores: QuizStore / UserStore protocols and in-memory implementations
"""

from quizgen.db.stores import InMemoryQuizStore, InMemoryUserStore, QuizStore, UserStore

__all__ = ["QuizStore", "UserStore", "InMemoryQuizStore", "InMemoryUserStore"]
