"""
Shared pytest fixtures and configuration for the entire test suite.

Provides in-process fakes for everything the generation core talks to:
a scripted chat model, a manual clock, in-memory stores and a factory for a
fully wired ``QuizGenerationService``. No network access required.
"""

import sys
import os
import json
from typing import Any, Dict, List, Optional

import pytest

# ── Ensure backend is importable from every pytest session ──────────────────
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

# Minimal env so that Pydantic Settings can validate on import
os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("LLM_PROVIDER", "GOOGLE")


# ── Fake chat model ──────────────────────────────────────────────────────────


class FakeResponse:
    """Shape of a LangChain ``AIMessage`` as far as the AI client cares."""

    def __init__(self, content: Any, response_metadata: Optional[Dict[str, Any]] = None):
        self.content = content
        self.response_metadata = response_metadata or {"finish_reason": "STOP"}


class ScriptedLLM:
    """Returns / raises the scripted outcomes in order; the last one repeats.

    An outcome may be a string, a ``FakeResponse``, an exception instance or
    an async callable taking the prompt.
    """

    model = "fake-gemini"

    def __init__(self, *outcomes: Any):
        self.outcomes: List[Any] = list(outcomes) or ["{}"]
        self.calls: List[str] = []

    async def ainvoke(self, prompt: str):
        self.calls.append(prompt)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = await outcome(prompt)
        if isinstance(outcome, FakeResponse):
            return outcome
        return FakeResponse(outcome)


class ManualClock:
    """Monotonic clock advanced only by ``sleep`` / ``advance``."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ── Payload builders ─────────────────────────────────────────────────────────


def mc_question(n: int = 1, answer: int = 0) -> Dict[str, Any]:
    return {
        "text": f"Question {n}?",
        "type": "multiple_choice",
        "options": [f"Q{n} option {c}" for c in "ABCD"],
        "correct_answer_index": answer,
        "explanation": f"Because of reason {n}.",
    }


def quiz_json(questions: List[Dict[str, Any]], title: str = "Sample Quiz") -> str:
    return json.dumps({"title": title, "description": "Generated for tests", "questions": questions})


def mc_quiz_json(count: int, title: str = "Sample Quiz") -> str:
    return quiz_json([mc_question(i + 1) for i in range(count)], title)


@pytest.fixture
def payloads():
    """Namespace of JSON payload builders for AI responses."""
    from types import SimpleNamespace
    return SimpleNamespace(
        mc_question=mc_question,
        quiz_json=quiz_json,
        mc_quiz_json=mc_quiz_json,
        FakeResponse=FakeResponse,
    )


# ── Core fakes ───────────────────────────────────────────────────────────────


@pytest.fixture
def manual_clock():
    return ManualClock()


@pytest.fixture
def make_llm():
    return ScriptedLLM


@pytest.fixture
def user_store():
    from quizgen.db.stores import InMemoryUserStore
    from quizgen.services.quiz.schemas import User

    return InMemoryUserStore([
        User(id="teacher-1", role="teacher"),
        User(id="teacher-2", role="teacher"),
        User(id="student-1", role="student"),
        User(id="admin-1", role="admin"),
        User(id="suspended-1", role="teacher", status="suspended"),
    ])


@pytest.fixture
def quiz_store():
    from quizgen.db.stores import InMemoryQuizStore
    return InMemoryQuizStore()


@pytest.fixture
def make_client(manual_clock):
    """Build an ``AIClient`` around a scripted model with a recording sleep."""
    from quizgen.services.llm_service.ai_client import AIClient
    from quizgen.services.rate_limiter import SlidingWindowRateLimiter

    def _make(llm, **kwargs):
        kwargs.setdefault("limiter", SlidingWindowRateLimiter(
            limit=100, clock=manual_clock, sleep=manual_clock.sleep,
        ))
        kwargs.setdefault("max_attempts", 3)
        kwargs.setdefault("base_delay", 2.0)
        kwargs.setdefault("timeout", 5.0)
        kwargs.setdefault("sleep", manual_clock.sleep)
        kwargs.setdefault("model_name", "fake-gemini")
        return AIClient(llm=llm, **kwargs)

    return _make


@pytest.fixture
def make_service(quiz_store, user_store, make_client):
    """Wire a ``QuizGenerationService`` around a scripted model."""
    from quizgen.services.cache import InMemoryCache
    from quizgen.services.quiz.generator import QuizGenerationService
    from quizgen.services.quiz.task_registry import TaskRegistry

    def _make(llm, cache=None, **client_kwargs):
        return QuizGenerationService(
            quiz_store=quiz_store,
            user_store=user_store,
            cache=cache if cache is not None else InMemoryCache(),
            ai_client=make_client(llm, **client_kwargs),
            registry=TaskRegistry(),
        )

    return _make
