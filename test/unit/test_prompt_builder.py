"""
Unit tests for backend/quizgen/services/quiz/prompt_builder.py and
backend/quizgen/prompts/
Tests: deterministic rendering, prompt cache hits and keys, file-sourced
requests bypassing the cache, placeholder safety, regeneration and
additional-question prompts
No DB or network required.
"""

import sys
import os
import pytest

BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend"))
sys.path.insert(0, BACKEND_DIR)

os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")

from quizgen.prompts import get_quiz_prompt, language_name
from quizgen.services.cache import InMemoryCache
from quizgen.services.quiz.prompt_builder import PromptBuilder, prompt_cache_key
from quizgen.services.quiz.schemas import (
    GenerationRequest,
    Question,
    QuestionType,
    Quiz,
    RegenerationParams,
)

CONTENT = "Photosynthesis converts light energy into chemical energy stored in glucose."


def _request(**overrides):
    data = {
        "content": CONTENT,
        "question_type": "multiple_choice",
        "number_of_questions": 5,
        "difficulty": "medium",
        "language": "en",
        "user_id": "teacher-1",
    }
    data.update(overrides)
    return GenerationRequest.from_payload(data)


def _quiz():
    return Quiz(
        title="Photosynthesis",
        user_id="teacher-1",
        difficulty="easy",
        language="th",
        questions=[
            Question(text="What is chlorophyll?", type="short_answer", correct_answers=["a pigment"]),
            Question(text="Plants need light?", type="true_false", correct_answer=True),
            Question(text="Explain the Calvin cycle.", type="essay"),
        ],
    )


class CountingCache(InMemoryCache):
    def __init__(self):
        super().__init__()
        self.gets = 0
        self.sets = 0

    async def get(self, key):
        self.gets += 1
        return await super().get(key)

    async def set(self, key, value, ttl=None):
        self.sets += 1
        await super().set(key, value, ttl)


# ────────────────────────────────────────────────────────────────────────────
# Templates
# ────────────────────────────────────────────────────────────────────────────


class TestQuizPrompt:

    def test_contains_parameters(self):
        prompt = PromptBuilder(InMemoryCache()).render(_request(number_of_questions=7, difficulty="hard"))
        assert "exactly 7 questions" in prompt
        assert "hard (requires advanced knowledge and analysis)" in prompt
        assert "English" in prompt
        assert CONTENT in prompt
        assert '"correct_answer_index"' in prompt

    def test_deterministic(self):
        builder = PromptBuilder(InMemoryCache())
        assert builder.render(_request()) == builder.render(_request())

    def test_language_name(self):
        prompt = PromptBuilder(InMemoryCache()).render(_request(language="th"))
        assert "Thai" in prompt
        assert language_name("fr") == "fr"

    def test_instructions_included_when_given(self):
        builder = PromptBuilder(InMemoryCache())
        with_instr = builder.render(_request(instructions="Focus on the light reactions"))
        assert "Additional instructions: Focus on the light reactions" in with_instr
        assert "Additional instructions" not in builder.render(_request())

    def test_placeholders_in_content_not_expanded(self):
        content = "Template trick {{DIFFICULTY_LABEL}} and {{CONTENT_TEXT}} inside content."
        prompt = get_quiz_prompt(content, "true_false", 3, "easy", "en")
        assert content in prompt
        assert prompt.count("easy (suitable for beginners)") == 1

    @pytest.mark.parametrize("qtype,marker", [
        ("true_false", '"correct_answer"'),
        ("short_answer", '"correct_answers"'),
        ("essay", '"rubric"'),
    ])
    def test_type_specific_schema(self, qtype, marker):
        prompt = PromptBuilder(InMemoryCache()).render(_request(question_type=qtype))
        assert marker in prompt


# ────────────────────────────────────────────────────────────────────────────
# Cache behaviour
# ────────────────────────────────────────────────────────────────────────────


class TestPromptCache:

    def test_key_ignores_user(self):
        assert prompt_cache_key(_request(user_id="a")) == prompt_cache_key(_request(user_id="b"))

    def test_key_changes_with_params(self):
        assert prompt_cache_key(_request()) != prompt_cache_key(_request(difficulty="easy"))

    @pytest.mark.asyncio
    async def test_second_build_is_cache_hit(self):
        cache = CountingCache()
        builder = PromptBuilder(cache)
        first = await builder.build(_request())
        second = await builder.build(_request())
        assert first == second
        assert cache.sets == 1

    @pytest.mark.asyncio
    async def test_cached_text_returned_without_rendering(self, monkeypatch):
        cache = InMemoryCache()
        builder = PromptBuilder(cache)
        await cache.set(prompt_cache_key(_request()), "cached prompt")

        def fail(_request):
            raise AssertionError("render should not run on a cache hit")

        monkeypatch.setattr(builder, "render", fail)
        assert await builder.build(_request()) == "cached prompt"

    @pytest.mark.asyncio
    async def test_file_source_bypasses_cache(self):
        cache = CountingCache()
        builder = PromptBuilder(cache)
        await builder.build(_request(source="file", file_name="notes.pdf"))
        assert cache.gets == 0
        assert cache.sets == 0

    @pytest.mark.asyncio
    async def test_ttl_applied(self, manual_clock):
        cache = InMemoryCache(clock=manual_clock)
        builder = PromptBuilder(cache, ttl=60)
        await builder.build(_request())
        manual_clock.advance(61)
        assert await cache.get(prompt_cache_key(_request())) is None


# ────────────────────────────────────────────────────────────────────────────
# Regeneration / additional questions
# ────────────────────────────────────────────────────────────────────────────


class TestRegenerationPrompt:

    def test_lists_only_targets(self):
        prompt = PromptBuilder(InMemoryCache()).build_regeneration_prompt(
            _quiz(), [0, 2], RegenerationParams(user_id="teacher-1"),
        )
        assert "What is chlorophyll?" in prompt
        assert "Explain the Calvin cycle." in prompt
        assert "Plants need light?" not in prompt
        assert "exactly 2 new questions" in prompt

    def test_falls_back_to_quiz_settings(self):
        prompt = PromptBuilder(InMemoryCache()).build_regeneration_prompt(
            _quiz(), [1], RegenerationParams(user_id="teacher-1"),
        )
        assert "Thai" in prompt
        assert "easy (suitable for beginners)" in prompt

    def test_params_override_quiz_settings(self):
        prompt = PromptBuilder(InMemoryCache()).build_regeneration_prompt(
            _quiz(), [1], RegenerationParams(user_id="teacher-1", difficulty="hard", language="en"),
        )
        assert "English" in prompt
        assert "hard (requires" in prompt


class TestAdditionalQuestionsPrompt:

    def test_lists_existing_questions(self):
        prompt = PromptBuilder(InMemoryCache()).build_additional_questions_prompt(_quiz(), 4)
        assert "Write 4 additional questions" in prompt
        assert "1. What is chlorophyll?" in prompt
        assert "3. Explain the Calvin cycle." in prompt

    def test_type_from_first_question_when_quiz_has_none(self):
        prompt = PromptBuilder(InMemoryCache()).build_additional_questions_prompt(_quiz(), 2)
        assert "Question type: short answer" in prompt

    def test_quiz_type_wins(self):
        quiz = _quiz().model_copy(update={"question_type": QuestionType.ESSAY})
        prompt = PromptBuilder(InMemoryCache()).build_additional_questions_prompt(quiz, 2)
        assert "Question type: essay" in prompt


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
