"""Builds prompt text for quiz generation, regeneration and extension.

Rendering is deterministic: the same request parameters always give the
same text, which is what makes the fingerprint-keyed prompt cache valid.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from quizgen.core.config import settings
from quizgen.core.utils import fingerprint
from quizgen.prompts import (
    get_additional_questions_prompt,
    get_quiz_prompt,
    get_regeneration_prompt,
)
from quizgen.services.cache import Cache
from quizgen.services.quiz.schemas import (
    Difficulty,
    GenerationRequest,
    QuestionType,
    Quiz,
    RegenerationParams,
)

logger = logging.getLogger(__name__)


def prompt_cache_key(request: GenerationRequest) -> str:
    return f"prompt:{fingerprint(request.prompt_params())}"


class PromptBuilder:
    def __init__(self, cache: Cache, ttl: Optional[int] = None):
        self.cache = cache
        self.ttl = ttl if ttl is not None else settings.PROMPT_CACHE_TTL

    def render(self, request: GenerationRequest) -> str:
        return get_quiz_prompt(
            content_text=request.content,
            question_type=request.question_type.value,
            question_count=request.number_of_questions,
            difficulty=request.difficulty.value,
            language=request.language,
            instructions=request.instructions,
        )

    async def build(self, request: GenerationRequest) -> str:
        """Return the prompt for ``request``, served from cache when possible.

        Extracted file text is large and rarely repeated, so file-sourced
        requests are rendered without touching the cache.
        """
        if request.source == "file":
            return self.render(request)

        key = prompt_cache_key(request)
        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug("Prompt cache hit: %s", key)
            return cached

        prompt = self.render(request)
        await self.cache.set(key, prompt, self.ttl)
        logger.debug("Prompt cache miss, stored: %s", key)
        return prompt

    def build_regeneration_prompt(
        self,
        quiz: Quiz,
        indices: Sequence[int],
        params: RegenerationParams,
    ) -> str:
        """Prompt listing only the questions at ``indices``."""
        targets = [(i, quiz.questions[i].type.value, quiz.questions[i].text) for i in indices]
        difficulty = params.difficulty or quiz.difficulty or Difficulty.MEDIUM
        return get_regeneration_prompt(
            quiz_title=quiz.title,
            targets=targets,
            difficulty=difficulty.value,
            language=params.language or quiz.language or "en",
            instructions=params.instructions,
        )

    def build_additional_questions_prompt(
        self,
        quiz: Quiz,
        count: int,
        params: Optional[RegenerationParams] = None,
    ) -> str:
        question_type = quiz.question_type or (
            quiz.questions[0].type if quiz.questions else QuestionType.MULTIPLE_CHOICE
        )
        difficulty = (params and params.difficulty) or quiz.difficulty or Difficulty.MEDIUM
        return get_additional_questions_prompt(
            quiz_title=quiz.title,
            existing_questions=[q.text for q in quiz.questions],
            question_type=question_type.value,
            question_count=count,
            difficulty=difficulty.value,
            language=(params and params.language) or quiz.language or "en",
            instructions=params.instructions if params else None,
        )
