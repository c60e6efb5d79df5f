"""Quiz statistics and pre-generation estimates.

All functions here are pure; the orchestrator feeds them validated
questions or raw request parameters.
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping

from quizgen.core.config import settings
from quizgen.services.quiz.schemas import Difficulty, Question, QuestionType, QuizStatistics

# Minutes a learner needs per question
COMPLETION_MINUTES = {
    QuestionType.MULTIPLE_CHOICE: 1.5,
    QuestionType.TRUE_FALSE: 1.0,
    QuestionType.SHORT_ANSWER: 3.0,
    QuestionType.ESSAY: 10.0,
}
DEFAULT_COMPLETION_MINUTES = 2.0

# Expected output tokens per generated question
OUTPUT_TOKENS_PER_QUESTION = {
    QuestionType.MULTIPLE_CHOICE: 150,
    QuestionType.TRUE_FALSE: 80,
    QuestionType.SHORT_ANSWER: 100,
    QuestionType.ESSAY: 200,
}
DEFAULT_OUTPUT_TOKENS = 120

TYPE_COMPLEXITY = {
    QuestionType.MULTIPLE_CHOICE: 1.0,
    QuestionType.TRUE_FALSE: 0.5,
    QuestionType.SHORT_ANSWER: 1.5,
    QuestionType.ESSAY: 2.0,
}
DIFFICULTY_MULTIPLIER = {
    Difficulty.EASY: 0.8,
    Difficulty.MEDIUM: 1.0,
    Difficulty.HARD: 1.3,
}
TECHNICAL_KEYWORDS = (
    "algorithm", "function", "class", "database",
    "network", "security", "api", "framework",
)

MAX_ESTIMATED_SECONDS = 180
MAX_COMPLEXITY = 5


def question_type_histogram(questions: Iterable[Question]) -> Dict[str, int]:
    return dict(Counter(q.type.value for q in questions))


def naive_difficulty(questions: List[Question]) -> Difficulty:
    """Guess the difficulty from question length, type and option count."""
    if not questions:
        return Difficulty.EASY

    total = 0.0
    for q in questions:
        score = 1.0
        if len(q.text) > 200:
            score += 0.5
        if q.type is QuestionType.ESSAY:
            score += 1.0
        if q.options and len(q.options) > 4:
            score += 0.3
        total += score

    average = total / len(questions)
    if average > 2:
        return Difficulty.HARD
    if average > 1.5:
        return Difficulty.MEDIUM
    return Difficulty.EASY


def estimated_completion_minutes(questions: Iterable[Question]) -> int:
    minutes = sum(COMPLETION_MINUTES.get(q.type, DEFAULT_COMPLETION_MINUTES) for q in questions)
    return math.ceil(minutes)


def quiz_statistics(questions: List[Question]) -> QuizStatistics:
    return QuizStatistics(
        total_questions=len(questions),
        question_types=question_type_histogram(questions),
        estimated_time=estimated_completion_minutes(questions),
        difficulty=naive_difficulty(questions),
    )


def content_complexity(content: str, question_type: QuestionType, difficulty: Difficulty) -> int:
    """Score 1..5 from content length, technical vocabulary, type and difficulty."""
    score = 1.0
    if len(content) > 5000:
        score += 2
    elif len(content) > 1000:
        score += 1

    lowered = content.lower()
    keyword_hits = sum(1 for kw in TECHNICAL_KEYWORDS if kw in lowered)
    score += min(keyword_hits * 0.3, 1.5)

    score += TYPE_COMPLEXITY.get(question_type, 1.0)
    score *= DIFFICULTY_MULTIPLIER.get(difficulty, 1.0)

    return max(1, min(MAX_COMPLEXITY, math.ceil(score)))


def estimate_generation(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Time, token and cost estimate for a prospective generation."""
    content = str(params.get("content") or "")
    question_type = QuestionType(params.get("question_type") or QuestionType.MULTIPLE_CHOICE)
    difficulty = Difficulty(params.get("difficulty") or Difficulty.MEDIUM)
    count = int(params.get("number_of_questions") or settings.DEFAULT_QUESTION_COUNT)

    complexity = content_complexity(content, question_type, difficulty)

    seconds = 5 + count * 2 + complexity * 3
    if difficulty is Difficulty.HARD:
        seconds += 5
    elif difficulty is Difficulty.MEDIUM:
        seconds += 2
    seconds = min(seconds, MAX_ESTIMATED_SECONDS)

    input_tokens = math.ceil(len(content) / 4)
    output_tokens = count * OUTPUT_TOKENS_PER_QUESTION.get(question_type, DEFAULT_OUTPUT_TOKENS)
    input_cost = input_tokens * settings.INPUT_COST_PER_TOKEN
    output_cost = output_tokens * settings.OUTPUT_COST_PER_TOKEN

    return {
        "estimated_time": seconds,
        "estimated_tokens": {
            "input": input_tokens,
            "output": output_tokens,
            "total": input_tokens + output_tokens,
        },
        "estimated_cost": {
            "amount": round(input_cost + output_cost, 6),
            "currency": "USD",
            "breakdown": {
                "input": round(input_cost, 6),
                "output": round(output_cost, 6),
            },
        },
        "complexity": complexity,
        "recommendations": recommendations(content, question_type, difficulty, count),
    }


def recommendations(
    content: str,
    question_type: QuestionType,
    difficulty: Difficulty,
    count: int,
) -> List[str]:
    tips = []
    if count > 20:
        tips.append("Consider breaking large quizzes into smaller sections for better user experience")
    if len(content) > 5000:
        tips.append("Large content may result in longer generation times")
    if question_type is QuestionType.ESSAY:
        tips.append("Essay questions require more detailed rubrics for grading")
    if difficulty is Difficulty.HARD:
        tips.append("Hard difficulty questions may take longer to generate and validate")
    return tips
