"""Turn raw model text into validated quiz data.

Parsing is tolerant (markdown fences, reasoning tags, chatter around the
JSON, trailing commas, ...) but validation is strict: anything that does not
yield well-formed questions raises ``ValidationError`` and is never retried.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

import json_repair
from pydantic import ValidationError as PydanticValidationError

from quizgen.core.errors import ValidationError
from quizgen.core.utils import sanitize_null_bytes
from quizgen.services.llm_service.llm_schemas import QuestionSetOutput, QuizOutput
from quizgen.services.quiz.schemas import Question, QuestionType, format_validation_errors

logger = logging.getLogger(__name__)

# ── JSON Extraction Patterns ──────────────────────────────────

_CODE_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?|```\s*", re.DOTALL)
_THINK_TAG_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)

_CLOSERS = {"{": "}", "[": "]"}


def _clean_json_text(text: str) -> str:
    """Remove markdown fences, reasoning tags, and explanatory prefixes."""
    text = _THINK_TAG_RE.sub("", text).strip()
    text = _CODE_FENCE_RE.sub("", text).strip()
    text = re.sub(r"^(Here's|Here is|The JSON|Output:|Response:)\s*:?\s*", "", text, flags=re.IGNORECASE)
    return text.strip()


def _extract_json_block(text: str, opener: str = "{") -> str:
    """Return the first balanced ``{...}`` / ``[...]`` block.

    Brackets inside string literals (including escaped quotes) are ignored.
    """
    closer = _CLOSERS[opener]
    start = text.find(opener)
    if start == -1:
        raise ValueError("No JSON block found")

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    raise ValueError("Could not extract complete JSON block")


def _repair_json(text: str) -> str:
    """Apply common JSON repair heuristics.

    - Replace single-quoted strings with double-quoted ones
    - Insert missing commas between string lines
    - Remove trailing commas
    """
    text = re.sub(r"'([^']*)'(?=\s*[:,\}\]])", r'"\1"', text)
    text = re.sub(r'"\s*\n\s*"', '",\n"', text)
    text = re.sub(r",(\s*[}\]])", r"\1", text)
    return text


def parse_json_robust(text: str, opener: str = "{") -> Any:
    """Extract and parse JSON from LLM output with aggressive repair.

    Attempts:
    1. Direct JSON parse
    2. Clean and parse
    3. Extract balanced block and parse (``opener`` first, then the other kind)
    4. Apply repair heuristics
    5. Use json_repair library

    Raises:
        ValueError: If JSON cannot be extracted after all attempts
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    cleaned = _clean_json_text(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    candidate = cleaned
    for bracket in (opener, "[" if opener == "{" else "{"):
        try:
            candidate = _extract_json_block(cleaned, bracket)
        except ValueError:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            break

    try:
        return json.loads(_repair_json(candidate))
    except json.JSONDecodeError:
        pass

    try:
        repaired = json_repair.loads(cleaned)
    except Exception as e:
        logger.error(f"All JSON parsing attempts failed: {e}")
        repaired = None
    if isinstance(repaired, (dict, list)) and repaired:
        return repaired

    raise ValueError(f"Cannot extract valid JSON from LLM response. First 500 chars: {text[:500]}")


# ── Question validation ───────────────────────────────────────


@dataclass
class QuestionValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def validate_question(data: Any) -> QuestionValidation:
    """Check one raw question dict against the per-type rules."""
    if not isinstance(data, dict):
        return QuestionValidation(False, ["question must be a JSON object"])
    try:
        Question.model_validate(data)
    except PydanticValidationError as exc:
        return QuestionValidation(False, format_validation_errors(exc))
    return QuestionValidation(True)


def _with_default_type(item: Any, default_type: Optional[QuestionType]) -> Any:
    if default_type is not None and isinstance(item, dict) and not item.get("type"):
        return {**item, "type": default_type.value}
    return item


def _check_questions(items: List[Any]) -> None:
    for index, item in enumerate(items):
        result = validate_question(item)
        if not result.is_valid:
            raise ValidationError(
                f"Invalid question at index {index}: {'; '.join(result.errors)}",
                context={"question_index": index},
            )


def _decode(raw: str, opener: str) -> Any:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("AI response is empty")
    try:
        return sanitize_null_bytes(parse_json_robust(raw, opener))
    except ValueError as exc:
        raise ValidationError("AI response is not valid JSON", context={"reason": str(exc)[:200]}) from exc


# ── Public API ────────────────────────────────────────────────


def parse_quiz(
    raw: str,
    default_type: Optional[QuestionType] = None,
    max_questions: Optional[int] = None,
) -> QuizOutput:
    """Parse a full quiz payload ``{"title", "description", "questions"}``.

    Questions beyond ``max_questions`` are dropped before validation.
    """
    data = _decode(raw, "{")
    if not isinstance(data, dict):
        raise ValidationError("AI response is not a JSON object")

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("AI response is missing a quiz title")

    questions = data.get("questions")
    if not isinstance(questions, list):
        raise ValidationError("AI response 'questions' must be a list")
    if not questions:
        raise ValidationError("AI response contains no questions")

    if max_questions is not None and len(questions) > max_questions:
        logger.info("Dropping %d extra questions from AI response", len(questions) - max_questions)
        questions = questions[:max_questions]

    questions = [_with_default_type(q, default_type) for q in questions]
    _check_questions(questions)

    try:
        return QuizOutput.model_validate(
            {**data, "description": data.get("description") or "", "questions": questions}
        )
    except PydanticValidationError as exc:
        raise ValidationError(
            "AI quiz failed validation: " + "; ".join(format_validation_errors(exc))
        ) from exc


def parse_questions(raw: str, default_type: Optional[QuestionType] = None) -> List[Question]:
    """Parse a bare question list, or an object wrapping one under ``questions``."""
    data = _decode(raw, "[")
    if isinstance(data, dict):
        data = data.get("questions")
    if not isinstance(data, list):
        raise ValidationError("AI response must contain a list of questions")
    if not data:
        raise ValidationError("AI response contains no questions")

    items = [_with_default_type(q, default_type) for q in data]
    _check_questions(items)
    return QuestionSetOutput.model_validate({"questions": items}).questions

