"""Prompt template loader.

Each ``get_*_prompt`` function loads a ``.txt`` template from this
package directory and substitutes ``{{PLACEHOLDER}}`` markers. Substitution
is a single pass, so placeholder-like text inside user content is left as is.
"""

from __future__ import annotations

import json
import os
import re
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

_DIR = os.path.dirname(__file__)
_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_]+)\}\}")

QUESTION_TYPE_LABELS = {
    "multiple_choice": "multiple choice (exactly 4 options, one correct)",
    "true_false": "true / false",
    "short_answer": "short answer",
    "essay": "essay",
}

DIFFICULTY_LABELS = {
    "easy": "easy (suitable for beginners)",
    "medium": "medium (requires basic knowledge of the subject)",
    "hard": "hard (requires advanced knowledge and analysis)",
}

LANGUAGE_NAMES = {
    "en": "English",
    "th": "Thai",
}

_TYPE_RULES = {
    "multiple_choice": (
        "- Give exactly 4 options per question\n"
        "- Exactly one option is correct; its 0-based position goes in \"correct_answer_index\"\n"
        "- Avoid \"all of the above\" and \"none of the above\""
    ),
    "true_false": (
        "- Each statement must be clearly true or clearly false\n"
        "- \"correct_answer\" is a JSON boolean\n"
        "- Avoid vague qualifiers such as \"sometimes\" or \"usually\""
    ),
    "short_answer": (
        "- Each question has a short, specific answer\n"
        "- List every accepted answer in \"correct_answers\""
    ),
    "essay": (
        "- Questions must require analysis, not recall\n"
        "- State the expected scope of the answer\n"
        "- Provide a grading \"rubric\""
    ),
}

_SCHEMA_EXAMPLES = {
    "multiple_choice": {
        "text": "Question text",
        "type": "multiple_choice",
        "options": ["Option A", "Option B", "Option C", "Option D"],
        "correct_answer_index": 0,
        "explanation": "Why the answer is correct",
    },
    "true_false": {
        "text": "Statement to judge",
        "type": "true_false",
        "correct_answer": True,
        "explanation": "Why the statement is true or false",
    },
    "short_answer": {
        "text": "Question text",
        "type": "short_answer",
        "correct_answers": ["accepted answer", "alternative wording"],
        "explanation": "Short justification",
    },
    "essay": {
        "text": "Essay prompt",
        "type": "essay",
        "rubric": "What a complete answer must cover",
        "explanation": "Key points of a model answer",
    },
}


@lru_cache(maxsize=32)
def _load(filename: str) -> str:
    """Read a template file, caching the result."""
    with open(os.path.join(_DIR, filename), encoding="utf-8") as f:
        return f.read()


def _render(filename: str, subs: Dict[str, str]) -> str:
    """Load *filename* and apply all substitutions in one pass."""
    text = _load(filename)
    return _PLACEHOLDER_RE.sub(lambda m: subs.get(m.group(1), m.group(0)), text)


def _instructions_line(instructions: Optional[str]) -> str:
    return f"- Additional instructions: {instructions}\n" if instructions else ""


def _schema_example(question_type: str) -> str:
    example = json.dumps(_SCHEMA_EXAMPLES[question_type], indent=2, ensure_ascii=False)
    return "\n".join("    " + line for line in example.splitlines())


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


# ── Public helpers ────────────────────────────────────────


def get_quiz_prompt(
    content_text: str,
    question_type: str,
    question_count: int,
    difficulty: str,
    language: str,
    instructions: Optional[str] = None,
) -> str:
    return _render("quiz_prompt.txt", {
        "COUNT_INSTRUCTION": f"with exactly {question_count} questions",
        "QUESTION_TYPE_LABEL": QUESTION_TYPE_LABELS[question_type],
        "DIFFICULTY_LABEL": DIFFICULTY_LABELS[difficulty],
        "LANGUAGE_NAME": language_name(language),
        "INSTRUCTIONS": _instructions_line(instructions),
        "TYPE_RULES": _TYPE_RULES[question_type],
        "QUESTION_SCHEMA": _schema_example(question_type),
        "CONTENT_TEXT": content_text,
    })


def get_regeneration_prompt(
    quiz_title: str,
    targets: Sequence[Tuple[int, str, str]],
    difficulty: str,
    language: str,
    instructions: Optional[str] = None,
) -> str:
    """``targets`` is ``(index, type, text)`` for each question being replaced."""
    listing = "\n".join(
        f"{n}. [{qtype}] (question {index + 1}) {text}"
        for n, (index, qtype, text) in enumerate(targets, start=1)
    )
    return _render("regenerate_prompt.txt", {
        "QUIZ_TITLE": quiz_title,
        "COUNT": str(len(targets)),
        "DIFFICULTY_LABEL": DIFFICULTY_LABELS[difficulty],
        "LANGUAGE_NAME": language_name(language),
        "INSTRUCTIONS": _instructions_line(instructions),
        "TARGET_QUESTIONS": listing,
    })


def get_additional_questions_prompt(
    quiz_title: str,
    existing_questions: Iterable[str],
    question_type: str,
    question_count: int,
    difficulty: str,
    language: str,
    instructions: Optional[str] = None,
) -> str:
    existing: List[str] = [f"{i}. {text}" for i, text in enumerate(existing_questions, start=1)]
    return _render("additional_questions_prompt.txt", {
        "QUIZ_TITLE": quiz_title,
        "COUNT": str(question_count),
        "QUESTION_TYPE_LABEL": QUESTION_TYPE_LABELS[question_type],
        "DIFFICULTY_LABEL": DIFFICULTY_LABELS[difficulty],
        "LANGUAGE_NAME": language_name(language),
        "INSTRUCTIONS": _instructions_line(instructions),
        "TYPE_RULES": _TYPE_RULES[question_type],
        "QUESTION_SCHEMA": _schema_example(question_type),
        "EXISTING_QUESTIONS": "\n".join(existing) or "(none)",
    })
