"""Domain models for quiz generation.

``Question`` carries the per-type invariants; ``GenerationRequest`` is the
validated, immutable input to the orchestrator.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from quizgen.core.config import settings
from quizgen.core.errors import ValidationError
from quizgen.core.utils import new_id, sanitize_null_bytes


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    ESSAY = "essay"
    SHORT_ANSWER = "short_answer"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


def format_validation_errors(exc: PydanticValidationError) -> List[str]:
    """Flatten pydantic errors into ``"field: message"`` strings."""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "__root__")
        msg = err.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        messages.append(f"{loc}: {msg}" if loc else msg)
    return messages


# ── Question ──────────────────────────────────────────────


def question_type_errors(
    qtype: QuestionType,
    options: Optional[List[str]],
    correct_answer_index: Optional[int],
    correct_answer: Optional[bool],
    correct_answers: Optional[List[str]],
) -> List[str]:
    """Return the list of per-type invariant violations (empty when valid)."""
    errors: List[str] = []

    if qtype is QuestionType.MULTIPLE_CHOICE:
        expected = settings.MC_OPTION_COUNT
        if not options:
            errors.append("multiple choice question must have an options list")
        else:
            if len(options) != expected:
                errors.append(
                    f"multiple choice question must have exactly {expected} options, got {len(options)}"
                )
            if any(not opt.strip() for opt in options):
                errors.append("all options must be non-empty strings")
        if correct_answer_index is None:
            errors.append("multiple choice question must have correct_answer_index")
        elif options and not 0 <= correct_answer_index < len(options):
            errors.append(
                f"correct_answer_index {correct_answer_index} is outside [0, {len(options)})"
            )

    elif qtype is QuestionType.TRUE_FALSE:
        if correct_answer is None:
            errors.append("true/false question must have a boolean correct_answer")

    elif qtype is QuestionType.SHORT_ANSWER:
        if not correct_answers:
            errors.append("short answer question must have a non-empty correct_answers list")
        elif any(not ans.strip() for ans in correct_answers):
            errors.append("correct_answers must be non-empty strings")

    return errors


class Question(BaseModel):
    """A single quiz question; ``type`` decides which answer fields are required."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    text: str = Field(min_length=1, validation_alias=AliasChoices("text", "question", "questionText"))
    type: QuestionType
    options: Optional[List[str]] = None
    correct_answer_index: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("correct_answer_index", "correctAnswerIndex")
    )
    correct_answer: Optional[bool] = Field(
        default=None, validation_alias=AliasChoices("correct_answer", "correctAnswer")
    )
    correct_answers: Optional[List[str]] = Field(
        default=None, validation_alias=AliasChoices("correct_answers", "correctAnswers")
    )
    rubric: Optional[str] = None
    explanation: Optional[str] = None

    @model_validator(mode="after")
    def _check_type_fields(self) -> "Question":
        errors = question_type_errors(
            self.type,
            self.options,
            self.correct_answer_index,
            self.correct_answer,
            self.correct_answers,
        )
        if errors:
            raise ValueError("; ".join(errors))
        return self


# ── Request ───────────────────────────────────────────────


class GenerationRequest(BaseModel):
    """Validated, immutable input for a generation run."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    content: str
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    number_of_questions: int = Field(default=settings.DEFAULT_QUESTION_COUNT, ge=1)
    difficulty: Difficulty = Difficulty.MEDIUM
    language: str = Field(default="en", min_length=2, max_length=10)
    user_id: str = Field(min_length=1)
    source: Literal["text", "file"] = "text"
    file_name: Optional[str] = None
    instructions: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("content", mode="before")
    @classmethod
    def _clean_content(cls, v):
        if isinstance(v, str):
            return sanitize_null_bytes(v)
        return v

    @field_validator("content", mode="after")
    @classmethod
    def _check_content_length(cls, v: str) -> str:
        if len(v) < settings.MIN_CONTENT_LENGTH:
            raise ValueError(f"content must be at least {settings.MIN_CONTENT_LENGTH} characters")
        if len(v) > settings.MAX_CONTENT_LENGTH:
            raise ValueError(f"content must be at most {settings.MAX_CONTENT_LENGTH} characters")
        return v

    @field_validator("number_of_questions", mode="after")
    @classmethod
    def _check_question_count(cls, v: int) -> int:
        if v > settings.MAX_QUESTIONS:
            raise ValueError(f"number_of_questions must be between 1 and {settings.MAX_QUESTIONS}")
        return v

    @field_validator("language", mode="after")
    @classmethod
    def _lower_language(cls, v: str) -> str:
        return v.lower()

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "GenerationRequest":
        """Build from a controller payload, raising the project ``ValidationError``."""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid generation request: " + "; ".join(format_validation_errors(exc)),
                context={"user_id": data.get("user_id")},
            ) from exc

    def prompt_params(self) -> Dict[str, Any]:
        """The subset of fields that shape the prompt text."""
        return {
            "content": self.content,
            "question_type": self.question_type.value,
            "number_of_questions": self.number_of_questions,
            "difficulty": self.difficulty.value,
            "language": self.language,
            "instructions": self.instructions or "",
        }


class RegenerationParams(BaseModel):
    """Options for regenerating / extending an existing quiz."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    difficulty: Optional[Difficulty] = None
    language: Optional[str] = None
    instructions: Optional[str] = Field(default=None, max_length=1000)


# ── Quiz ──────────────────────────────────────────────────


class GenerationMetadata(BaseModel):
    generation_id: str
    original_prompt: str
    generation_params: Dict[str, Any] = Field(default_factory=dict)
    ai_model: str
    generated_at: datetime = Field(default_factory=_utcnow)


class QuizStatistics(BaseModel):
    total_questions: int
    question_types: Dict[str, int]
    estimated_time: int  # minutes
    difficulty: Difficulty


class Quiz(BaseModel):
    id: str = Field(default_factory=lambda: new_id("quiz"))
    title: str
    description: str = ""
    questions: List[Question]
    user_id: str
    source: Literal["text", "file"] = "text"
    file_name: Optional[str] = None
    question_type: Optional[QuestionType] = None
    difficulty: Optional[Difficulty] = None
    language: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    deleted_at: Optional[datetime] = None
    version: int = 1
    generation_metadata: Optional[GenerationMetadata] = None
    statistics: Optional[QuizStatistics] = None


class User(BaseModel):
    id: str
    role: str = "student"
    status: str = "active"

    @property
    def is_active(self) -> bool:
        return self.status == "active"
