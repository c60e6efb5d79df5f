"""Pydantic schemas for validating structured LLM outputs."""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from quizgen.services.quiz.schemas import Question


class QuizOutput(BaseModel):
    """A complete quiz as returned by the model."""

    title: str = Field(min_length=1)
    description: str = ""
    questions: List[Question] = Field(min_length=1)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class QuestionSetOutput(BaseModel):
    """Questions returned for regeneration / extension (no quiz envelope)."""

    questions: List[Question] = Field(min_length=1)
    title: Optional[str] = None
