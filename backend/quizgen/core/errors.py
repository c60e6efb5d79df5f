"""Typed errors raised by the generation core.

Every error carries an HTTP-style ``status_code``, a machine-readable
``code`` and a ``context`` dict (task id, user id, attempt count, ...) so
callers can log and present it without re-deriving anything.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class QuizGenError(Exception):
    """Base class for all errors surfaced to callers."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context: Dict[str, Any] = dict(context or {})
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def with_context(self, **context: Any) -> "QuizGenError":
        """Attach extra context without overwriting keys already present."""
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
            "code": self.code,
            "context": self.context,
            "timestamp": self.timestamp,
        }


class ValidationError(QuizGenError):
    """Malformed request, quota exceeded, bad indices or invalid AI output."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthorizationError(QuizGenError):
    status_code = 403
    code = "UNAUTHORIZED"


class NotFoundError(QuizGenError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", **kwargs: Any):
        super().__init__(f"{resource} not found", **kwargs)
        self.resource = resource


class AIServiceError(QuizGenError):
    """The AI provider could not produce a response."""

    status_code = 503
    code = "AI_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.kind = kind
        self.attempts = attempts
        if attempts is not None:
            self.context.setdefault("attempts", attempts)
        if kind is not None:
            self.context.setdefault("kind", kind)


class GenerationCancelledError(QuizGenError):
    """The task was cancelled before its result could be persisted."""

    status_code = 409
    code = "GENERATION_CANCELLED"


class InvalidTransitionError(ValueError):
    """A task status change would move the state machine backwards."""
