"""Single-prompt AI client with rate limiting, timeout and retry.

Every provider failure is mapped onto a closed set of ``ProviderErrorKind``
values. ``classify`` decides from the kind alone whether another attempt is
worthwhile, so the retry policy never inspects exception messages.

Policy (defaults from settings):
- one rate-limiter slot per attempt
- each attempt raced against ``AI_TIMEOUT`` seconds
- up to ``AI_MAX_RETRIES`` attempts, sleeping ``base * 2 ** (attempt - 1)``
  between retryable failures
- terminal failures abort immediately
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from quizgen.core.config import settings
from quizgen.core.errors import AIServiceError, ValidationError
from quizgen.services.performance_logger import PerformanceTimer, log_activity
from quizgen.services.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

HEALTH_CHECK_PROMPT = 'Reply with the single word "OK".'

_SAFETY_FINISH_REASONS = {"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII", "IMAGE_SAFETY"}
_UNSET_BLOCK_REASONS = {"", "0", "BLOCK_REASON_UNSPECIFIED", "BLOCKED_REASON_UNSPECIFIED"}


class ProviderErrorKind(str, Enum):
    TIMEOUT = "timeout"
    SAFETY_BLOCK = "safety_block"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_INPUT = "invalid_input"
    PERMISSION_DENIED = "permission_denied"
    TRANSIENT = "transient"


class RetryDecision(str, Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


class ProviderError(Exception):
    """A provider failure tagged with its kind."""

    def __init__(self, kind: ProviderErrorKind, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"ProviderError({self.kind.value}, {self.message!r})"


_RETRYABLE_KINDS = {
    ProviderErrorKind.TIMEOUT,
    ProviderErrorKind.QUOTA_EXCEEDED,
    ProviderErrorKind.TRANSIENT,
}


def classify(error: ProviderError) -> RetryDecision:
    return RetryDecision.RETRYABLE if error.kind in _RETRYABLE_KINDS else RetryDecision.TERMINAL


def backoff_delay(attempt: int, base: float) -> float:
    """Delay before retrying after failed attempt number ``attempt`` (1-based)."""
    return base * 2 ** (attempt - 1)


# ── Exception mapping ─────────────────────────────────────────


def _status_code(exc: BaseException) -> Optional[int]:
    """Find an HTTP status on the exception or anything in its cause chain."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        response = getattr(current, "response", None)
        for candidate in (
            getattr(current, "status_code", None),
            getattr(current, "code", None),
            getattr(response, "status_code", None),
        ):
            if isinstance(candidate, int) and 100 <= candidate < 600:
                return int(candidate)
        current = current.__cause__ or current.__context__
    return None


def to_provider_error(exc: BaseException) -> ProviderError:
    """Map a raw provider exception onto a ``ProviderError``."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ProviderError(ProviderErrorKind.TIMEOUT, "AI request timed out")

    status = _status_code(exc)
    message = f"{type(exc).__name__}: {exc}"
    if status in (400, 404, 422):
        kind = ProviderErrorKind.INVALID_INPUT
    elif status in (401, 403):
        kind = ProviderErrorKind.PERMISSION_DENIED
    elif status == 429:
        kind = ProviderErrorKind.QUOTA_EXCEEDED
    else:
        kind = ProviderErrorKind.TRANSIENT
    return ProviderError(kind, message, status_code=status)


# ── Response helpers ──────────────────────────────────────────


def response_text(response: Any) -> str:
    """Text of a chat model response (string or list-of-parts content)."""
    content = getattr(response, "content", response)
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(str(part.get("text", "")))
        content = "".join(parts)
    return str(content)


def safety_block_reason(response: Any) -> Optional[str]:
    """Return the block / finish reason when the provider withheld output."""
    metadata = getattr(response, "response_metadata", None) or {}

    finish_reason = metadata.get("finish_reason")
    finish_reason = getattr(finish_reason, "name", finish_reason)
    if finish_reason and str(finish_reason).upper() in _SAFETY_FINISH_REASONS:
        return str(finish_reason).upper()

    feedback = metadata.get("prompt_feedback") or {}
    block_reason = feedback.get("block_reason") if isinstance(feedback, dict) else None
    block_reason = getattr(block_reason, "name", block_reason)
    if block_reason is not None and str(block_reason).upper() not in _UNSET_BLOCK_REASONS:
        return str(block_reason).upper()
    return None


# ── Client ────────────────────────────────────────────────────


class AIClient:
    def __init__(
        self,
        llm: Any = None,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        model_name: Optional[str] = None,
        max_prompt_length: Optional[int] = None,
    ):
        if llm is None:
            from quizgen.services.llm_service.llm import get_llm_structured, model_name as _model_name

            llm = get_llm_structured()
            model_name = model_name or _model_name()
        self.llm = llm
        self.limiter = limiter or SlidingWindowRateLimiter()
        self.max_attempts = max_attempts if max_attempts is not None else settings.AI_MAX_RETRIES
        self.base_delay = base_delay if base_delay is not None else settings.AI_RETRY_BASE_DELAY
        self.timeout = timeout if timeout is not None else settings.AI_TIMEOUT
        self.max_prompt_length = max_prompt_length or settings.AI_MAX_PROMPT_LENGTH
        self.model_name = model_name or getattr(llm, "model", None) or type(llm).__name__
        self._sleep = sleep

    def _validate_prompt(self, prompt: Any) -> None:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("Prompt must be a non-empty string")
        if len(prompt) > self.max_prompt_length:
            raise ValidationError(
                f"Prompt is too long ({len(prompt)} > {self.max_prompt_length} characters)",
                context={"prompt_length": len(prompt)},
            )

    async def _call_once(self, prompt: str) -> str:
        await self.limiter.acquire()
        try:
            response = await asyncio.wait_for(self.llm.ainvoke(prompt), timeout=self.timeout)
        except Exception as exc:
            raise to_provider_error(exc) from exc

        reason = safety_block_reason(response)
        if reason:
            raise ProviderError(ProviderErrorKind.SAFETY_BLOCK, f"Response blocked by safety filter ({reason})")

        text = response_text(response)
        if not text.strip():
            raise ProviderError(ProviderErrorKind.TRANSIENT, "AI returned an empty response")
        return text

    async def invoke(
        self,
        prompt: str,
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> str:
        """Send ``prompt`` and return the raw response text.

        ``on_attempt(n)`` is called before attempt ``n``; anything it raises
        aborts the call.

        Raises:
            ValidationError: prompt empty or too long (no call is made)
            AIServiceError: terminal provider error or retries exhausted
        """
        self._validate_prompt(prompt)

        last_error: Optional[ProviderError] = None
        for attempt in range(1, self.max_attempts + 1):
            if on_attempt is not None:
                on_attempt(attempt)
            try:
                with PerformanceTimer("ai") as timer:
                    text = await self._call_once(prompt)
            except ProviderError as err:
                last_error = err
                decision = classify(err)
                logger.warning(
                    "AI attempt %d/%d failed (%s, %s): %s",
                    attempt, self.max_attempts, err.kind.value, decision.value, err.message,
                )
                if decision is RetryDecision.TERMINAL:
                    raise AIServiceError(
                        f"AI service error: {err.message}",
                        kind=err.kind.value,
                        attempts=attempt,
                    ) from err
                if attempt < self.max_attempts:
                    await self._sleep(backoff_delay(attempt, self.base_delay))
                continue

            log_activity(
                "ai_request",
                model=self.model_name,
                attempt=attempt,
                prompt_length=len(prompt),
                response_length=len(text),
                elapsed=round(timer.elapsed, 3),
            )
            return text

        raise AIServiceError(
            f"AI service failed after {self.max_attempts} attempts: {last_error.message if last_error else 'no attempts made'}",
            kind=last_error.kind.value if last_error else None,
            attempts=self.max_attempts,
        ) from last_error

    async def check_health(self) -> Dict[str, Any]:
        """One un-retried round trip; never raises."""
        start = time.perf_counter()
        result: Dict[str, Any] = {"model": self.model_name}
        try:
            await self._call_once(HEALTH_CHECK_PROMPT)
            result["status"] = "healthy"
        except Exception as exc:
            logger.error(f"AI health check failed: {exc}")
            result["status"] = "unhealthy"
            result["error"] = str(exc)
        result["response_time"] = round((time.perf_counter() - start) * 1000)
        result["timestamp"] = datetime.now(timezone.utc).isoformat()
        return result
