"""Quiz generation orchestrator.

``QuizGenerationService`` is the only entry point controllers use. A
generation run moves through::

    starting -> building_prompt -> generating -> parsing -> enhancing -> completed

and is tracked in the injected ``TaskRegistry`` until it ends. Every stage
boundary is a cancellation checkpoint: once a task has been cancelled the
next checkpoint raises ``GenerationCancelledError``, the quota slot is
released and nothing is persisted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from quizgen.core.config import settings
from quizgen.core.errors import (
    AuthorizationError,
    GenerationCancelledError,
    NotFoundError,
    QuizGenError,
    ValidationError,
)
from quizgen.db.stores import QuizStore, UserStore
from quizgen.services.cache import Cache, InMemoryCache, ResilientCache
from quizgen.services.file_validator import validate_upload
from quizgen.services.llm_service.ai_client import AIClient
from quizgen.services.llm_service.response_parser import parse_questions, parse_quiz
from quizgen.services.performance_logger import (
    PerformanceTimer,
    log_activity,
    log_performance_metrics,
    start_generation_timer,
)
from quizgen.services.quiz.prompt_builder import PromptBuilder
from quizgen.services.quiz.quota import QuotaManager
from quizgen.services.quiz.schemas import (
    GenerationMetadata,
    GenerationRequest,
    Question,
    Quiz,
    RegenerationParams,
    format_validation_errors,
)
from quizgen.services.quiz.statistics import estimate_generation, quiz_statistics
from quizgen.services.quiz.task_registry import GenerationTask, TaskKind, TaskRegistry, TaskStatus
from quizgen.services.text_processing.extractor import extract_document

logger = logging.getLogger(__name__)

SERVICE_NAME = "quiz-generation-ai"


def validate_indices(indices: Any, question_count: int) -> List[int]:
    """Indices must be a non-empty list of unique ints in ``[0, question_count)``."""
    if not isinstance(indices, (list, tuple)) or not indices:
        raise ValidationError("question_indices must be a non-empty list")
    for index in indices:
        # bool is an int subclass; True/False are not indices
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValidationError(f"Invalid question index: {index!r}")
        if not 0 <= index < question_count:
            raise ValidationError(
                f"Question index {index} is out of range (quiz has {question_count} questions)",
                context={"index": index, "question_count": question_count},
            )
    if len(set(indices)) != len(indices):
        raise ValidationError("question_indices must not contain duplicates")
    return list(indices)


class QuizGenerationService:
    def __init__(
        self,
        quiz_store: QuizStore,
        user_store: UserStore,
        cache: Optional[Cache] = None,
        ai_client: Optional[AIClient] = None,
        registry: Optional[TaskRegistry] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        quota: Optional[QuotaManager] = None,
    ):
        self.quiz_store = quiz_store
        self.user_store = user_store
        self.cache = ResilientCache(cache if cache is not None else InMemoryCache())
        self.ai_client = ai_client or AIClient()
        self.registry = registry if registry is not None else TaskRegistry()
        self.prompt_builder = prompt_builder or PromptBuilder(self.cache)
        self.quota = quota or QuotaManager(quiz_store, user_store, self.cache)

    # ── Task helpers ──────────────────────────────────────

    def _advance(self, task_id: str, status: TaskStatus, **details: Any) -> GenerationTask:
        """Cancellation checkpoint + status update."""
        task = self.registry.get(task_id)
        if task is None or task.status is TaskStatus.CANCELLED:
            raise GenerationCancelledError(
                "Generation was cancelled",
                context={"task_id": task_id},
            )
        self.registry.update_status(task_id, status, details or None)
        return task

    def _attempt_hook(self, task_id: str):
        def on_attempt(attempt: int) -> None:
            self._advance(task_id, TaskStatus.GENERATING, attempt=attempt)
        return on_attempt

    def _fail_task(self, task: GenerationTask, exc: BaseException) -> None:
        if isinstance(exc, QuizGenError):
            exc.with_context(task_id=task.id, user_id=task.user_id)

        if isinstance(exc, (GenerationCancelledError, asyncio.CancelledError)):
            logger.info("Generation %s cancelled before completion", task.id)
            log_activity("generation_cancelled", user_id=task.user_id, generation_id=task.id)
            return

        current = self.registry.get(task.id)
        if current is not None and not current.status.is_terminal:
            self.registry.update_status(
                task.id,
                TaskStatus.FAILED,
                {"error": str(exc), "error_code": getattr(exc, "code", type(exc).__name__)},
            )
        logger.error("Generation %s (%s) failed: %s", task.id, task.kind.value, exc)
        log_activity(
            "generation_failed",
            user_id=task.user_id,
            generation_id=task.id,
            kind=task.kind.value,
            error=str(exc),
        )

    def _complete_task(self, task: GenerationTask, **details: Any) -> None:
        if task.id in self.registry:
            self.registry.update_status(task.id, TaskStatus.COMPLETED, details or None)

    # ── Shared lookups ────────────────────────────────────

    async def _load_quiz(self, quiz_id: str) -> Quiz:
        quiz = await self.quiz_store.find_by_id(quiz_id)
        if quiz is None:
            raise NotFoundError("Quiz", context={"quiz_id": quiz_id})
        return quiz

    async def _check_edit_permission(self, quiz: Quiz, user_id: str) -> None:
        if quiz.user_id == user_id:
            return

        key = f"quiz:{quiz.id}:permission:{user_id}"
        allowed = await self.cache.get(key)
        if allowed is None:
            allowed = await self.quiz_store.check_collaborator(quiz.id, user_id)
            await self.cache.set(key, allowed, settings.PERMISSION_CACHE_TTL)

        if not allowed:
            raise AuthorizationError(
                "You do not have permission to edit this quiz",
                context={"quiz_id": quiz.id, "user_id": user_id},
            )

    async def _invalidate_quiz_cache(self, quiz_id: str) -> None:
        await self.cache.delete(f"quiz:{quiz_id}")
        await self.cache.invalidate_pattern(f"quiz:{quiz_id}:*")

    def _owned_task(self, task_id: str, user_id: str, action: str) -> GenerationTask:
        task = self.registry.get(task_id)
        if task is None:
            raise NotFoundError("Generation task", context={"task_id": task_id})
        if task.user_id != user_id:
            raise AuthorizationError(
                f"You do not have permission to {action} this generation",
                context={"task_id": task_id, "user_id": user_id},
            )
        return task

    # ── Generation ────────────────────────────────────────

    async def generate_from_text(self, request: Union[GenerationRequest, Mapping[str, Any]]) -> Quiz:
        """Generate, validate and persist a quiz for ``request``.

        Raises:
            ValidationError: bad request, quota exceeded or unusable AI output
            NotFoundError: unknown user
            AIServiceError: provider failure after the retry policy
            GenerationCancelledError: the task was cancelled mid-flight
        """
        if not isinstance(request, GenerationRequest):
            request = GenerationRequest.from_payload(dict(request))

        task = self.registry.create(request.user_id, TaskKind.GENERATION, source_request=request)
        start_generation_timer()
        log_activity(
            "quiz_generation_started",
            user_id=request.user_id,
            generation_id=task.id,
            question_type=request.question_type.value,
            number_of_questions=request.number_of_questions,
            source=request.source,
        )

        reserved_day = None
        status = "failed"
        try:
            reserved_day = await self.quota.reserve(request.user_id)

            self._advance(task.id, TaskStatus.BUILDING_PROMPT)
            with PerformanceTimer("prompt"):
                prompt = await self.prompt_builder.build(request)

            self._advance(task.id, TaskStatus.GENERATING, attempt=0)
            raw = await self.ai_client.invoke(prompt, on_attempt=self._attempt_hook(task.id))

            self._advance(task.id, TaskStatus.PARSING)
            with PerformanceTimer("parse"):
                output = parse_quiz(
                    raw,
                    default_type=request.question_type,
                    max_questions=request.number_of_questions,
                )

            self._advance(task.id, TaskStatus.ENHANCING)
            quiz = Quiz(
                title=output.title,
                description=output.description,
                questions=output.questions,
                user_id=request.user_id,
                source=request.source,
                file_name=request.file_name,
                question_type=request.question_type,
                difficulty=request.difficulty,
                language=request.language,
                generation_metadata=GenerationMetadata(
                    generation_id=task.id,
                    original_prompt=prompt,
                    generation_params={
                        "question_type": request.question_type.value,
                        "number_of_questions": request.number_of_questions,
                        "difficulty": request.difficulty.value,
                        "language": request.language,
                        "instructions": request.instructions,
                        "source": request.source,
                        "content_length": len(request.content),
                    },
                    ai_model=self.ai_client.model_name,
                ),
                statistics=quiz_statistics(output.questions),
            )

            # Last checkpoint: a cancelled result is never stored
            self._advance(task.id, TaskStatus.ENHANCING, quiz_id=quiz.id)
            saved = await self.quiz_store.save(quiz)
            await self.quota.commit(request.user_id)
            reserved_day = None

            self._complete_task(task, quiz_id=saved.id)
            status = "completed"
            log_activity(
                "quiz_generated",
                user_id=request.user_id,
                generation_id=task.id,
                quiz_id=saved.id,
                question_count=len(saved.questions),
            )
            return saved

        except (Exception, asyncio.CancelledError) as exc:
            if isinstance(exc, (GenerationCancelledError, asyncio.CancelledError)):
                status = "cancelled"
            self._fail_task(task, exc)
            raise
        finally:
            # Also reached when the awaiting asyncio task is cancelled
            if reserved_day is not None:
                await self.quota.release(request.user_id, reserved_day)
            self.registry.remove(task.id)
            log_performance_metrics("generate", status, task.id, request.user_id)

    async def generate_from_file(
        self,
        file_path: str,
        question_type: str,
        number_of_questions: int,
        difficulty: str,
        language: str,
        user_id: str,
        instructions: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> Quiz:
        """Extract text from an uploaded document and generate from it."""
        info = validate_upload(file_path, file_name)

        result = await asyncio.to_thread(extract_document, file_path)
        if result["status"] != "success" or not result["text"]:
            raise ValidationError(
                "Could not extract text from file",
                context={"file_name": info["original_filename"], "reason": result.get("error")},
            )

        text = result["text"]
        if len(text) > settings.MAX_CONTENT_LENGTH:
            logger.info(
                "Truncating extracted text from %d to %d characters",
                len(text), settings.MAX_CONTENT_LENGTH,
            )
            text = text[: settings.MAX_CONTENT_LENGTH]

        request = GenerationRequest.from_payload({
            "content": text,
            "question_type": question_type,
            "number_of_questions": number_of_questions,
            "difficulty": difficulty,
            "language": language,
            "user_id": user_id,
            "instructions": instructions,
            "source": "file",
            "file_name": info["original_filename"],
        })
        return await self.generate_from_text(request)

    # ── Regeneration / extension ──────────────────────────

    async def regenerate_questions(
        self,
        quiz_id: str,
        question_indices: Sequence[int],
        params: Union[RegenerationParams, Mapping[str, Any]],
    ) -> Quiz:
        """Replace the questions at ``question_indices`` with fresh ones.

        Questions not listed keep their identity and position.
        """
        params = _regeneration_params(params)
        quiz = await self._load_quiz(quiz_id)
        await self._check_edit_permission(quiz, params.user_id)
        indices = validate_indices(question_indices, len(quiz.questions))

        task = self.registry.create(params.user_id, TaskKind.REGENERATION, source_request=params, quiz_id=quiz.id)
        start_generation_timer()
        status = "failed"
        try:
            self._advance(task.id, TaskStatus.BUILDING_PROMPT, indices=indices)
            prompt = self.prompt_builder.build_regeneration_prompt(quiz, indices, params)

            self._advance(task.id, TaskStatus.GENERATING, attempt=0)
            raw = await self.ai_client.invoke(prompt, on_attempt=self._attempt_hook(task.id))

            self._advance(task.id, TaskStatus.PARSING)
            target_types = {quiz.questions[i].type for i in indices}
            default_type = next(iter(target_types)) if len(target_types) == 1 else None
            with PerformanceTimer("parse"):
                replacements = parse_questions(raw, default_type=default_type)

            if len(replacements) < len(indices):
                raise ValidationError(
                    f"AI returned {len(replacements)} questions, expected {len(indices)}",
                    context={"quiz_id": quiz.id},
                )
            replacements = replacements[: len(indices)]
            for index, new_question in zip(indices, replacements):
                expected = quiz.questions[index].type
                if new_question.type is not expected:
                    raise ValidationError(
                        f"Replacement for question {index} is {new_question.type.value}, expected {expected.value}",
                        context={"quiz_id": quiz.id, "index": index},
                    )

            self._advance(task.id, TaskStatus.ENHANCING)
            questions: List[Question] = list(quiz.questions)
            for index, new_question in zip(indices, replacements):
                questions[index] = new_question

            self._advance(task.id, TaskStatus.ENHANCING)
            updated = await self.quiz_store.update_questions(
                quiz.id, questions, statistics=quiz_statistics(questions)
            )
            await self._invalidate_quiz_cache(quiz.id)

            self._complete_task(task)
            status = "completed"
            log_activity(
                "questions_regenerated",
                user_id=params.user_id,
                generation_id=task.id,
                quiz_id=quiz.id,
                indices=indices,
            )
            return updated

        except (Exception, asyncio.CancelledError) as exc:
            if isinstance(exc, (GenerationCancelledError, asyncio.CancelledError)):
                status = "cancelled"
            self._fail_task(task, exc)
            raise
        finally:
            self.registry.remove(task.id)
            log_performance_metrics("regenerate", status, task.id, params.user_id)

    async def generate_additional_questions(
        self,
        quiz_id: str,
        count: int,
        user_id: str,
        params: Optional[Union[RegenerationParams, Mapping[str, Any]]] = None,
    ) -> Quiz:
        """Append ``count`` new questions to an existing quiz (uses quota)."""
        params = _regeneration_params(params or {"user_id": user_id})
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValidationError("count must be a positive integer")

        quiz = await self._load_quiz(quiz_id)
        await self._check_edit_permission(quiz, user_id)
        if len(quiz.questions) + count > settings.MAX_QUESTIONS:
            raise ValidationError(
                f"A quiz can hold at most {settings.MAX_QUESTIONS} questions",
                context={"quiz_id": quiz.id, "current": len(quiz.questions), "requested": count},
            )

        task = self.registry.create(user_id, TaskKind.ADDITIONAL, source_request=params, quiz_id=quiz.id)
        start_generation_timer()
        reserved_day = None
        status = "failed"
        try:
            reserved_day = await self.quota.reserve(user_id)

            self._advance(task.id, TaskStatus.BUILDING_PROMPT, count=count)
            prompt = self.prompt_builder.build_additional_questions_prompt(quiz, count, params)

            self._advance(task.id, TaskStatus.GENERATING, attempt=0)
            raw = await self.ai_client.invoke(prompt, on_attempt=self._attempt_hook(task.id))

            self._advance(task.id, TaskStatus.PARSING)
            with PerformanceTimer("parse"):
                new_questions = parse_questions(raw, default_type=quiz.question_type)
            if len(new_questions) < count:
                raise ValidationError(
                    f"AI returned {len(new_questions)} questions, expected {count}",
                    context={"quiz_id": quiz.id},
                )
            new_questions = new_questions[:count]
            if quiz.question_type is not None:
                for question in new_questions:
                    if question.type is not quiz.question_type:
                        raise ValidationError(
                            f"Additional question is {question.type.value}, expected {quiz.question_type.value}",
                            context={"quiz_id": quiz.id},
                        )

            self._advance(task.id, TaskStatus.ENHANCING)
            questions = list(quiz.questions) + new_questions
            updated = await self.quiz_store.update_questions(
                quiz.id, questions, statistics=quiz_statistics(questions)
            )
            await self.quota.commit(user_id)
            reserved_day = None
            await self._invalidate_quiz_cache(quiz.id)

            self._complete_task(task)
            status = "completed"
            log_activity(
                "questions_added",
                user_id=user_id,
                generation_id=task.id,
                quiz_id=quiz.id,
                count=count,
            )
            return updated

        except (Exception, asyncio.CancelledError) as exc:
            if isinstance(exc, (GenerationCancelledError, asyncio.CancelledError)):
                status = "cancelled"
            self._fail_task(task, exc)
            raise
        finally:
            if reserved_day is not None:
                await self.quota.release(user_id, reserved_day)
            self.registry.remove(task.id)
            log_performance_metrics("additional", status, task.id, user_id)

    # ── Task control ──────────────────────────────────────

    async def cancel_generation(self, task_id: str, user_id: str) -> Dict[str, Any]:
        """Mark a running task cancelled; the pipeline stops at its next checkpoint."""
        task = self._owned_task(task_id, user_id, "cancel")
        self.registry.update_status(task.id, TaskStatus.CANCELLED)
        self.registry.remove(task.id)
        logger.info("Generation %s cancelled by user=%s", task_id, user_id)
        log_activity("generation_cancel_requested", user_id=user_id, generation_id=task_id)
        return {
            "generation_id": task_id,
            "status": TaskStatus.CANCELLED.value,
            "message": "Generation cancelled successfully",
        }

    async def get_generation_status(self, task_id: str, user_id: str) -> Dict[str, Any]:
        return self._owned_task(task_id, user_id, "view").snapshot()

    # ── Reporting ─────────────────────────────────────────

    async def estimate_generation(self, params: Union[GenerationRequest, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(params, GenerationRequest):
            params = params.prompt_params()
        try:
            return estimate_generation(params)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid estimation parameters: {exc}") from exc

    async def get_user_quota_info(self, user_id: str) -> Dict[str, Any]:
        return await self.quota.get_quota_info(user_id)

    async def check_ai_service_health(self) -> Dict[str, Any]:
        """Never raises; an unreachable provider reports ``unhealthy``."""
        health = await self.ai_client.check_health()
        return {"service": SERVICE_NAME, **health}


def _regeneration_params(params: Union[RegenerationParams, Mapping[str, Any]]) -> RegenerationParams:
    if isinstance(params, RegenerationParams):
        return params
    try:
        return RegenerationParams.model_validate(dict(params))
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid regeneration parameters: " + "; ".join(format_validation_errors(exc))
        ) from exc
