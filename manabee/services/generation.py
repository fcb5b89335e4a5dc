"""
Content Generator - lesson summary, homework and quiz from a transcript.

Three schema-constrained requests are issued concurrently and joined
all-or-nothing: the caller gets every part or an error, never a subset.
"""

import asyncio
import time

from pydantic import BaseModel, ValidationError
from structlog import get_logger

from manabee.exceptions import (
    IncompleteResponseError,
    InvalidArgumentError,
    ProviderError,
    ProviderUnavailableError,
)
from manabee.models.api import GenerateLessonContentResponse, HomeworkPlan, LessonSummary, Quiz
from manabee.observability import metrics, trace_operation
from manabee.services import prompts
from manabee.services.ai_provider import GenerationProvider, StructuredRequest
from manabee.services.usage import OPERATION_GENERATE_LESSON, UsageAuditLog

logger = get_logger(__name__)

# Per-request settings are fixed: factual summary runs cooler than the
# homework and quiz requests, which benefit from variety.
SUMMARY_TEMPERATURE = 0.3
HOMEWORK_TEMPERATURE = 0.5
QUIZ_TEMPERATURE = 0.5


def build_requests(transcript: str, student_context: str | None) -> list[StructuredRequest]:
    """The three generation requests for one transcript, in summary/homework/quiz order."""
    context = student_context or prompts.NO_CONTEXT
    return [
        StructuredRequest(
            name="summary",
            prompt=prompts.LESSON_SUMMARY.format(student_context=context, transcript=transcript),
            schema=LessonSummary,
            temperature=SUMMARY_TEMPERATURE,
        ),
        StructuredRequest(
            name="homework",
            prompt=prompts.LESSON_HOMEWORK.format(student_context=context, transcript=transcript),
            schema=HomeworkPlan,
            temperature=HOMEWORK_TEMPERATURE,
        ),
        StructuredRequest(
            name="quiz",
            prompt=prompts.LESSON_QUIZ.format(student_context=context, transcript=transcript),
            schema=Quiz,
            temperature=QUIZ_TEMPERATURE,
        ),
    ]


def _parse(request: StructuredRequest, text: str | None) -> BaseModel:
    """Validate one response against its schema; any gap fails the aggregate."""
    if not text or not text.strip():
        logger.warning("ai_response_empty", part=request.name)
        raise IncompleteResponseError()
    try:
        return request.schema.model_validate_json(text)
    except ValidationError as e:
        logger.warning("ai_response_unparseable", part=request.name, errors=e.error_count())
        raise IncompleteResponseError() from e


async def _gather_all_or_nothing(
    provider: GenerationProvider, requests: list[StructuredRequest]
) -> list[str | None]:
    """Run every request concurrently; the first failure cancels the rest."""
    tasks = [asyncio.create_task(provider.generate_structured(r)) for r in requests]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise


class ContentGenerator:
    """
    Generates GeneratedLessonContent for a transcript.

    Callers must have consumed a quota unit before calling ``generate``; the
    unit is not refunded when generation fails.
    """

    def __init__(self, provider: GenerationProvider | None, usage_log: UsageAuditLog) -> None:
        self.provider = provider
        self.usage_log = usage_log

    async def generate(
        self, user_id: str, transcript: str, student_context: str | None = None
    ) -> GenerateLessonContentResponse:
        """
        Run the summary, homework and quiz generations concurrently.

        Raises:
            InvalidArgumentError: transcript missing or blank
            ProviderUnavailableError: no AI provider configured
            ProviderError: the provider call itself failed
            IncompleteResponseError: any part was empty or did not match its schema
        """
        if not transcript or not transcript.strip():
            raise InvalidArgumentError("Transcript is required")
        if self.provider is None:
            raise ProviderUnavailableError("Gemini API key")

        requests = build_requests(transcript, student_context)
        start = time.monotonic()

        with trace_operation(
            "lesson_generation", user_id=user_id, transcript_chars=len(transcript)
        ):
            try:
                texts = await _gather_all_or_nothing(self.provider, requests)
            except Exception as e:
                metrics.record_generation(
                    OPERATION_GENERATE_LESSON, "provider_error", time.monotonic() - start
                )
                logger.error("ai_generation_failed", user_id=user_id, error=str(e))
                raise ProviderError(str(e)) from e

            try:
                summary, homework, quiz = (_parse(r, t) for r, t in zip(requests, texts))
            except IncompleteResponseError:
                metrics.record_generation(
                    OPERATION_GENERATE_LESSON, "incomplete", time.monotonic() - start
                )
                raise

        metrics.record_generation(OPERATION_GENERATE_LESSON, "success", time.monotonic() - start)
        await self.usage_log.record(user_id, OPERATION_GENERATE_LESSON)

        logger.info(
            "lesson_content_generated",
            user_id=user_id,
            homework_items=len(homework.items),  # type: ignore[attr-defined]
            quiz_questions=len(quiz.questions),  # type: ignore[attr-defined]
        )
        return GenerateLessonContentResponse(
            summary=summary,  # type: ignore[arg-type]
            homework=homework,  # type: ignore[arg-type]
            quiz=quiz,  # type: ignore[arg-type]
        )
