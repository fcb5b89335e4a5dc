"""
Question Analysis Pipeline - vision analysis of photographed student questions.

Lifecycle: queued -> processing -> analyzed | error. Every transition is a
compare-and-set on the stored status, so a job is claimed at most once no
matter how many times (or by how many consumers) creation is delivered.
"""

import time
from datetime import UTC, datetime, timedelta

from structlog import get_logger

from manabee.models.api import JobStatus
from manabee.models.domain import SYSTEM_USER_ID
from manabee.observability import metrics, trace_operation
from manabee.services import prompts
from manabee.services.ai_provider import GenerationProvider, VisionRequest
from manabee.services.usage import OPERATION_ANALYZE_QUESTION, UsageAuditLog
from manabee.storage import Store

logger = get_logger(__name__)

VISION_TEMPERATURE = 0.3
VISION_MAX_OUTPUT_TOKENS = 500
STALE_ERROR_MESSAGE = "processing timed out"


class QuestionAnalysisPipeline:
    """Consumer for question job creation events."""

    def __init__(
        self,
        store: Store,
        provider: GenerationProvider | None,
        usage_log: UsageAuditLog,
    ) -> None:
        self.store = store
        self.provider = provider
        self.usage_log = usage_log

    async def on_job_created(self, job_id: str) -> JobStatus | None:
        """
        Handle creation of a question job.

        Returns the terminal status reached, or None when the job was not
        eligible, another consumer claimed it first, or it left processing
        before the result could be stored.
        """
        job = await self.store.get_job(job_id)
        if job is None:
            logger.warning("question_job_missing", job_id=job_id)
            return None

        if job.status != JobStatus.QUEUED or not job.image_payload:
            logger.info(
                "question_skipped",
                job_id=job_id,
                status=job.status.value,
                has_image=bool(job.image_payload),
            )
            return None

        claimed = await self.store.transition_job(
            job_id, JobStatus.QUEUED, JobStatus.PROCESSING, datetime.now(UTC)
        )
        if not claimed:
            logger.info("question_already_claimed", job_id=job_id)
            return None
        metrics.record_job_transition(JobStatus.PROCESSING.value)
        logger.info("question_processing", job_id=job_id, student_id=job.student_id)

        start = time.monotonic()
        try:
            with trace_operation("question_analysis", job_id=job_id):
                analysis = await self._analyze(job.image_payload, job.image_mime_type)
                applied = await self.store.transition_job(
                    job_id,
                    JobStatus.PROCESSING,
                    JobStatus.ANALYZED,
                    datetime.now(UTC),
                    ai_analysis=analysis,
                )
        except Exception as e:
            metrics.record_generation(
                OPERATION_ANALYZE_QUESTION, "error", time.monotonic() - start
            )
            return await self._fail(job_id, str(e))

        if not applied:
            # Job left processing during the vision call
            metrics.record_generation(
                OPERATION_ANALYZE_QUESTION, "discarded", time.monotonic() - start
            )
            logger.warning("question_transition_lost", job_id=job_id)
            return None

        metrics.record_generation(OPERATION_ANALYZE_QUESTION, "success", time.monotonic() - start)
        metrics.record_job_transition(JobStatus.ANALYZED.value)
        await self.usage_log.record(job.student_id or SYSTEM_USER_ID, OPERATION_ANALYZE_QUESTION)

        logger.info("question_analyzed", job_id=job_id, analysis_chars=len(analysis))
        return JobStatus.ANALYZED

    async def _analyze(self, image_payload: str, mime_type: str) -> str:
        if self.provider is None:
            raise RuntimeError("Gemini API key not configured")

        text = await self.provider.analyze_image(
            VisionRequest(
                prompt=prompts.QUESTION_ANALYSIS,
                image_base64=image_payload,
                mime_type=mime_type,
                temperature=VISION_TEMPERATURE,
                max_output_tokens=VISION_MAX_OUTPUT_TOKENS,
            )
        )
        if not text or not text.strip():
            raise ValueError("Empty response from AI")
        return text

    async def _fail(self, job_id: str, message: str) -> JobStatus | None:
        moved = await self.store.transition_job(
            job_id, JobStatus.PROCESSING, JobStatus.ERROR, datetime.now(UTC), error=message
        )
        if not moved:
            logger.warning("question_transition_lost", job_id=job_id, error=message)
            return None
        metrics.record_job_transition(JobStatus.ERROR.value)
        logger.error("question_analysis_failed", job_id=job_id, error=message)
        return JobStatus.ERROR

    async def fail_stale(self, older_than: timedelta) -> int:
        """Move jobs stuck in processing longer than ``older_than`` to error."""
        cutoff = datetime.now(UTC) - older_than
        stale_ids = await self.store.list_processing_started_before(cutoff)

        failed = 0
        for job_id in stale_ids:
            moved = await self.store.transition_job(
                job_id,
                JobStatus.PROCESSING,
                JobStatus.ERROR,
                datetime.now(UTC),
                error=STALE_ERROR_MESSAGE,
            )
            if moved:
                failed += 1
                metrics.record_job_transition(JobStatus.ERROR.value)

        if failed:
            logger.warning("stale_questions_failed", count=failed)
        return failed
