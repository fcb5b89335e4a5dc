"""
Tests for the Question Analysis Pipeline state machine.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from conftest import ANALYSIS_TEXT, FakeAIProvider
from manabee.exceptions import InvalidTransitionError
from manabee.models.api import JobStatus
from manabee.models.domain import SYSTEM_USER_ID
from manabee.services.question_pipeline import QuestionAnalysisPipeline
from manabee.services.usage import OPERATION_ANALYZE_QUESTION, UsageAuditLog
from manabee.storage import MemoryStore

IMAGE = "aGVsbG8="  # base64 of "hello"


async def _create(
    store: MemoryStore,
    status: JobStatus = JobStatus.QUEUED,
    image: str | None = IMAGE,
    student_id: str = "student-1",
) -> str:
    job = await store.create_job(
        student_id=student_id,
        image_payload=image,
        image_mime_type="image/png",
        subject="算数",
        status=status,
        at=datetime.now(UTC),
    )
    return job.job_id


def _pipeline(store: MemoryStore, provider: FakeAIProvider | None) -> QuestionAnalysisPipeline:
    return QuestionAnalysisPipeline(store, provider, UsageAuditLog(store))


async def _usage(store: MemoryStore) -> list:
    return await store.list_usage_since(datetime.now(UTC) - timedelta(minutes=5))


class TestOnJobCreated:
    async def test_queued_job_is_analyzed(self, store: MemoryStore) -> None:
        provider = FakeAIProvider()
        job_id = await _create(store)

        result = await _pipeline(store, provider).on_job_created(job_id)

        job = await store.get_job(job_id)
        assert result == JobStatus.ANALYZED
        assert job.status == JobStatus.ANALYZED
        assert job.ai_analysis == ANALYSIS_TEXT
        assert job.processing_started_at is not None
        assert job.analyzed_at is not None
        assert job.error is None

    async def test_vision_request_configuration(self, store: MemoryStore) -> None:
        provider = FakeAIProvider()
        job_id = await _create(store)

        await _pipeline(store, provider).on_job_created(job_id)

        (request,) = provider.vision_requests
        assert request.image_base64 == IMAGE
        assert request.mime_type == "image/png"
        assert request.temperature == 0.3
        assert request.max_output_tokens == 500
        assert "答えは書かない" in request.prompt

    async def test_success_logs_usage_for_student(self, store: MemoryStore) -> None:
        job_id = await _create(store, student_id="student-9")

        await _pipeline(store, FakeAIProvider()).on_job_created(job_id)

        entries = await _usage(store)
        assert [(e.user_id, e.operation) for e in entries] == [
            ("student-9", OPERATION_ANALYZE_QUESTION)
        ]

    async def test_usage_falls_back_to_system_user(self, store: MemoryStore) -> None:
        job_id = await _create(store, student_id="")

        await _pipeline(store, FakeAIProvider()).on_job_created(job_id)

        entries = await _usage(store)
        assert [e.user_id for e in entries] == [SYSTEM_USER_ID]

    async def test_provider_failure_moves_job_to_error(self, store: MemoryStore) -> None:
        provider = FakeAIProvider(error=RuntimeError("quota exhausted upstream"))
        job_id = await _create(store)

        result = await _pipeline(store, provider).on_job_created(job_id)

        job = await store.get_job(job_id)
        assert result == JobStatus.ERROR
        assert job.status == JobStatus.ERROR
        assert job.error == "quota exhausted upstream"
        assert job.error_at is not None
        assert job.ai_analysis is None
        assert await _usage(store) == []

    @pytest.mark.parametrize("text", ["", "   ", None])
    async def test_empty_analysis_is_a_failure(self, store: MemoryStore, text: str | None) -> None:
        job_id = await _create(store)

        result = await _pipeline(store, FakeAIProvider(vision_response=text)).on_job_created(job_id)

        assert result == JobStatus.ERROR
        assert (await store.get_job(job_id)).status == JobStatus.ERROR

    async def test_missing_provider_moves_job_to_error(self, store: MemoryStore) -> None:
        job_id = await _create(store)

        result = await _pipeline(store, None).on_job_created(job_id)

        assert result == JobStatus.ERROR
        assert "not configured" in (await store.get_job(job_id)).error

    @pytest.mark.parametrize(
        "status", [JobStatus.PROCESSING, JobStatus.ANALYZED, JobStatus.ERROR]
    )
    async def test_non_queued_job_is_ignored(self, store: MemoryStore, status: JobStatus) -> None:
        provider = FakeAIProvider()
        job_id = await _create(store, status=status)

        result = await _pipeline(store, provider).on_job_created(job_id)

        job = await store.get_job(job_id)
        assert result is None
        assert job.status == status
        assert job.processing_started_at is None
        assert provider.vision_requests == []

    async def test_job_without_image_is_ignored(self, store: MemoryStore) -> None:
        provider = FakeAIProvider()
        job_id = await _create(store, image=None)

        result = await _pipeline(store, provider).on_job_created(job_id)

        assert result is None
        assert (await store.get_job(job_id)).status == JobStatus.QUEUED
        assert provider.vision_requests == []

    async def test_unknown_job_is_ignored(self, store: MemoryStore) -> None:
        assert await _pipeline(store, FakeAIProvider()).on_job_created("missing") is None

    async def test_duplicate_delivery_processes_once(self, store: MemoryStore) -> None:
        provider = FakeAIProvider()
        pipeline = _pipeline(store, provider)
        job_id = await _create(store)

        results = await asyncio.gather(*(pipeline.on_job_created(job_id) for _ in range(5)))

        assert results.count(JobStatus.ANALYZED) == 1
        assert results.count(None) == 4
        assert len(provider.vision_requests) == 1
        assert len(await _usage(store)) == 1

    async def test_redelivery_after_completion_is_noop(self, store: MemoryStore) -> None:
        provider = FakeAIProvider()
        pipeline = _pipeline(store, provider)
        job_id = await _create(store)

        await pipeline.on_job_created(job_id)
        await pipeline.on_job_created(job_id)

        assert len(provider.vision_requests) == 1

    async def test_job_failed_during_analysis_is_not_billed(self, store: MemoryStore) -> None:
        job_id = await _create(store)

        class StaleSweptProvider(FakeAIProvider):
            async def analyze_image(self, request):
                await store.transition_job(
                    job_id,
                    JobStatus.PROCESSING,
                    JobStatus.ERROR,
                    datetime.now(UTC),
                    error="processing timed out",
                )
                return await super().analyze_image(request)

        result = await _pipeline(store, StaleSweptProvider()).on_job_created(job_id)

        job = await store.get_job(job_id)
        assert result is None
        assert job.status == JobStatus.ERROR
        assert job.error == "processing timed out"
        assert job.ai_analysis is None
        assert await _usage(store) == []

    async def test_failure_after_job_left_processing_keeps_first_error(
        self, store: MemoryStore
    ) -> None:
        job_id = await _create(store)

        class StaleSweptFailingProvider(FakeAIProvider):
            async def analyze_image(self, request):
                await store.transition_job(
                    job_id,
                    JobStatus.PROCESSING,
                    JobStatus.ERROR,
                    datetime.now(UTC),
                    error="processing timed out",
                )
                raise RuntimeError("deadline exceeded")

        result = await _pipeline(store, StaleSweptFailingProvider()).on_job_created(job_id)

        job = await store.get_job(job_id)
        assert result is None
        assert job.error == "processing timed out"


class TestFailStale:
    async def test_stale_processing_job_is_failed(self, store: MemoryStore) -> None:
        job_id = await _create(store)
        started = datetime.now(UTC) - timedelta(hours=1)
        await store.transition_job(job_id, JobStatus.QUEUED, JobStatus.PROCESSING, started)

        failed = await _pipeline(store, FakeAIProvider()).fail_stale(timedelta(minutes=15))

        job = await store.get_job(job_id)
        assert failed == 1
        assert job.status == JobStatus.ERROR
        assert job.error == "processing timed out"

    async def test_recent_processing_job_is_left_alone(self, store: MemoryStore) -> None:
        job_id = await _create(store)
        await store.transition_job(
            job_id, JobStatus.QUEUED, JobStatus.PROCESSING, datetime.now(UTC)
        )

        failed = await _pipeline(store, FakeAIProvider()).fail_stale(timedelta(minutes=15))

        assert failed == 0
        assert (await store.get_job(job_id)).status == JobStatus.PROCESSING


class TestTransitions:
    async def test_illegal_transition_raises(self, store: MemoryStore) -> None:
        job_id = await _create(store)

        with pytest.raises(InvalidTransitionError):
            await store.transition_job(
                job_id, JobStatus.QUEUED, JobStatus.ANALYZED, datetime.now(UTC)
            )

    async def test_stale_expected_status_does_not_apply(self, store: MemoryStore) -> None:
        job_id = await _create(store)

        moved = await store.transition_job(
            job_id, JobStatus.PROCESSING, JobStatus.ERROR, datetime.now(UTC), error="x"
        )

        assert moved is False
        assert (await store.get_job(job_id)).status == JobStatus.QUEUED
