"""
Tests for the Content Generator.

The provider is faked; these tests pin down the all-or-nothing aggregate,
per-request configuration and usage logging.
"""

import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest

from conftest import HOMEWORK_PAYLOAD, SUMMARY_PAYLOAD, FakeAIProvider
from manabee.exceptions import (
    IncompleteResponseError,
    InvalidArgumentError,
    ProviderError,
    ProviderUnavailableError,
)
from manabee.models.api import HomeworkPlan, LessonSummary, Quiz
from manabee.services.ai_provider import StructuredRequest
from manabee.services.generation import ContentGenerator, build_requests
from manabee.services.usage import OPERATION_GENERATE_LESSON, UsageAuditLog
from manabee.storage import MemoryStore

TRANSCRIPT = "生徒は分数の計算に苦戦した"


async def _usage(store: MemoryStore) -> list:
    return await store.list_usage_since(datetime.now(UTC) - timedelta(minutes=5))


class TestBuildRequests:
    def test_three_requests_with_fixed_configuration(self) -> None:
        requests = build_requests(TRANSCRIPT, "小学6年生")

        assert [r.name for r in requests] == ["summary", "homework", "quiz"]
        assert [r.schema for r in requests] == [LessonSummary, HomeworkPlan, Quiz]
        assert [r.temperature for r in requests] == [0.3, 0.5, 0.5]
        assert all(TRANSCRIPT in r.prompt and "小学6年生" in r.prompt for r in requests)

    def test_missing_context_uses_placeholder(self) -> None:
        requests = build_requests(TRANSCRIPT, None)

        assert all("No context provided" in r.prompt for r in requests)


class TestGenerate:
    async def test_returns_all_three_parts(self, store: MemoryStore) -> None:
        provider = FakeAIProvider()
        generator = ContentGenerator(provider, UsageAuditLog(store))

        content = await generator.generate("u1", TRANSCRIPT, None)

        assert len(content.summary.issues) >= 1
        assert 3 <= len(content.homework.items) <= 5
        assert len(content.quiz.questions) >= 1
        assert len(provider.structured_requests) == 3

    async def test_success_writes_exactly_one_usage_entry(self, store: MemoryStore) -> None:
        generator = ContentGenerator(FakeAIProvider(), UsageAuditLog(store))

        await generator.generate("u1", TRANSCRIPT)

        entries = await _usage(store)
        assert [(e.user_id, e.operation) for e in entries] == [("u1", OPERATION_GENERATE_LESSON)]

    @pytest.mark.parametrize("missing", ["summary", "homework", "quiz"])
    async def test_any_empty_part_fails_whole_call(
        self, store: MemoryStore, missing: str
    ) -> None:
        provider = FakeAIProvider()
        provider.responses[missing] = ""
        generator = ContentGenerator(provider, UsageAuditLog(store))

        with pytest.raises(IncompleteResponseError, match="Incomplete response from AI"):
            await generator.generate("u1", TRANSCRIPT)

        assert await _usage(store) == []

    async def test_unparseable_part_fails_whole_call(self, store: MemoryStore) -> None:
        provider = FakeAIProvider(
            responses={
                "summary": json.dumps(SUMMARY_PAYLOAD),
                "homework": json.dumps(HOMEWORK_PAYLOAD),
                "quiz": '{"questions": [{"type": "essay"}]}',
            }
        )
        generator = ContentGenerator(provider, UsageAuditLog(store))

        with pytest.raises(IncompleteResponseError):
            await generator.generate("u1", TRANSCRIPT)

    async def test_none_response_fails_whole_call(self, store: MemoryStore) -> None:
        provider = FakeAIProvider()
        provider.responses["summary"] = None
        generator = ContentGenerator(provider, UsageAuditLog(store))

        with pytest.raises(IncompleteResponseError):
            await generator.generate("u1", TRANSCRIPT)

    async def test_provider_exception_is_wrapped(self, store: MemoryStore) -> None:
        provider = FakeAIProvider(error=RuntimeError("deadline exceeded"))
        generator = ContentGenerator(provider, UsageAuditLog(store))

        with pytest.raises(ProviderError) as exc_info:
            await generator.generate("u1", TRANSCRIPT)

        assert exc_info.value.message == "deadline exceeded"
        assert "deadline exceeded" in str(exc_info.value)
        assert await _usage(store) == []

    async def test_missing_provider(self, store: MemoryStore) -> None:
        generator = ContentGenerator(None, UsageAuditLog(store))

        with pytest.raises(ProviderUnavailableError):
            await generator.generate("u1", TRANSCRIPT)

    @pytest.mark.parametrize("transcript", ["", "   ", "\n\t"])
    async def test_blank_transcript(self, store: MemoryStore, transcript: str) -> None:
        provider = FakeAIProvider()
        generator = ContentGenerator(provider, UsageAuditLog(store))

        with pytest.raises(InvalidArgumentError):
            await generator.generate("u1", transcript)

        assert provider.structured_requests == []


class GatedProvider(FakeAIProvider):
    """Holds every request until all three are in flight at once."""

    def __init__(self) -> None:
        super().__init__()
        self.in_flight = 0
        self.peak = 0
        self.all_entered = asyncio.Event()

    async def generate_structured(self, request: StructuredRequest) -> str | None:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        if self.in_flight == 3:
            self.all_entered.set()
        try:
            await asyncio.wait_for(self.all_entered.wait(), timeout=1.0)
            return await super().generate_structured(request)
        finally:
            self.in_flight -= 1


class FailFastProvider(FakeAIProvider):
    """The summary request fails immediately; the others hang until cancelled."""

    def __init__(self) -> None:
        super().__init__()
        self.cancelled: list[str] = []

    async def generate_structured(self, request: StructuredRequest) -> str | None:
        if request.name == "summary":
            await asyncio.sleep(0)
            raise RuntimeError("quota exhausted upstream")
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled.append(request.name)
            raise
        return None


class TestConcurrency:
    async def test_requests_are_in_flight_together(self, store: MemoryStore) -> None:
        provider = GatedProvider()
        generator = ContentGenerator(provider, UsageAuditLog(store))

        result = await generator.generate("u1", TRANSCRIPT)

        assert provider.peak == 3
        assert result.summary.lesson_goal == SUMMARY_PAYLOAD["lesson_goal"]

    async def test_failure_cancels_remaining_requests(self, store: MemoryStore) -> None:
        provider = FailFastProvider()
        generator = ContentGenerator(provider, UsageAuditLog(store))

        with pytest.raises(ProviderError, match="quota exhausted upstream"):
            await generator.generate("u1", TRANSCRIPT)
        for _ in range(3):
            await asyncio.sleep(0)

        assert sorted(provider.cancelled) == ["homework", "quiz"]
        assert await _usage(store) == []
