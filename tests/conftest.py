"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes and fixtures for testing:
- In-memory store seeded with admin and student profiles
- Fake AI provider, push provider and identity verifier
- Service registry wired against the fakes
- API test client with the registry installed on the app
"""

import json
import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import pytest

# Set required environment variables BEFORE importing manabee modules
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("RUN_MIGRATIONS", "false")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("GEMINI_API_KEY", "")
os.environ.setdefault("FIREBASE_CREDENTIALS", "")
os.environ.setdefault("FIREBASE_PROJECT_ID", "")

from httpx import ASGITransport, AsyncClient

from manabee.config import Settings
from manabee.exceptions import UnauthenticatedError
from manabee.models.api import UserRole
from manabee.models.domain import (
    CallerIdentity,
    EndpointResult,
    MulticastReport,
    PushMessage,
    UserProfileData,
)
from manabee.services.ai_provider import StructuredRequest, VisionRequest
from manabee.services.registry import ServiceRegistry, build_services
from manabee.storage import MemoryStore

ADMIN_ID = "admin-uid"
STUDENT_ID = "student-uid"
TUTOR_ID = "tutor-uid"
NEW_USER_ID = "new-uid"

TOKENS = {
    "admin-token": CallerIdentity(user_id=ADMIN_ID, email="admin@example.com", name="Admin"),
    "student-token": CallerIdentity(user_id=STUDENT_ID, email="hana@example.com", name="Hana"),
    "tutor-token": CallerIdentity(user_id=TUTOR_ID, email="sato@example.com", name=None),
    "new-token": CallerIdentity(user_id=NEW_USER_ID, email="mika@example.com", name=None),
}

SUMMARY_PAYLOAD = {
    "lesson_goal": "分数の足し算と引き算を理解する",
    "what_we_did": ["通分の復習", "分数の足し算"],
    "what_went_well": ["通分の手順を覚えていた"],
    "issues": ["分数の計算で約分を忘れる"],
    "next_actions": ["約分の練習を続ける"],
    "parent_message": "本日は分数の計算に取り組みました。約分の練習をお願いします。",
    "quiz_focus": ["約分", "通分"],
}

HOMEWORK_PAYLOAD = {
    "items": [
        {"title": "約分ドリル", "due_days_from_now": 2, "type": "practice", "estimated_minutes": 15},
        {"title": "通分の復習", "due_days_from_now": 3, "type": "review", "estimated_minutes": 10},
        {"title": "文章題", "due_days_from_now": 5, "type": "challenge", "estimated_minutes": 20},
    ]
}

QUIZ_PAYLOAD = {
    "questions": [
        {
            "type": "mcq",
            "question": "2/4 を約分すると?",
            "choices": ["1/2", "2/3", "1/4"],
            "answer": "1/2",
            "explanation": "分子と分母を2で割ります。",
        },
        {
            "type": "short",
            "question": "1/3 + 1/6 は?",
            "choices": None,
            "answer": "1/2",
            "explanation": "通分すると 2/6 + 1/6 = 3/6 = 1/2。",
        },
        {
            "type": "short",
            "question": "3/9 を約分すると?",
            "answer": "1/3",
            "explanation": "3で割ります。",
        },
    ]
}

ANALYSIS_TEXT = "1. 算数・分数\n2. 約分\n3. 最大公約数\n4. 分子と分母を同じ数で割ってみよう"


class FakeAIProvider:
    """GenerationProvider returning canned responses and recording requests."""

    def __init__(
        self,
        responses: dict[str, str | None] | None = None,
        vision_response: str | None = ANALYSIS_TEXT,
        error: Exception | None = None,
    ) -> None:
        self.responses: dict[str, str | None] = responses or {
            "summary": json.dumps(SUMMARY_PAYLOAD, ensure_ascii=False),
            "homework": json.dumps(HOMEWORK_PAYLOAD, ensure_ascii=False),
            "quiz": json.dumps(QUIZ_PAYLOAD, ensure_ascii=False),
        }
        self.vision_response = vision_response
        self.error = error
        self.structured_requests: list[StructuredRequest] = []
        self.vision_requests: list[VisionRequest] = []

    async def generate_structured(self, request: StructuredRequest) -> str | None:
        self.structured_requests.append(request)
        if self.error is not None:
            raise self.error
        return self.responses.get(request.name)

    async def analyze_image(self, request: VisionRequest) -> str | None:
        self.vision_requests.append(request)
        if self.error is not None:
            raise self.error
        return self.vision_response


class FakePushProvider:
    """PushProvider with configurable per-token outcomes."""

    def __init__(
        self,
        failing: set[str] | None = None,
        invalid: set[str] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.failing = failing or set()
        self.invalid = invalid or set()
        self.error = error
        self.messages: list[PushMessage] = []

    async def send_multicast(self, message: PushMessage) -> MulticastReport:
        self.messages.append(message)
        if self.error is not None:
            raise self.error
        return MulticastReport(
            results=[
                EndpointResult(
                    token=token,
                    success=token not in self.failing and token not in self.invalid,
                    permanently_invalid=token in self.invalid,
                    error="unregistered" if token in self.invalid else None,
                )
                for token in message.tokens
            ]
        )


class FakeIdentityVerifier:
    """IdentityVerifier mapping fixed bearer tokens to identities."""

    async def verify(self, token: str) -> CallerIdentity:
        identity = TOKENS.get(token)
        if identity is None:
            raise UnauthenticatedError("Invalid or expired token")
        return identity


def make_profile(
    user_id: str,
    role: UserRole = UserRole.STUDENT,
    email: str | None = None,
    created_at: datetime | None = None,
) -> UserProfileData:
    return UserProfileData(
        user_id=user_id,
        email=email or f"{user_id}@example.com",
        name=user_id,
        role=role,
        must_change_password=False,
        created_at=created_at or datetime.now(UTC),
    )


# ============================================================================
# Core Fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Memory-backed settings with small limits."""
    return Settings(storage_backend="memory", database_url="", daily_ai_limit=10)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
async def seeded_store(store: MemoryStore) -> MemoryStore:
    """Store holding an admin, a tutor and a student profile."""
    await store.create_user_if_absent(make_profile(ADMIN_ID, UserRole.ADMIN))
    await store.create_user_if_absent(make_profile(TUTOR_ID, UserRole.TUTOR))
    await store.create_user_if_absent(make_profile(STUDENT_ID, UserRole.STUDENT))
    return store


@pytest.fixture
def ai_provider() -> FakeAIProvider:
    return FakeAIProvider()


@pytest.fixture
def push_provider() -> FakePushProvider:
    return FakePushProvider()


@pytest.fixture
def services(
    settings: Settings,
    seeded_store: MemoryStore,
    ai_provider: FakeAIProvider,
    push_provider: FakePushProvider,
) -> ServiceRegistry:
    return build_services(
        settings,
        seeded_store,
        ai_provider=ai_provider,
        push_provider=push_provider,
        verifier=FakeIdentityVerifier(),
    )


# ============================================================================
# API Client Fixtures
# ============================================================================


@pytest.fixture
async def client(services: ServiceRegistry) -> AsyncGenerator[AsyncClient, None]:
    """Async client against the app with the test registry installed."""
    from manabee.main import app

    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
