"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed. The generation
models double as the response schemas handed to the AI provider.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """User role enumeration."""

    ADMIN = "admin"
    TUTOR = "tutor"
    STUDENT = "student"
    GUARDIAN = "guardian"


class JobStatus(str, Enum):
    """Question job lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    ANALYZED = "analyzed"
    ERROR = "error"


class HomeworkType(str, Enum):
    """Homework item category."""

    PRACTICE = "practice"
    REVIEW = "review"
    CHALLENGE = "challenge"


class QuizQuestionType(str, Enum):
    """Quiz question format."""

    MCQ = "mcq"
    SHORT = "short"


# ============================================================================
# Lesson Content Models (also used as AI response schemas)
# ============================================================================


class LessonSummary(BaseModel):
    """Structured summary of a single lesson."""

    lesson_goal: str = Field(..., description="The main goal of this lesson")
    what_we_did: list[str] = Field(..., description="List of topics covered")
    what_went_well: list[str] = Field(..., description="Things the student did well")
    issues: list[str] = Field(..., description="Areas where student struggled")
    next_actions: list[str] = Field(..., description="Action items for next time")
    parent_message: str = Field(
        ..., description="A polite message to the guardian (max 200 chars)"
    )
    quiz_focus: list[str] = Field(..., description="Key topics to quiz on")


class HomeworkItem(BaseModel):
    """A single suggested homework assignment."""

    title: str
    due_days_from_now: int
    type: HomeworkType
    estimated_minutes: int


class HomeworkPlan(BaseModel):
    """Homework suggestions derived from a lesson."""

    items: list[HomeworkItem]


class QuizQuestion(BaseModel):
    """A single quiz question."""

    type: QuizQuestionType
    question: str
    choices: list[str] | None = None
    answer: str
    explanation: str


class Quiz(BaseModel):
    """Mini-quiz covering the lesson material."""

    questions: list[QuizQuestion]


class GenerateLessonContentRequest(BaseModel):
    """POST /v1/lessons/generate request body."""

    transcript: str = Field(..., max_length=200_000)
    student_context: str | None = Field(None, max_length=10_000)


class GenerateLessonContentResponse(BaseModel):
    """POST /v1/lessons/generate response."""

    summary: LessonSummary
    homework: HomeworkPlan
    quiz: Quiz


# ============================================================================
# Usage Statistics
# ============================================================================


TimeRange = Literal["7d", "30d"]


class UsageStatsResponse(BaseModel):
    """GET /admin/usage response."""

    total_calls: int
    by_user: dict[str, int]
    by_function: dict[str, int]
    by_date: dict[str, int]
    time_range: TimeRange


# ============================================================================
# User Management
# ============================================================================


class UserProfileResponse(BaseModel):
    """User profile as exposed to admins."""

    id: str
    email: str
    name: str
    role: UserRole
    must_change_password: bool
    endpoint_count: int = 0
    created_at: datetime
    updated_at: datetime | None = None
    updated_by: str | None = None


class UpdateUserRequest(BaseModel):
    """PATCH /admin/users/{user_id} request body - only listed fields may change."""

    model_config = {"extra": "forbid"}

    role: UserRole | None = None
    name: str | None = Field(None, min_length=1, max_length=255)
    email: str | None = Field(None, min_length=1, max_length=255)
    must_change_password: bool | None = None


class SuccessResponse(BaseModel):
    """Generic acknowledgement."""

    success: bool = True


# ============================================================================
# Notifications
# ============================================================================


class SendNotificationRequest(BaseModel):
    """POST /v1/notifications/send request body."""

    target_user_id: str = Field(..., max_length=255)
    title: str = Field(..., max_length=255)
    body: str = Field(..., max_length=4000)
    url: str | None = Field(None, max_length=2048)
    type: str | None = Field(None, max_length=50)


class SendNotificationResponse(BaseModel):
    """POST /v1/notifications/send response."""

    success: bool = True
    sent: int
    failed: int


class RegisterEndpointRequest(BaseModel):
    """POST /v1/notifications/endpoints request body."""

    token: str = Field(..., max_length=4096)


# ============================================================================
# Question Jobs
# ============================================================================


class SubmitQuestionRequest(BaseModel):
    """POST /v1/questions request body."""

    image_base64: str = Field(..., min_length=1)
    mime_type: str = Field("image/jpeg", pattern=r"^image/[a-z0-9.+-]+$")
    subject: str | None = Field(None, max_length=100)


class QuestionJobResponse(BaseModel):
    """Question job state as observed by clients."""

    id: str
    student_id: str
    subject: str | None
    status: JobStatus
    ai_analysis: str | None
    error: str | None
    created_at: datetime
    processing_started_at: datetime | None
    analyzed_at: datetime | None
    error_at: datetime | None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    storage: str
    version: str
