"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime

from manabee.models.api import JobStatus, UserRole

SYSTEM_USER_ID = "system"


@dataclass(frozen=True)
class CallerIdentity:
    """Verified caller identity attached to a request."""

    user_id: str
    email: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        """Validate identity fields."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a quota check-and-consume."""

    allowed: bool
    count: int
    limit: int


@dataclass(frozen=True)
class UsageLogEntry:
    """Immutable record of one billed AI operation."""

    user_id: str
    operation: str
    timestamp: datetime
    date_bucket: str


@dataclass(frozen=True)
class UserProfileData:
    """Immutable user profile snapshot."""

    user_id: str
    email: str
    name: str
    role: UserRole
    must_change_password: bool
    created_at: datetime
    updated_at: datetime | None = None
    updated_by: str | None = None

    @property
    def is_admin(self) -> bool:
        """True when the profile carries the admin role."""
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class QuestionJobData:
    """Immutable question job snapshot."""

    job_id: str
    student_id: str
    image_payload: str | None
    image_mime_type: str
    subject: str | None
    status: JobStatus
    ai_analysis: str | None
    error: str | None
    created_at: datetime
    processing_started_at: datetime | None = None
    analyzed_at: datetime | None = None
    error_at: datetime | None = None


@dataclass(frozen=True)
class NotificationRecordData:
    """Immutable log of one dispatched notification."""

    target_user_id: str
    sender_id: str
    title: str
    body: str
    url: str | None
    category: str | None
    sent_at: datetime
    success_count: int
    failure_count: int


@dataclass(frozen=True)
class PushMessage:
    """Multicast push request."""

    tokens: list[str]
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class EndpointResult:
    """Per-endpoint delivery outcome reported by the push provider."""

    token: str
    success: bool
    permanently_invalid: bool = False
    error: str | None = None


@dataclass(frozen=True)
class MulticastReport:
    """Delivery report for one multicast call."""

    results: list[EndpointResult]

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def invalid_tokens(self) -> list[str]:
        return [r.token for r in self.results if not r.success and r.permanently_invalid]


@dataclass(frozen=True)
class DeliverySummary:
    """Counts returned to the caller of a notification send."""

    sent: int
    failed: int


def date_bucket(day: date) -> str:
    """ISO date bucket used for quota keys and usage aggregation."""
    return day.isoformat()


@dataclass(frozen=True)
class ProfileChanges:
    """Admin-requested changes to a user profile; None means unchanged."""

    role: UserRole | None = None
    name: str | None = None
    email: str | None = None
    must_change_password: bool | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            v is None for v in (self.role, self.name, self.email, self.must_change_password)
        )


# Allowed question job transitions; anything else is rejected.
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.ANALYZED, JobStatus.ERROR}),
    JobStatus.ANALYZED: frozenset(),
    JobStatus.ERROR: frozenset(),
}


def is_valid_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    """True when the lifecycle allows moving from one status to another."""
    return to_status in JOB_TRANSITIONS[from_status]
