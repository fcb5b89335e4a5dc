"""
Store Protocol - Storage-agnostic persistence interface.

One interface, two implementations (SQL and in-process memory) selected at
startup. Every mutation that must be race-safe is expressed as a single
conditional operation on the store, never as a read followed by a write.
"""

from datetime import date, datetime
from typing import Protocol

from manabee.models.api import JobStatus
from manabee.models.domain import (
    NotificationRecordData,
    ProfileChanges,
    QuestionJobData,
    QuotaDecision,
    UsageLogEntry,
    UserProfileData,
)


class Store(Protocol):
    """
    Persistence protocol.

    Implementations: ``SqlStore`` (SQLAlchemy async) and ``MemoryStore``.
    """

    name: str

    async def ping(self) -> bool:
        """Return True when the backing store is reachable."""
        ...

    # ------------------------------------------------------------------
    # Users and endpoints
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> UserProfileData | None: ...

    async def list_users(self) -> list[UserProfileData]: ...

    async def create_user_if_absent(self, profile: UserProfileData) -> tuple[UserProfileData, bool]:
        """Insert the profile unless one exists; returns (stored profile, created)."""
        ...

    async def update_user(
        self, user_id: str, changes: ProfileChanges, updated_by: str, at: datetime
    ) -> UserProfileData | None:
        """Apply changes; returns None when the user does not exist."""
        ...

    async def list_endpoints(self, user_id: str) -> list[str]: ...

    async def add_endpoint(self, user_id: str, token: str) -> bool:
        """Idempotent add; returns True when the token was not already present."""
        ...

    async def remove_endpoints(self, user_id: str, tokens: list[str]) -> int:
        """Remove the given tokens in one update; returns how many were removed."""
        ...

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    async def consume_quota(
        self, user_id: str, day: date, limit: int, at: datetime
    ) -> QuotaDecision:
        """
        Atomically increment the (user_id, day) counter if it is below limit.

        Rejected attempts leave the counter unchanged.
        """
        ...

    async def get_quota_count(self, user_id: str, day: date) -> int: ...

    async def delete_quota_before(self, cutoff: date) -> int:
        """Delete every quota record whose day is strictly before cutoff."""
        ...

    # ------------------------------------------------------------------
    # Usage log
    # ------------------------------------------------------------------

    async def append_usage(self, entry: UsageLogEntry) -> None: ...

    async def list_usage_since(self, since: datetime) -> list[UsageLogEntry]: ...

    # ------------------------------------------------------------------
    # Question jobs
    # ------------------------------------------------------------------

    async def create_job(
        self,
        student_id: str,
        image_payload: str | None,
        image_mime_type: str,
        subject: str | None,
        status: JobStatus,
        at: datetime,
    ) -> QuestionJobData: ...

    async def get_job(self, job_id: str) -> QuestionJobData | None: ...

    async def transition_job(
        self,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
        at: datetime,
        ai_analysis: str | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Compare-and-set the job status.

        Returns False (and changes nothing) when the job is not currently in
        from_status. Raises InvalidTransitionError for lifecycle violations.
        """
        ...

    async def list_processing_started_before(self, cutoff: datetime) -> list[str]:
        """Ids of jobs still in processing that started before cutoff."""
        ...

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def add_notification(self, record: NotificationRecordData) -> None: ...

    async def list_notifications(self, target_user_id: str) -> list[NotificationRecordData]: ...


def timestamp_field_for(status: JobStatus) -> str:
    """Name of the job timestamp stamped when entering a status."""
    return {
        JobStatus.PROCESSING: "processing_started_at",
        JobStatus.ANALYZED: "analyzed_at",
        JobStatus.ERROR: "error_at",
    }[status]
