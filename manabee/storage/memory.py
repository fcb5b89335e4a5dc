"""
In-process store for local runs and tests.

State lives in plain dicts guarded by asyncio locks; quota keys get their own
lock so concurrent consumers for one (user, day) serialize on it.
"""

import asyncio
from collections import defaultdict
from dataclasses import replace
from datetime import date, datetime
from uuid import uuid4

from manabee.exceptions import InvalidTransitionError
from manabee.models.api import JobStatus
from manabee.models.domain import (
    NotificationRecordData,
    ProfileChanges,
    QuestionJobData,
    QuotaDecision,
    UsageLogEntry,
    UserProfileData,
    is_valid_transition,
)
from manabee.storage.base import timestamp_field_for


class MemoryStore:
    """Store implementation backed by process memory."""

    name = "memory"

    def __init__(self) -> None:
        self._users: dict[str, UserProfileData] = {}
        self._endpoints: dict[str, list[str]] = defaultdict(list)
        self._quota: dict[tuple[str, date], tuple[int, datetime]] = {}
        self._quota_locks: dict[tuple[str, date], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._usage: list[UsageLogEntry] = []
        self._jobs: dict[str, QuestionJobData] = {}
        self._notifications: list[NotificationRecordData] = []
        self._lock = asyncio.Lock()

    async def ping(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Users and endpoints
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> UserProfileData | None:
        return self._users.get(user_id)

    async def list_users(self) -> list[UserProfileData]:
        return sorted(self._users.values(), key=lambda u: u.created_at, reverse=True)

    async def create_user_if_absent(self, profile: UserProfileData) -> tuple[UserProfileData, bool]:
        async with self._lock:
            existing = self._users.get(profile.user_id)
            if existing is not None:
                return existing, False
            self._users[profile.user_id] = profile
            return profile, True

    async def update_user(
        self, user_id: str, changes: ProfileChanges, updated_by: str, at: datetime
    ) -> UserProfileData | None:
        async with self._lock:
            current = self._users.get(user_id)
            if current is None:
                return None
            updated = replace(
                current,
                role=changes.role if changes.role is not None else current.role,
                name=changes.name if changes.name is not None else current.name,
                email=changes.email if changes.email is not None else current.email,
                must_change_password=(
                    changes.must_change_password
                    if changes.must_change_password is not None
                    else current.must_change_password
                ),
                updated_at=at,
                updated_by=updated_by,
            )
            self._users[user_id] = updated
            return updated

    async def list_endpoints(self, user_id: str) -> list[str]:
        return list(self._endpoints.get(user_id, []))

    async def add_endpoint(self, user_id: str, token: str) -> bool:
        async with self._lock:
            tokens = self._endpoints[user_id]
            if token in tokens:
                return False
            tokens.append(token)
            return True

    async def remove_endpoints(self, user_id: str, tokens: list[str]) -> int:
        async with self._lock:
            current = self._endpoints.get(user_id, [])
            remaining = [t for t in current if t not in tokens]
            self._endpoints[user_id] = remaining
            return len(current) - len(remaining)

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    async def consume_quota(
        self, user_id: str, day: date, limit: int, at: datetime
    ) -> QuotaDecision:
        key = (user_id, day)
        async with self._quota_locks[key]:
            count, _ = self._quota.get(key, (0, at))
            if count >= limit:
                return QuotaDecision(allowed=False, count=count, limit=limit)
            self._quota[key] = (count + 1, at)
            return QuotaDecision(allowed=True, count=count + 1, limit=limit)

    async def get_quota_count(self, user_id: str, day: date) -> int:
        count, _ = self._quota.get((user_id, day), (0, None))
        return count

    async def delete_quota_before(self, cutoff: date) -> int:
        async with self._lock:
            expired = [key for key in self._quota if key[1] < cutoff]
            for key in expired:
                del self._quota[key]
                self._quota_locks.pop(key, None)
            return len(expired)

    # ------------------------------------------------------------------
    # Usage log
    # ------------------------------------------------------------------

    async def append_usage(self, entry: UsageLogEntry) -> None:
        self._usage.append(entry)

    async def list_usage_since(self, since: datetime) -> list[UsageLogEntry]:
        return [e for e in self._usage if e.timestamp >= since]

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
    ) -> QuestionJobData:
        job = QuestionJobData(
            job_id=str(uuid4()),
            student_id=student_id,
            image_payload=image_payload,
            image_mime_type=image_mime_type,
            subject=subject,
            status=status,
            ai_analysis=None,
            error=None,
            created_at=at,
        )
        self._jobs[job.job_id] = job
        return job

    async def get_job(self, job_id: str) -> QuestionJobData | None:
        return self._jobs.get(job_id)

    async def transition_job(
        self,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
        at: datetime,
        ai_analysis: str | None = None,
        error: str | None = None,
    ) -> bool:
        if not is_valid_transition(from_status, to_status):
            raise InvalidTransitionError(from_status.value, to_status.value)

        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != from_status:
                return False
            fields: dict[str, object] = {"status": to_status, timestamp_field_for(to_status): at}
            if ai_analysis is not None:
                fields["ai_analysis"] = ai_analysis
            if error is not None:
                fields["error"] = error
            self._jobs[job_id] = replace(job, **fields)  # type: ignore[arg-type]
            return True

    async def list_processing_started_before(self, cutoff: datetime) -> list[str]:
        return [
            job.job_id
            for job in self._jobs.values()
            if job.status == JobStatus.PROCESSING
            and job.processing_started_at is not None
            and job.processing_started_at < cutoff
        ]

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def add_notification(self, record: NotificationRecordData) -> None:
        self._notifications.append(record)

    async def list_notifications(self, target_user_id: str) -> list[NotificationRecordData]:
        return [n for n in self._notifications if n.target_user_id == target_user_id]
