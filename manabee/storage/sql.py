"""
SQL Store - SQLAlchemy async implementation of the Store protocol.

Runs on PostgreSQL in production and SQLite locally. Race-sensitive writes
(quota consumption, job transitions) are single conditional statements.
"""

from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from structlog import get_logger

from manabee.db.models import (
    DeviceEndpoint,
    NotificationRecord,
    QuestionJob,
    QuotaRecord,
    UsageLog,
    UserProfile,
)
from manabee.db.session import Database
from manabee.exceptions import InvalidTransitionError, StoreError
from manabee.models.api import JobStatus, UserRole
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

logger = get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite returns naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _to_profile(row: UserProfile) -> UserProfileData:
    return UserProfileData(
        user_id=row.id,
        email=row.email,
        name=row.name,
        role=UserRole(row.role),
        must_change_password=row.must_change_password,
        created_at=_aware(row.created_at),  # type: ignore[arg-type]
        updated_at=_aware(row.updated_at),
        updated_by=row.updated_by,
    )


def _to_job(row: QuestionJob) -> QuestionJobData:
    return QuestionJobData(
        job_id=row.id,
        student_id=row.student_id,
        image_payload=row.image_payload,
        image_mime_type=row.image_mime_type,
        subject=row.subject,
        status=JobStatus(row.status),
        ai_analysis=row.ai_analysis,
        error=row.error,
        created_at=_aware(row.created_at),  # type: ignore[arg-type]
        processing_started_at=_aware(row.processing_started_at),
        analyzed_at=_aware(row.analyzed_at),
        error_at=_aware(row.error_at),
    )


def _to_notification(row: NotificationRecord) -> NotificationRecordData:
    return NotificationRecordData(
        target_user_id=row.target_user_id,
        sender_id=row.sender_id,
        title=row.title,
        body=row.body,
        url=row.url,
        category=row.category,
        sent_at=_aware(row.sent_at),  # type: ignore[arg-type]
        success_count=row.success_count,
        failure_count=row.failure_count,
    )


class SqlStore:
    """Store implementation backed by a SQLAlchemy async engine."""

    name = "sql"

    def __init__(self, database: Database) -> None:
        self.database = database

    def _insert(self) -> Any:
        """Dialect-specific INSERT construct supporting ON CONFLICT."""
        if self.database.engine.dialect.name == "postgresql":
            return postgresql.insert
        return sqlite.insert

    async def ping(self) -> bool:
        try:
            async with self.database.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning("store_ping_failed", error=str(e))
            return False

    # ------------------------------------------------------------------
    # Users and endpoints
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> UserProfileData | None:
        async with self.database.session() as session:
            row = await session.get(UserProfile, user_id)
            return _to_profile(row) if row else None

    async def list_users(self) -> list[UserProfileData]:
        async with self.database.session() as session:
            result = await session.execute(
                select(UserProfile).order_by(UserProfile.created_at.desc())
            )
            return [_to_profile(row) for row in result.scalars().all()]

    async def create_user_if_absent(self, profile: UserProfileData) -> tuple[UserProfileData, bool]:
        async with self.database.session() as session:
            existing = await session.get(UserProfile, profile.user_id)
            if existing is not None:
                return _to_profile(existing), False

            session.add(
                UserProfile(
                    id=profile.user_id,
                    email=profile.email,
                    name=profile.name,
                    role=profile.role.value,
                    must_change_password=profile.must_change_password,
                    created_at=profile.created_at,
                )
            )
            try:
                await session.commit()
            except IntegrityError as e:
                # Race condition - profile created by another request
                logger.info("profile_creation_race", user_id=profile.user_id, error=str(e))
                await session.rollback()
                existing = await session.get(UserProfile, profile.user_id)
                if existing is None:
                    raise StoreError(f"Profile creation failed: {e}") from e
                return _to_profile(existing), False

            return profile, True

    async def update_user(
        self, user_id: str, changes: ProfileChanges, updated_by: str, at: datetime
    ) -> UserProfileData | None:
        async with self.database.session() as session:
            row = await session.get(UserProfile, user_id)
            if row is None:
                return None
            if changes.role is not None:
                row.role = changes.role.value
            if changes.name is not None:
                row.name = changes.name
            if changes.email is not None:
                row.email = changes.email
            if changes.must_change_password is not None:
                row.must_change_password = changes.must_change_password
            row.updated_at = at
            row.updated_by = updated_by
            await session.commit()
            return _to_profile(row)

    async def list_endpoints(self, user_id: str) -> list[str]:
        async with self.database.session() as session:
            result = await session.execute(
                select(DeviceEndpoint.token)
                .where(DeviceEndpoint.user_id == user_id)
                .order_by(DeviceEndpoint.created_at)
            )
            return list(result.scalars().all())

    async def add_endpoint(self, user_id: str, token: str) -> bool:
        async with self.database.session() as session:
            existing = await session.execute(
                select(DeviceEndpoint.id).where(
                    DeviceEndpoint.user_id == user_id, DeviceEndpoint.token == token
                )
            )
            if existing.scalar_one_or_none() is not None:
                return False

            session.add(DeviceEndpoint(user_id=user_id, token=token))
            try:
                await session.commit()
            except IntegrityError:
                # Registered concurrently; the set already holds the token
                await session.rollback()
                return False
            return True

    async def remove_endpoints(self, user_id: str, tokens: list[str]) -> int:
        if not tokens:
            return 0
        async with self.database.session() as session:
            result = await session.execute(
                delete(DeviceEndpoint).where(
                    DeviceEndpoint.user_id == user_id, DeviceEndpoint.token.in_(tokens)
                )
            )
            await session.commit()
            return result.rowcount or 0  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    async def consume_quota(
        self, user_id: str, day: date, limit: int, at: datetime
    ) -> QuotaDecision:
        insert = self._insert()
        stmt = (
            insert(QuotaRecord)
            .values(user_id=user_id, day=day, count=1, updated_at=at)
            .on_conflict_do_update(
                index_elements=[QuotaRecord.user_id, QuotaRecord.day],
                set_={"count": QuotaRecord.count + 1, "updated_at": at},
                where=QuotaRecord.count < limit,
            )
            .returning(QuotaRecord.count)
        )

        async with self.database.session() as session:
            result = await session.execute(stmt)
            new_count = result.scalar_one_or_none()
            await session.commit()

            if new_count is not None:
                return QuotaDecision(allowed=True, count=new_count, limit=limit)

            current = await session.execute(
                select(QuotaRecord.count).where(
                    QuotaRecord.user_id == user_id, QuotaRecord.day == day
                )
            )
            return QuotaDecision(allowed=False, count=current.scalar_one_or_none() or 0, limit=limit)

    async def get_quota_count(self, user_id: str, day: date) -> int:
        async with self.database.session() as session:
            result = await session.execute(
                select(QuotaRecord.count).where(
                    QuotaRecord.user_id == user_id, QuotaRecord.day == day
                )
            )
            return result.scalar_one_or_none() or 0

    async def delete_quota_before(self, cutoff: date) -> int:
        async with self.database.session() as session:
            result = await session.execute(delete(QuotaRecord).where(QuotaRecord.day < cutoff))
            await session.commit()
            return result.rowcount or 0  # type: ignore[attr-defined]

    # ------------------------------------------------------------------
    # Usage log
    # ------------------------------------------------------------------

    async def append_usage(self, entry: UsageLogEntry) -> None:
        async with self.database.session() as session:
            session.add(
                UsageLog(
                    user_id=entry.user_id,
                    operation=entry.operation,
                    timestamp=entry.timestamp,
                    date_bucket=entry.date_bucket,
                )
            )
            await session.commit()

    async def list_usage_since(self, since: datetime) -> list[UsageLogEntry]:
        async with self.database.session() as session:
            result = await session.execute(
                select(UsageLog).where(UsageLog.timestamp >= since).order_by(UsageLog.timestamp)
            )
            return [
                UsageLogEntry(
                    user_id=row.user_id,
                    operation=row.operation,
                    timestamp=_aware(row.timestamp),  # type: ignore[arg-type]
                    date_bucket=row.date_bucket,
                )
                for row in result.scalars().all()
            ]

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
        async with self.database.session() as session:
            row = QuestionJob(
                student_id=student_id,
                image_payload=image_payload,
                image_mime_type=image_mime_type,
                subject=subject,
                status=status.value,
                created_at=at,
            )
            session.add(row)
            await session.commit()
            return _to_job(row)

    async def get_job(self, job_id: str) -> QuestionJobData | None:
        async with self.database.session() as session:
            row = await session.get(QuestionJob, job_id)
            return _to_job(row) if row else None

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

        values: dict[str, Any] = {"status": to_status.value, timestamp_field_for(to_status): at}
        if ai_analysis is not None:
            values["ai_analysis"] = ai_analysis
        if error is not None:
            values["error"] = error

        async with self.database.session() as session:
            result = await session.execute(
                update(QuestionJob)
                .where(QuestionJob.id == job_id, QuestionJob.status == from_status.value)
                .values(**values)
            )
            await session.commit()
            return (result.rowcount or 0) == 1  # type: ignore[attr-defined]

    async def list_processing_started_before(self, cutoff: datetime) -> list[str]:
        async with self.database.session() as session:
            result = await session.execute(
                select(QuestionJob.id).where(
                    QuestionJob.status == JobStatus.PROCESSING.value,
                    QuestionJob.processing_started_at < cutoff,
                )
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def add_notification(self, record: NotificationRecordData) -> None:
        async with self.database.session() as session:
            session.add(
                NotificationRecord(
                    target_user_id=record.target_user_id,
                    sender_id=record.sender_id,
                    title=record.title,
                    body=record.body,
                    url=record.url,
                    category=record.category,
                    sent_at=record.sent_at,
                    success_count=record.success_count,
                    failure_count=record.failure_count,
                )
            )
            await session.commit()

    async def list_notifications(self, target_user_id: str) -> list[NotificationRecordData]:
        async with self.database.session() as session:
            result = await session.execute(
                select(NotificationRecord)
                .where(NotificationRecord.target_user_id == target_user_id)
                .order_by(NotificationRecord.sent_at)
            )
            return [_to_notification(row) for row in result.scalars().all()]
