"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
Column types are kept portable so the same schema runs on PostgreSQL
(production) and SQLite (local runs and tests).
"""

from datetime import UTC, date, datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a string primary key."""
    return str(uuid4())


class UserProfile(Base):
    """
    ORM model for users table.

    One row per identity; created by profile provisioning.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="student")
    must_change_password: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'tutor', 'student', 'guardian')", name="ck_users_role_valid"
        ),
    )

    def __repr__(self) -> str:
        return f"<UserProfile(id={self.id}, role={self.role})>"


class DeviceEndpoint(Base):
    """
    ORM model for device_endpoints table.

    Push tokens registered by a user; (user_id, token) is unique.
    """

    __tablename__ = "device_endpoints"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(4096), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("user_id", "token", name="uq_device_endpoints_user_token"),
        Index("idx_device_endpoints_user_id", "user_id"),
    )


class QuotaRecord(Base):
    """
    ORM model for quota_records table.

    One counter per (user_id, day); incremented only through a conditional upsert.
    """

    __tablename__ = "quota_records"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("count >= 0", name="ck_quota_count_non_negative"),
        Index("idx_quota_records_day", "day"),
    )


class UsageLog(Base):
    """
    ORM model for usage_logs table.

    Append-only: rows are never updated or deleted by the service.
    """

    __tablename__ = "usage_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    operation: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    date_bucket: Mapped[str] = mapped_column(String(10), nullable=False)

    __table_args__ = (
        Index("idx_usage_logs_timestamp", "timestamp"),
        Index("idx_usage_logs_user_id", "user_id"),
    )


class QuestionJob(Base):
    """
    ORM model for question_jobs table.

    Status moves queued -> processing -> analyzed|error via conditional updates.
    """

    __tablename__ = "question_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(String(128), nullable=False)
    image_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_mime_type: Mapped[str] = mapped_column(String(50), nullable=False, default="image/jpeg")
    subject: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="queued")
    ai_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'analyzed', 'error')",
            name="ck_question_jobs_status_valid",
        ),
        Index("idx_question_jobs_status", "status"),
        Index("idx_question_jobs_student_id", "student_id"),
    )


class NotificationRecord(Base):
    """
    ORM model for notifications table.

    Immutable log of every dispatched notification.
    """

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    target_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_notifications_target_user_id", "target_user_id"),)
