"""initial schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates users, device_endpoints, quota_records, usage_logs, question_jobs
and notifications.
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0000"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create initial database schema."""

    # ========================================================================
    # users
    # ========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="student"),
        sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by", sa.String(128), nullable=True),
        sa.CheckConstraint(
            "role IN ('admin', 'tutor', 'student', 'guardian')", name="ck_users_role_valid"
        ),
    )

    # ========================================================================
    # device_endpoints
    # ========================================================================
    op.create_table(
        "device_endpoints",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("token", sa.String(4096), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_device_endpoints_user", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("user_id", "token", name="uq_device_endpoints_user_token"),
    )
    op.create_index("idx_device_endpoints_user_id", "device_endpoints", ["user_id"])

    # ========================================================================
    # quota_records
    # ========================================================================
    op.create_table(
        "quota_records",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("day", sa.Date(), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.CheckConstraint("count >= 0", name="ck_quota_count_non_negative"),
    )
    op.create_index("idx_quota_records_day", "quota_records", ["day"])

    # ========================================================================
    # usage_logs
    # ========================================================================
    op.create_table(
        "usage_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("operation", sa.String(100), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column("date_bucket", sa.String(10), nullable=False),
    )
    op.create_index("idx_usage_logs_timestamp", "usage_logs", ["timestamp"])
    op.create_index("idx_usage_logs_user_id", "usage_logs", ["user_id"])

    # ========================================================================
    # question_jobs
    # ========================================================================
    op.create_table(
        "question_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("student_id", sa.String(128), nullable=False),
        sa.Column("image_payload", sa.Text(), nullable=True),
        sa.Column("image_mime_type", sa.String(50), nullable=False, server_default="image/jpeg"),
        sa.Column("subject", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("ai_analysis", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'analyzed', 'error')",
            name="ck_question_jobs_status_valid",
        ),
    )
    op.create_index("idx_question_jobs_status", "question_jobs", ["status"])
    op.create_index("idx_question_jobs_student_id", "question_jobs", ["student_id"])

    # ========================================================================
    # notifications
    # ========================================================================
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("target_user_id", sa.String(128), nullable=False),
        sa.Column("sender_id", sa.String(128), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("url", sa.String(2048), nullable=True),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column(
            "sent_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("idx_notifications_target_user_id", "notifications", ["target_user_id"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("notifications")
    op.drop_table("question_jobs")
    op.drop_table("usage_logs")
    op.drop_table("quota_records")
    op.drop_table("device_endpoints")
    op.drop_table("users")
