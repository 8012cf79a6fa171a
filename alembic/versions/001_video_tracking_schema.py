"""Video tracking schema.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates the collaborator tables the service reads (organizations, users,
lessons) and the tracking tables it owns (viewing_sessions, applied_batches,
video_progress, video_views).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = ENUM(
    "admin", "org_admin", "instructor", "student", name="user_role", create_type=False
)


def upgrade() -> None:
    user_role.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "organizations",
        sa.Column("organization_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("organization_id", name="pk_organizations"),
    )

    op.create_table(
        "users",
        sa.Column("user_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("username", sa.Text(), nullable=True),
        sa.Column("role", user_role, server_default="student", nullable=False),
        sa.Column(
            "organization_id",
            sa.Integer(),
            sa.ForeignKey(
                "organizations.organization_id",
                ondelete="SET NULL",
                name="fk_users_organization_id_organizations",
            ),
            nullable=True,
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("user_id", name="pk_users"),
    )
    op.create_index("idx_users_organization_id", "users", ["organization_id"])
    op.create_index("idx_users_email", "users", ["email"])

    op.create_table(
        "lessons",
        sa.Column("lesson_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("lesson_id", name="pk_lessons"),
    )

    op.create_table(
        "viewing_sessions",
        sa.Column("session_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("session_token", sa.Text(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey(
                "users.user_id",
                ondelete="CASCADE",
                name="fk_viewing_sessions_user_id_users",
            ),
            nullable=False,
        ),
        sa.Column("lesson_id", sa.Text(), nullable=False),
        sa.Column("client_instance_id", sa.Text(), nullable=True),
        sa.Column(
            "started_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column("last_heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_position_seconds", sa.Float(), nullable=True),
        sa.Column("last_client_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("session_id", name="pk_viewing_sessions"),
        sa.UniqueConstraint(
            "session_token", name="uq_viewing_sessions_session_token"
        ),
    )
    op.create_index(
        "idx_viewing_sessions_user_lesson",
        "viewing_sessions",
        ["user_id", "lesson_id"],
    )

    op.create_table(
        "applied_batches",
        sa.Column("session_token", sa.Text(), nullable=False),
        sa.Column("batch_seq", sa.Integer(), nullable=False),
        sa.Column("event_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "applied_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint(
            "session_token", "batch_seq", name="pk_applied_batches"
        ),
    )

    op.create_table(
        "video_progress",
        sa.Column("progress_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey(
                "users.user_id",
                ondelete="CASCADE",
                name="fk_video_progress_user_id_users",
            ),
            nullable=False,
        ),
        sa.Column("lesson_id", sa.Text(), nullable=False),
        sa.Column(
            "total_watched_seconds", sa.Float(), server_default="0", nullable=False
        ),
        sa.Column(
            "completion_percentage", sa.Float(), server_default="0", nullable=False
        ),
        sa.Column(
            "max_position_seconds", sa.Float(), server_default="0", nullable=False
        ),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column(
            "watched_segments",
            JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column(
            "is_completed", sa.Boolean(), server_default="false", nullable=False
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "grade_contribution", sa.Float(), server_default="0", nullable=False
        ),
        sa.Column(
            "suspicious_activity_count",
            sa.Integer(),
            server_default="0",
            nullable=False,
        ),
        sa.Column("first_watch_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "last_updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.PrimaryKeyConstraint("progress_id", name="pk_video_progress"),
        sa.UniqueConstraint(
            "user_id", "lesson_id", name="uq_video_progress_user_lesson"
        ),
        sa.CheckConstraint(
            "completion_percentage >= 0 AND completion_percentage <= 100",
            name="ck_video_progress_completion_range",
        ),
    )
    op.create_index("idx_video_progress_lesson", "video_progress", ["lesson_id"])

    op.create_table(
        "video_views",
        sa.Column("view_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey(
                "users.user_id",
                ondelete="CASCADE",
                name="fk_video_views_user_id_users",
            ),
            nullable=False,
        ),
        sa.Column("lesson_id", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("view_id", name="pk_video_views"),
        sa.UniqueConstraint(
            "user_id", "lesson_id", name="uq_video_views_user_lesson"
        ),
    )
    op.create_index("idx_video_views_created_at", "video_views", ["created_at"])


def downgrade() -> None:
    op.drop_index("idx_video_views_created_at", table_name="video_views")
    op.drop_table("video_views")
    op.drop_index("idx_video_progress_lesson", table_name="video_progress")
    op.drop_table("video_progress")
    op.drop_table("applied_batches")
    op.drop_index("idx_viewing_sessions_user_lesson", table_name="viewing_sessions")
    op.drop_table("viewing_sessions")
    op.drop_table("lessons")
    op.drop_index("idx_users_email", table_name="users")
    op.drop_index("idx_users_organization_id", table_name="users")
    op.drop_table("users")
    op.drop_table("organizations")
    user_role.drop(op.get_bind(), checkfirst=True)
