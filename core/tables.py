"""SQLAlchemy Core table definitions for the database schema."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    Table,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP

from .enums import user_role_enum

# Naming convention for constraints (helps Alembic generate better names)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)


# =====================================================
# 1. ORGANIZATIONS (managed by the admin console)
# =====================================================
organizations = Table(
    "organizations",
    metadata,
    Column("organization_id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
)


# =====================================================
# 2. USERS (identity, role and organization membership)
# =====================================================
users = Table(
    "users",
    metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=True),
    Column("email", Text),
    Column("username", Text),
    Column("role", user_role_enum, nullable=False, server_default="student"),
    Column(
        "organization_id",
        Integer,
        ForeignKey("organizations.organization_id", ondelete="SET NULL"),
    ),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_users_organization_id", "organization_id"),
    Index("idx_users_email", "email"),
)


# =====================================================
# 3. LESSONS (catalog: id -> title, duration, completion requirement)
# =====================================================
lessons = Table(
    "lessons",
    metadata,
    Column("lesson_id", Text, primary_key=True),
    Column("title", Text, nullable=False),
    Column("duration_seconds", Float),
    # Completion needed to count as watched; NULL uses VIDEO_COMPLETION_THRESHOLD
    Column("required_completion_percentage", Float),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    CheckConstraint(
        "required_completion_percentage IS NULL OR "
        "(required_completion_percentage > 0 AND required_completion_percentage <= 100)",
        name="required_completion_range",
    ),
)


# =====================================================
# 4. VIEWING SESSIONS
# =====================================================
viewing_sessions = Table(
    "viewing_sessions",
    metadata,
    Column("session_id", Integer, primary_key=True, autoincrement=True),
    Column("session_token", Text, nullable=False, unique=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("lesson_id", Text, nullable=False),
    # Player instance (browser tab) that opened the session
    Column("client_instance_id", Text),
    Column("started_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("last_heartbeat_at", TIMESTAMP(timezone=True)),
    Column("ended_at", TIMESTAMP(timezone=True)),
    # Per-session cursor for forward-delta watched time accounting
    Column("last_position_seconds", Float),
    Column("last_client_timestamp", TIMESTAMP(timezone=True)),
    Index("idx_viewing_sessions_user_lesson", "user_id", "lesson_id"),
)


# =====================================================
# 5. APPLIED BATCHES (duplicate batch detection)
# =====================================================
applied_batches = Table(
    "applied_batches",
    metadata,
    Column("session_token", Text, nullable=False),
    Column("batch_seq", Integer, nullable=False),
    Column("event_count", Integer, nullable=False, server_default="0"),
    Column("applied_at", TIMESTAMP(timezone=True), server_default=func.now()),
    PrimaryKeyConstraint("session_token", "batch_seq"),
)


# =====================================================
# 6. VIDEO PROGRESS (one row per user/lesson)
# =====================================================
video_progress = Table(
    "video_progress",
    metadata,
    Column("progress_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("lesson_id", Text, nullable=False),
    Column("total_watched_seconds", Float, nullable=False, server_default="0"),
    Column("completion_percentage", Float, nullable=False, server_default="0"),
    Column("max_position_seconds", Float, nullable=False, server_default="0"),
    Column("duration_seconds", Float),
    # Merged [start, end] intervals, in seconds
    Column("watched_segments", JSONB, nullable=False, server_default=text("'[]'::jsonb")),
    Column("is_completed", Boolean, nullable=False, server_default="false"),
    Column("completed_at", TIMESTAMP(timezone=True)),
    Column("grade_contribution", Float, nullable=False, server_default="0"),
    Column(
        "suspicious_activity_count", Integer, nullable=False, server_default="0"
    ),
    Column("first_watch_started_at", TIMESTAMP(timezone=True)),
    Column(
        "last_updated_at", TIMESTAMP(timezone=True), server_default=func.now()
    ),
    Column("version", Integer, nullable=False, server_default="0"),
    UniqueConstraint("user_id", "lesson_id", name="uq_video_progress_user_lesson"),
    CheckConstraint(
        "completion_percentage >= 0 AND completion_percentage <= 100",
        name="completion_range",
    ),
    Index("idx_video_progress_lesson", "lesson_id"),
)


# =====================================================
# 7. VIDEO VIEWS (watched markers)
# =====================================================
video_views = Table(
    "video_views",
    metadata,
    Column("view_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("lesson_id", Text, nullable=False),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    UniqueConstraint("user_id", "lesson_id", name="uq_video_views_user_lesson"),
    Index("idx_video_views_created_at", "created_at"),
)


# =====================================================
# 8. SUSPICIOUS ACTIVITIES (one row per anomaly flag)
# =====================================================
suspicious_activities = Table(
    "suspicious_activities",
    metadata,
    Column("activity_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("lesson_id", Text, nullable=False),
    Column(
        "session_id",
        Integer,
        ForeignKey("viewing_sessions.session_id", ondelete="SET NULL"),
    ),
    Column("flag", Text, nullable=False),
    Column("event_kind", Text, nullable=False),
    Column("position_seconds", Float),
    Column("client_timestamp", TIMESTAMP(timezone=True), nullable=False),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_suspicious_activities_user_lesson", "user_id", "lesson_id"),
    Index("idx_suspicious_activities_created_at", "created_at"),
)
