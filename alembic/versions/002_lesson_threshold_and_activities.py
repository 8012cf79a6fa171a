"""Per-lesson completion requirement and suspicious activity records.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "lessons",
        sa.Column("required_completion_percentage", sa.Float(), nullable=True),
    )
    op.create_check_constraint(
        "ck_lessons_required_completion_range",
        "lessons",
        "required_completion_percentage IS NULL OR "
        "(required_completion_percentage > 0 AND required_completion_percentage <= 100)",
    )

    op.create_table(
        "suspicious_activities",
        sa.Column("activity_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey(
                "users.user_id",
                ondelete="CASCADE",
                name="fk_suspicious_activities_user_id_users",
            ),
            nullable=False,
        ),
        sa.Column("lesson_id", sa.Text(), nullable=False),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey(
                "viewing_sessions.session_id",
                ondelete="SET NULL",
                name="fk_suspicious_activities_session_id_viewing_sessions",
            ),
            nullable=True,
        ),
        sa.Column("flag", sa.Text(), nullable=False),
        sa.Column("event_kind", sa.Text(), nullable=False),
        sa.Column("position_seconds", sa.Float(), nullable=True),
        sa.Column("client_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("activity_id", name="pk_suspicious_activities"),
    )
    op.create_index(
        "idx_suspicious_activities_user_lesson",
        "suspicious_activities",
        ["user_id", "lesson_id"],
    )
    op.create_index(
        "idx_suspicious_activities_created_at",
        "suspicious_activities",
        ["created_at"],
    )


def downgrade() -> None:
    op.drop_index(
        "idx_suspicious_activities_created_at", table_name="suspicious_activities"
    )
    op.drop_index(
        "idx_suspicious_activities_user_lesson", table_name="suspicious_activities"
    )
    op.drop_table("suspicious_activities")
    op.drop_constraint("ck_lessons_required_completion_range", "lessons", type_="check")
    op.drop_column("lessons", "required_completion_percentage")
