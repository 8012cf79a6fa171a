"""Query layer for database operations using SQLAlchemy Core."""

from .activities import insert_activities, list_activities_page
from .lessons import get_lesson, get_lesson_titles
from .progress import (
    ensure_progress_row,
    get_progress_records,
    list_progress_page,
    lock_progress_row,
    update_progress_row,
)
from .sessions import (
    create_session,
    end_open_sessions,
    get_session_by_token,
    mark_session_ended,
    record_applied_batch,
    update_session_cursor,
)
from .users import get_user_by_id, list_students
from .views import get_view, insert_view_if_absent, list_views_for_users

__all__ = [
    # Users
    "get_user_by_id",
    "list_students",
    # Catalog
    "get_lesson",
    "get_lesson_titles",
    # Sessions
    "create_session",
    "get_session_by_token",
    "end_open_sessions",
    "mark_session_ended",
    "update_session_cursor",
    "record_applied_batch",
    # Progress
    "ensure_progress_row",
    "lock_progress_row",
    "update_progress_row",
    "get_progress_records",
    "list_progress_page",
    # Suspicious activities
    "insert_activities",
    "list_activities_page",
    # Views
    "get_view",
    "insert_view_if_absent",
    "list_views_for_users",
]
