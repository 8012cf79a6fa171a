"""View Registrar: one watched marker per (user, lesson), created idempotently."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection

from core.queries.views import get_view, insert_view_if_absent, list_views_for_users

logger = logging.getLogger(__name__)


async def register_view(
    conn: AsyncConnection,
    user_id: int,
    lesson_id: str,
) -> dict[str, Any]:
    """
    Return the watched marker for (user, lesson), creating it if absent.

    Concurrent callers race on the unique constraint; the loser re-reads the
    winner's row, so every caller gets the same marker and none errors.
    """
    existing = await get_view(conn, user_id, lesson_id)
    if existing:
        return existing

    created = await insert_view_if_absent(conn, user_id, lesson_id)
    if created:
        logger.info(f"Registered view for user {user_id}, lesson {lesson_id}")
        return created

    # Lost the insert race: the other writer's row is visible now
    winner = await get_view(conn, user_id, lesson_id)
    if winner is None:
        raise RuntimeError(
            f"Watched marker for user {user_id}, lesson {lesson_id} vanished"
        )
    return winner


async def list_views(
    conn: AsyncConnection,
    user_id: int,
    lesson_id: str | None = None,
) -> list[dict[str, Any]]:
    """List a user's watched markers, newest first."""
    return await list_views_for_users(conn, [user_id], lesson_id)


async def has_watched(conn: AsyncConnection, user_id: int, lesson_id: str) -> bool:
    """Check whether a user has a watched marker for a lesson."""
    return await get_view(conn, user_id, lesson_id) is not None
