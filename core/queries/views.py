"""Watched-marker (video_views) queries."""

from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import video_views


async def get_view(
    conn: AsyncConnection,
    user_id: int,
    lesson_id: str,
) -> dict[str, Any] | None:
    """Get the watched marker for a (user, lesson) pair."""
    result = await conn.execute(
        select(video_views).where(
            and_(
                video_views.c.user_id == user_id,
                video_views.c.lesson_id == lesson_id,
            )
        )
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def insert_view_if_absent(
    conn: AsyncConnection,
    user_id: int,
    lesson_id: str,
) -> dict[str, Any] | None:
    """
    Insert a watched marker unless one exists.

    Returns:
        The new row, or None when another writer already created it
    """
    stmt = (
        pg_insert(video_views)
        .values(user_id=user_id, lesson_id=lesson_id)
        .on_conflict_do_nothing(constraint="uq_video_views_user_lesson")
        .returning(video_views)
    )
    result = await conn.execute(stmt)
    row = result.mappings().first()
    return dict(row) if row else None


async def list_views_for_users(
    conn: AsyncConnection,
    user_ids: list[int],
    lesson_id: str | None = None,
) -> list[dict[str, Any]]:
    """Get watched markers for a set of users, newest first."""
    if not user_ids:
        return []
    query = select(video_views).where(video_views.c.user_id.in_(user_ids))
    if lesson_id is not None:
        query = query.where(video_views.c.lesson_id == lesson_id)
    result = await conn.execute(
        query.order_by(video_views.c.created_at.desc(), video_views.c.view_id.desc())
    )
    return [dict(row) for row in result.mappings()]
