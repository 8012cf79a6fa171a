"""Queries for per-(user, lesson) video progress records."""

from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select, true, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import users, video_progress


async def ensure_progress_row(
    conn: AsyncConnection,
    *,
    user_id: int,
    lesson_id: str,
    now: datetime,
) -> None:
    """Create the progress record if missing (concurrent creators are safe)."""
    stmt = (
        pg_insert(video_progress)
        .values(
            user_id=user_id,
            lesson_id=lesson_id,
            first_watch_started_at=now,
            last_updated_at=now,
        )
        .on_conflict_do_nothing(constraint="uq_video_progress_user_lesson")
    )
    await conn.execute(stmt)


async def lock_progress_row(
    conn: AsyncConnection,
    *,
    user_id: int,
    lesson_id: str,
) -> dict[str, Any] | None:
    """
    Read a progress record with SELECT ... FOR UPDATE.

    The lock is held until the caller's transaction ends, which serializes
    all batch applications for this (user, lesson) pair.
    """
    result = await conn.execute(
        select(video_progress)
        .where(
            and_(
                video_progress.c.user_id == user_id,
                video_progress.c.lesson_id == lesson_id,
            )
        )
        .with_for_update()
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def update_progress_row(
    conn: AsyncConnection,
    progress_id: int,
    values: dict[str, Any],
) -> dict[str, Any]:
    """Write folded values, bump version and return the updated record."""
    result = await conn.execute(
        update(video_progress)
        .where(video_progress.c.progress_id == progress_id)
        .values(**values, version=video_progress.c.version + 1)
        .returning(video_progress)
    )
    return dict(result.mappings().first())


async def get_progress_records(
    conn: AsyncConnection,
    user_id: int,
    lesson_id: str | None = None,
) -> list[dict[str, Any]]:
    """Get a user's progress records, most recently updated first."""
    query = select(video_progress).where(video_progress.c.user_id == user_id)
    if lesson_id is not None:
        query = query.where(video_progress.c.lesson_id == lesson_id)
    result = await conn.execute(
        query.order_by(video_progress.c.last_updated_at.desc())
    )
    return [dict(row) for row in result.mappings()]


async def list_progress_page(
    conn: AsyncConnection,
    *,
    user_id: int | None = None,
    organization_id: int | None = None,
    lesson_id: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """
    Page through progress records across users, joined with their owners.

    Organization filtering goes through users.organization_id.

    Returns:
        (rows, total) where rows carry the video_progress columns plus email,
        username and organization_id, most recently updated first, and total
        counts every matching record
    """
    conditions = []
    if user_id is not None:
        conditions.append(video_progress.c.user_id == user_id)
    if organization_id is not None:
        conditions.append(users.c.organization_id == organization_id)
    if lesson_id is not None:
        conditions.append(video_progress.c.lesson_id == lesson_id)

    joined = video_progress.join(users, users.c.user_id == video_progress.c.user_id)

    query = (
        select(
            video_progress,
            users.c.email,
            users.c.username,
            users.c.organization_id,
        )
        .select_from(joined)
        .where(and_(true(), *conditions))
        .order_by(
            video_progress.c.last_updated_at.desc(),
            video_progress.c.progress_id.desc(),
        )
        .limit(limit)
        .offset(offset)
    )
    result = await conn.execute(query)
    rows = [dict(row) for row in result.mappings()]

    total = await conn.scalar(
        select(func.count()).select_from(joined).where(and_(true(), *conditions))
    )
    return rows, total or 0
