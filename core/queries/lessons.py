"""Lesson catalog lookups (lesson_id -> title, duration)."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import lessons


async def get_lesson(
    conn: AsyncConnection,
    lesson_id: str,
) -> dict[str, Any] | None:
    """Get a catalog entry by lesson ID."""
    result = await conn.execute(
        select(lessons).where(lessons.c.lesson_id == lesson_id)
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def get_lesson_titles(
    conn: AsyncConnection,
    lesson_ids: list[str],
) -> dict[str, str]:
    """Map lesson IDs to titles. IDs missing from the catalog are absent."""
    if not lesson_ids:
        return {}
    result = await conn.execute(
        select(lessons.c.lesson_id, lessons.c.title).where(
            lessons.c.lesson_id.in_(set(lesson_ids))
        )
    )
    return {row.lesson_id: row.title for row in result}
