"""Suspicious activity records (one row per anomaly flag on an event)."""

from typing import Any

from sqlalchemy import and_, func, insert, select, true
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import suspicious_activities, users


async def insert_activities(
    conn: AsyncConnection,
    records: list[dict[str, Any]],
) -> None:
    """Insert suspicious activity rows in one statement."""
    if not records:
        return
    await conn.execute(insert(suspicious_activities), records)


async def list_activities_page(
    conn: AsyncConnection,
    *,
    user_id: int | None = None,
    organization_id: int | None = None,
    lesson_id: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """
    Page through suspicious activity records, newest first.

    Returns:
        (rows, total); rows include the owner's email and organization_id
    """
    conditions = []
    if user_id is not None:
        conditions.append(suspicious_activities.c.user_id == user_id)
    if organization_id is not None:
        conditions.append(users.c.organization_id == organization_id)
    if lesson_id is not None:
        conditions.append(suspicious_activities.c.lesson_id == lesson_id)

    joined = suspicious_activities.join(
        users, users.c.user_id == suspicious_activities.c.user_id
    )

    result = await conn.execute(
        select(suspicious_activities, users.c.email, users.c.organization_id)
        .select_from(joined)
        .where(and_(true(), *conditions))
        .order_by(
            suspicious_activities.c.created_at.desc(),
            suspicious_activities.c.activity_id.desc(),
        )
        .limit(limit)
        .offset(offset)
    )
    rows = [dict(row) for row in result.mappings()]

    total = await conn.scalar(
        select(func.count()).select_from(joined).where(and_(true(), *conditions))
    )
    return rows, total or 0
