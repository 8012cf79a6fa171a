"""Identity and organization membership queries using SQLAlchemy Core."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import UserRole
from ..tables import users


async def get_user_by_id(
    conn: AsyncConnection,
    user_id: int,
) -> dict[str, Any] | None:
    """Get a user (role and organization included) by ID."""
    result = await conn.execute(select(users).where(users.c.user_id == user_id))
    row = result.mappings().first()
    return dict(row) if row else None


async def list_students(
    conn: AsyncConnection,
    *,
    user_id: int | None = None,
    organization_id: int | None = None,
) -> list[dict[str, Any]]:
    """
    List users with the student role, optionally filtered.

    Returns dicts with user_id, email, username and organization_id,
    ordered by user_id.
    """
    query = select(
        users.c.user_id,
        users.c.email,
        users.c.username,
        users.c.organization_id,
    ).where(users.c.role == UserRole.student)

    if user_id is not None:
        query = query.where(users.c.user_id == user_id)
    if organization_id is not None:
        query = query.where(users.c.organization_id == organization_id)

    result = await conn.execute(query.order_by(users.c.user_id))
    return [dict(row) for row in result.mappings()]
