"""Viewing session and applied-batch ledger queries."""

from datetime import datetime
from typing import Any

from sqlalchemy import and_, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import applied_batches, viewing_sessions


async def create_session(
    conn: AsyncConnection,
    *,
    session_token: str,
    user_id: int,
    lesson_id: str,
    client_instance_id: str | None,
    now: datetime,
) -> dict[str, Any]:
    """Insert a new viewing session and return it."""
    result = await conn.execute(
        insert(viewing_sessions)
        .values(
            session_token=session_token,
            user_id=user_id,
            lesson_id=lesson_id,
            client_instance_id=client_instance_id,
            started_at=now,
            last_heartbeat_at=now,
        )
        .returning(viewing_sessions)
    )
    return dict(result.mappings().first())


async def get_session_by_token(
    conn: AsyncConnection,
    session_token: str,
    *,
    for_update: bool = False,
) -> dict[str, Any] | None:
    """Get a viewing session by its opaque token."""
    query = select(viewing_sessions).where(
        viewing_sessions.c.session_token == session_token
    )
    if for_update:
        query = query.with_for_update()
    result = await conn.execute(query)
    row = result.mappings().first()
    return dict(row) if row else None


async def end_open_sessions(
    conn: AsyncConnection,
    *,
    user_id: int,
    lesson_id: str,
    client_instance_id: str,
    now: datetime,
) -> int:
    """
    Stamp ended_at on open sessions of one player instance for a lesson.

    Returns:
        Number of sessions ended
    """
    result = await conn.execute(
        update(viewing_sessions)
        .where(
            and_(
                viewing_sessions.c.user_id == user_id,
                viewing_sessions.c.lesson_id == lesson_id,
                viewing_sessions.c.client_instance_id == client_instance_id,
                viewing_sessions.c.ended_at.is_(None),
            )
        )
        .values(ended_at=now)
    )
    return result.rowcount


async def mark_session_ended(
    conn: AsyncConnection,
    session_id: int,
    now: datetime,
) -> None:
    """Stamp ended_at once; an already ended session keeps its timestamp."""
    await conn.execute(
        update(viewing_sessions)
        .where(
            and_(
                viewing_sessions.c.session_id == session_id,
                viewing_sessions.c.ended_at.is_(None),
            )
        )
        .values(ended_at=now)
    )


async def update_session_cursor(
    conn: AsyncConnection,
    session_id: int,
    *,
    last_position_seconds: float | None,
    last_client_timestamp: datetime | None,
    now: datetime,
) -> None:
    """Advance the per-session cursor and record a heartbeat."""
    await conn.execute(
        update(viewing_sessions)
        .where(viewing_sessions.c.session_id == session_id)
        .values(
            last_position_seconds=last_position_seconds,
            last_client_timestamp=last_client_timestamp,
            last_heartbeat_at=now,
        )
    )


async def record_applied_batch(
    conn: AsyncConnection,
    *,
    session_token: str,
    batch_seq: int,
    event_count: int,
    now: datetime,
) -> bool:
    """
    Add a batch to the ledger.

    Returns:
        True if the batch is new, False if (session_token, batch_seq) was
        already applied
    """
    stmt = (
        pg_insert(applied_batches)
        .values(
            session_token=session_token,
            batch_seq=batch_seq,
            event_count=event_count,
            applied_at=now,
        )
        .on_conflict_do_nothing(index_elements=["session_token", "batch_seq"])
        .returning(applied_batches.c.batch_seq)
    )
    result = await conn.execute(stmt)
    return result.first() is not None
