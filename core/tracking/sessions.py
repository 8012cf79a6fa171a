"""Viewing Session Registry: opaque tokens for player sessions."""

import logging
import secrets
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection

from core.queries.lessons import get_lesson
from core.queries.sessions import (
    create_session,
    end_open_sessions,
    get_session_by_token,
    mark_session_ended,
)
from core.tracking.errors import LessonNotFoundError, SessionMismatch

logger = logging.getLogger(__name__)


def generate_session_token() -> str:
    """Unguessable, URL-safe session token."""
    return secrets.token_urlsafe(32)


async def start_session(
    conn: AsyncConnection,
    *,
    user_id: int,
    lesson_id: str,
    client_instance_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Open a viewing session for a lesson.

    A player instance has at most one open session per lesson: opening a new
    one ends the previous session of the same (user, lesson, instance).

    Returns:
        Dict with session_token and the lesson catalog entry

    Raises:
        LessonNotFoundError: If the lesson is not in the catalog
    """
    now = now or datetime.now(timezone.utc)

    lesson = await get_lesson(conn, lesson_id)
    if lesson is None:
        raise LessonNotFoundError(f"Lesson not found: {lesson_id}")

    if client_instance_id:
        ended = await end_open_sessions(
            conn,
            user_id=user_id,
            lesson_id=lesson_id,
            client_instance_id=client_instance_id,
            now=now,
        )
        if ended:
            logger.info(
                f"Ended {ended} previous session(s) for user {user_id}, "
                f"lesson {lesson_id}"
            )

    session = await create_session(
        conn,
        session_token=generate_session_token(),
        user_id=user_id,
        lesson_id=lesson_id,
        client_instance_id=client_instance_id,
        now=now,
    )
    return {
        "session_token": session["session_token"],
        "lesson": {
            "lesson_id": lesson["lesson_id"],
            "title": lesson["title"],
            "duration_seconds": lesson.get("duration_seconds"),
        },
    }


async def get_session_for_caller(
    conn: AsyncConnection,
    *,
    session_token: str,
    user_id: int,
    lesson_id: str | None = None,
    for_update: bool = False,
) -> dict[str, Any]:
    """
    Resolve a token to the caller's session.

    Raises:
        SessionMismatch: Unknown token, token of another user, or a token
            opened for a different lesson
    """
    session = await get_session_by_token(conn, session_token, for_update=for_update)
    if session is None:
        raise SessionMismatch("Unknown session token")
    if session["user_id"] != user_id:
        logger.warning(
            f"User {user_id} presented a session token owned by user "
            f"{session['user_id']}"
        )
        raise SessionMismatch("Session belongs to another user")
    if lesson_id is not None and session["lesson_id"] != lesson_id:
        raise SessionMismatch("Session was opened for a different lesson")
    return session


async def end_session(
    conn: AsyncConnection,
    *,
    session_token: str,
    user_id: int,
    now: datetime | None = None,
) -> None:
    """
    Stamp ended_at on the caller's session.

    Batches arriving later for the token are still accepted so a final flush
    that was retried after end is not lost.
    """
    session = await get_session_for_caller(
        conn, session_token=session_token, user_id=user_id
    )
    await mark_session_ended(
        conn, session["session_id"], now or datetime.now(timezone.utc)
    )
