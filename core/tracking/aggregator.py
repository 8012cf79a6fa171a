"""Durable progress application.

apply_batch() runs inside the caller's transaction: it makes sure the
(user, lesson) record exists, locks it with SELECT ... FOR UPDATE, folds the
batch with the pure calculator and writes everything back, including one
suspicious_activities row per anomaly flag. Batches for different pairs never
wait on each other; batches for the same pair apply one at a time.

Lock waits are bounded by lock_timeout. Lock timeouts, deadlocks and
serialization failures surface as PersistenceConflict and are retried by
run_with_conflict_retry() in a fresh transaction.
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection

from core.queries.activities import insert_activities
from core.queries.lessons import get_lesson
from core.queries.progress import (
    ensure_progress_row,
    lock_progress_row,
    update_progress_row,
)
from core.queries.sessions import update_session_cursor
from core.tracking import metrics
from core.tracking.calculator import fold_batch
from core.tracking.errors import PersistenceConflict
from core.tracking.types import PlaybackEvent, ProgressState, SessionCursor
from core.tracking.views import register_view

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFLICT_MAX_ATTEMPTS = 5

# serialization_failure, deadlock_detected, lock_not_available
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


def is_conflict_error(exc: DBAPIError) -> bool:
    """Check whether a driver error is transient row contention."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in CONFLICT_SQLSTATES


def get_conflict_retry_delay(attempt: int, include_jitter: bool = True) -> float:
    """
    Calculate retry delay for a conflicted transaction.

    Args:
        attempt: Zero-based attempt number (0 = first retry)
        include_jitter: Add random jitter so retrying writers spread out

    Returns:
        Delay in seconds (0.05, 0.1, 0.2, 0.4, 0.8, capped at 1)
    """
    base_delay = min(0.05 * 2**attempt, 1.0)
    if include_jitter:
        return base_delay + random.uniform(0, base_delay * 0.5)
    return base_delay


async def run_with_conflict_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = CONFLICT_MAX_ATTEMPTS,
    delay: Callable[[int], float] = get_conflict_retry_delay,
) -> T:
    """
    Run a transactional operation, retrying it on PersistenceConflict.

    The operation must open its own transaction so every attempt starts
    clean. Non-conflict errors propagate immediately.

    Raises:
        PersistenceConflict: If every attempt conflicted
    """
    last_conflict: PersistenceConflict | None = None
    for attempt in range(max_attempts):
        try:
            return await operation()
        except DBAPIError as e:
            if not is_conflict_error(e):
                raise
            last_conflict = PersistenceConflict(str(e.orig))
        except PersistenceConflict as e:
            last_conflict = e

        if attempt + 1 < max_attempts:
            wait = delay(attempt)
            logger.warning(
                f"Progress update conflicted (attempt {attempt + 1}/{max_attempts}), "
                f"retrying in {wait:.2f}s"
            )
            await asyncio.sleep(wait)

    raise last_conflict


async def apply_batch(
    conn: AsyncConnection,
    *,
    user_id: int,
    lesson_id: str,
    session: dict[str, Any],
    events: list[PlaybackEvent],
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Fold a validated, ordered batch into the (user, lesson) progress record.

    Args:
        conn: Connection inside the ingestion transaction
        user_id: Owner of the record
        lesson_id: Lesson the events belong to
        session: viewing_sessions row of the session that produced the batch
        events: Validated events ordered by client sequence
        now: Server time for bookkeeping columns

    Returns:
        The updated video_progress row
    """
    now = now or datetime.now(timezone.utc)

    await ensure_progress_row(conn, user_id=user_id, lesson_id=lesson_id, now=now)
    row = await lock_progress_row(conn, user_id=user_id, lesson_id=lesson_id)
    if row is None:
        raise PersistenceConflict(
            f"Progress row for user {user_id}, lesson {lesson_id} not visible"
        )

    catalog_duration = None
    threshold = None
    lesson = await get_lesson(conn, lesson_id)
    if lesson:
        if row.get("duration_seconds") is None:
            catalog_duration = lesson.get("duration_seconds")
        threshold = lesson.get("required_completion_percentage")

    result = fold_batch(
        ProgressState.from_row(row),
        SessionCursor(
            last_position=session.get("last_position_seconds"),
            last_client_timestamp=session.get("last_client_timestamp"),
        ),
        events,
        catalog_duration=catalog_duration,
        threshold=threshold,
    )

    values = result.state.to_values()
    values["last_updated_at"] = now
    if result.became_completed:
        values["completed_at"] = now

    updated = await update_progress_row(conn, row["progress_id"], values)
    await update_session_cursor(
        conn,
        session["session_id"],
        last_position_seconds=result.cursor.last_position,
        last_client_timestamp=result.cursor.last_client_timestamp,
        now=now,
    )

    if result.became_completed:
        await register_view(conn, user_id, lesson_id)
        metrics.video_views_registered_total.inc()
        logger.info(
            f"User {user_id} completed lesson {lesson_id} "
            f"({result.state.completion_percentage:.1f}%)"
        )

    await insert_activities(
        conn,
        [
            {
                "user_id": user_id,
                "lesson_id": lesson_id,
                "session_id": session["session_id"],
                "flag": flag.value,
                "event_kind": event.kind.value,
                "position_seconds": (
                    event.to_position if event.to_position is not None else event.position
                ),
                "client_timestamp": event.client_timestamp,
            }
            for event in events
            for flag in event.flags
        ],
    )

    for event in events:
        metrics.video_events_ingested_total.labels(kind=event.kind.value).inc()
        for flag in event.flags:
            metrics.video_anomaly_flags_total.labels(flag=flag.value).inc()

    if result.flags_counted:
        logger.info(
            f"Counted {result.flags_counted} anomaly flag(s) for user {user_id}, "
            f"lesson {lesson_id}"
        )

    return updated
