"""Event Ingestion: validate a batch and apply it exactly once.

One call = one transaction. The session row is locked first, then the
(session_token, batch_seq) ledger entry is written, then the progress record
is folded. A retried batch hits the ledger and becomes a no-op.
"""

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any

import sentry_sdk

from core.config import (
    get_ingest_timeout_seconds,
    get_lock_timeout_ms,
    get_max_clock_skew_seconds,
    get_max_event_age_seconds,
)
from core.database import get_transaction, set_lock_timeout
from core.enums import PlaybackEventKind
from core.queries.sessions import record_applied_batch, update_session_cursor
from core.tracking import metrics
from core.tracking.aggregator import apply_batch, run_with_conflict_retry
from core.tracking.anomalies import add_server_flags, flag_leading_seek, parse_flags
from core.tracking.errors import (
    AuthenticationRequired,
    IngestionTimeout,
    PersistenceConflict,
    SessionMismatch,
    ValidationError,
)
from core.tracking.sessions import get_session_for_caller
from core.tracking.types import IngestResult, PlaybackEvent

logger = logging.getLogger(__name__)

MAX_EVENTS_PER_BATCH = 100

_NUMERIC_FIELDS = ("position", "duration", "rate", "volume", "from_position", "to_position")
_POSITION_FIELDS = ("position", "from_position", "to_position")


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid client_timestamp: {value!r}")
    else:
        raise ValidationError("client_timestamp is required")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_number(raw: dict[str, Any], name: str) -> float | None:
    value = raw.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number")
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be finite")
    if name in _POSITION_FIELDS and value < 0:
        raise ValidationError(f"{name} must not be negative")
    return float(value)


def parse_event(
    raw: dict[str, Any],
    now: datetime,
    *,
    max_skew_seconds: float | None = None,
    max_age_seconds: float | None = None,
) -> PlaybackEvent:
    """
    Validate one wire event and convert it to a PlaybackEvent.

    Raises:
        ValidationError: Unknown kind or flag, bad numbers, a seek without
            to_position, or a timestamp outside the accepted window
    """
    if max_skew_seconds is None:
        max_skew_seconds = get_max_clock_skew_seconds()
    if max_age_seconds is None:
        max_age_seconds = get_max_event_age_seconds()

    try:
        kind = PlaybackEventKind(raw.get("kind"))
    except ValueError:
        raise ValidationError(f"Unknown event kind: {raw.get('kind')!r}")

    client_timestamp = _parse_timestamp(raw.get("client_timestamp"))
    offset = (client_timestamp - now).total_seconds()
    if offset > max_skew_seconds:
        raise ValidationError(
            f"client_timestamp {client_timestamp.isoformat()} is too far in the future"
        )
    if -offset > max_age_seconds:
        raise ValidationError(
            f"client_timestamp {client_timestamp.isoformat()} is too old"
        )

    numbers = {name: _parse_number(raw, name) for name in _NUMERIC_FIELDS}
    if kind == PlaybackEventKind.seek and numbers["to_position"] is None:
        raise ValidationError("seek events require to_position")

    try:
        flags = parse_flags(raw.get("flags"))
    except ValueError as e:
        raise ValidationError(f"Unknown anomaly flag: {e}")

    sequence = raw.get("sequence") or 0
    if isinstance(sequence, bool) or not isinstance(sequence, int):
        raise ValidationError("sequence must be an integer")

    tab_visible = raw.get("tab_visible")
    if tab_visible is not None and not isinstance(tab_visible, bool):
        raise ValidationError("tab_visible must be a boolean")

    return PlaybackEvent(
        kind=kind,
        client_timestamp=client_timestamp,
        sequence=sequence,
        tab_visible=tab_visible,
        flags=flags,
        **numbers,
    )


def validate_batch(
    raw_events: list[dict[str, Any]],
    *,
    heartbeat: bool = False,
    now: datetime | None = None,
) -> list[PlaybackEvent]:
    """
    Validate a whole batch and return its events in client order.

    Server-observed anomaly flags are added to the returned events.

    Raises:
        ValidationError: If any event is invalid, the batch is too large, or
            an empty batch is not marked as a heartbeat
    """
    now = now or datetime.now(timezone.utc)

    if len(raw_events) > MAX_EVENTS_PER_BATCH:
        raise ValidationError(
            f"Batch has {len(raw_events)} events (max {MAX_EVENTS_PER_BATCH})"
        )
    if not raw_events and not heartbeat:
        raise ValidationError("Empty batch must be sent as a heartbeat")

    events = [parse_event(raw, now) for raw in raw_events]
    events.sort(key=lambda e: (e.sequence, e.client_timestamp))
    add_server_flags(events)
    return events


def progress_summary(row: dict[str, Any]) -> dict[str, Any]:
    """Public view of a video_progress row."""
    return {
        "lesson_id": row["lesson_id"],
        "completion_percentage": row["completion_percentage"],
        "total_watched_seconds": row["total_watched_seconds"],
        "max_position_seconds": row["max_position_seconds"],
        "duration_seconds": row.get("duration_seconds"),
        "is_completed": row["is_completed"],
        "completed_at": row.get("completed_at"),
        "grade_contribution": row["grade_contribution"],
        "suspicious_activity_count": row["suspicious_activity_count"],
        "last_updated_at": row.get("last_updated_at"),
    }


async def _apply_once(
    *,
    caller_id: int,
    session_token: str,
    batch_seq: int,
    lesson_id: str,
    events: list[PlaybackEvent],
) -> IngestResult:
    now = datetime.now(timezone.utc)
    async with get_transaction() as conn:
        await set_lock_timeout(conn, get_lock_timeout_ms())

        session = await get_session_for_caller(
            conn,
            session_token=session_token,
            user_id=caller_id,
            lesson_id=lesson_id,
            for_update=True,
        )

        is_new = await record_applied_batch(
            conn,
            session_token=session_token,
            batch_seq=batch_seq,
            event_count=len(events),
            now=now,
        )
        if not is_new:
            logger.info(
                f"Duplicate batch {batch_seq} for session {session['session_id']} ignored"
            )
            return IngestResult(accepted=True, duplicate=True)

        flag_leading_seek(events, session.get("last_client_timestamp"))

        if not events:
            await update_session_cursor(
                conn,
                session["session_id"],
                last_position_seconds=session.get("last_position_seconds"),
                last_client_timestamp=session.get("last_client_timestamp"),
                now=now,
            )
            return IngestResult(accepted=True)

        progress = await apply_batch(
            conn,
            user_id=caller_id,
            lesson_id=lesson_id,
            session=session,
            events=events,
            now=now,
        )
        return IngestResult(accepted=True, progress=progress_summary(progress))


async def ingest(
    caller_id: int | None,
    session_token: str,
    batch_seq: int,
    lesson_id: str,
    events: list[dict[str, Any]],
    heartbeat: bool = False,
) -> IngestResult:
    """
    Validate and durably apply one event batch.

    Args:
        caller_id: Authenticated user ID (None if unauthenticated)
        session_token: Token returned by session start
        batch_seq: Client batch sequence number, unique per session
        lesson_id: Lesson the session was opened for
        events: Wire events (dicts)
        heartbeat: True for keep-alive batches, which may be empty

    Returns:
        IngestResult; duplicate=True when the batch was already applied

    Raises:
        AuthenticationRequired: No caller identity
        SessionMismatch: Token unknown, foreign or for another lesson
        ValidationError: Malformed or out-of-window events
        IngestionTimeout: The batch could not be applied in time
    """
    if caller_id is None:
        metrics.record_failure("unauthenticated")
        raise AuthenticationRequired("Authentication required")

    try:
        parsed = validate_batch(events, heartbeat=heartbeat)
    except ValidationError as e:
        metrics.record_failure("validation")
        logger.info(f"Rejected batch {batch_seq} from user {caller_id}: {e}")
        raise

    started = time.monotonic()
    try:
        result = await asyncio.wait_for(
            run_with_conflict_retry(
                lambda: _apply_once(
                    caller_id=caller_id,
                    session_token=session_token,
                    batch_seq=batch_seq,
                    lesson_id=lesson_id,
                    events=parsed,
                )
            ),
            timeout=get_ingest_timeout_seconds(),
        )
    except SessionMismatch:
        metrics.record_failure("session_mismatch")
        raise
    except asyncio.TimeoutError:
        metrics.record_failure("timeout")
        logger.warning(f"Batch {batch_seq} from user {caller_id} timed out")
        raise IngestionTimeout("Batch could not be applied in time")
    except PersistenceConflict as e:
        metrics.record_failure("conflict")
        logger.warning(f"Batch {batch_seq} from user {caller_id} kept conflicting: {e}")
        raise IngestionTimeout("Progress record is busy, retry later")
    except Exception as e:
        metrics.record_failure("error")
        logger.exception(f"Failed to apply batch {batch_seq} from user {caller_id}")
        sentry_sdk.capture_exception(e)
        raise
    finally:
        metrics.video_ingest_duration_seconds.observe(time.monotonic() - started)

    if result.duplicate:
        metrics.record_outcome("duplicate")
    elif not parsed:
        metrics.record_outcome("heartbeat")
    else:
        metrics.record_outcome("applied")
    return result
