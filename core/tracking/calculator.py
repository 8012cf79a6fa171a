"""Pure progress fold: playback events -> ProgressState.

No I/O here. The aggregator loads the locked row, calls fold_batch() and
writes the result, so a failure anywhere in the fold leaves the stored
record untouched.

Rules:
- Completion comes from the furthest time-update position ever observed,
  divided by the latest non-zero duration. Seeking back never lowers it.
- Watched time is the length of the union of forward intervals between
  consecutive time-updates of one session. A seek or a play event moves the
  session cursor without contributing time; moving backward contributes
  nothing. The union means concurrent sessions over the same span are not
  double counted.
- is_completed, completion, grade and the suspicious-activity count only
  ever go up.
"""

from dataclasses import replace
from datetime import datetime

from core.config import get_completion_threshold
from core.enums import PlaybackEventKind
from core.tracking.types import (
    FoldResult,
    PlaybackEvent,
    ProgressState,
    Segment,
    SessionCursor,
)


def merge_segments(segments: list[Segment]) -> list[Segment]:
    """Merge overlapping or touching intervals into a sorted disjoint list."""
    ordered = sorted((start, end) for start, end in segments if end > start)
    merged: list[Segment] = []
    for start, end in ordered:
        if merged and start <= merged[-1][1]:
            last_start, last_end = merged[-1]
            merged[-1] = (last_start, max(last_end, end))
        else:
            merged.append((start, end))
    return merged


def segments_total(segments: list[Segment]) -> float:
    """Total covered seconds of a disjoint interval list."""
    return sum(end - start for start, end in segments)


def completion_for(max_position: float, duration: float | None) -> float:
    """Completion percentage for a position, clamped to [0, 100]."""
    if not duration or duration <= 0:
        return 0.0
    return round(min(100.0, max(0.0, max_position / duration * 100)), 2)


def grade_for(completion_percentage: float) -> float:
    """Grade contribution: direct proportion of completion, capped at 100."""
    return round(min(100.0, max(0.0, completion_percentage)), 2)


def _latest(a: datetime | None, b: datetime) -> datetime:
    return b if a is None or b > a else a


def fold_batch(
    state: ProgressState,
    cursor: SessionCursor,
    events: list[PlaybackEvent],
    *,
    catalog_duration: float | None = None,
    threshold: float | None = None,
) -> FoldResult:
    """
    Fold one ordered batch of events into a progress state.

    Args:
        state: Stored progress for the (user, lesson) pair (not mutated)
        cursor: Stored cursor for the session that produced the batch
        events: Events ordered by client sequence
        catalog_duration: Lesson duration from the catalog, used when the
            player has never reported one
        threshold: Completion threshold in percent (config default if None)

    Returns:
        FoldResult with the new state, the advanced cursor and whether this
        batch moved the record into the completed state
    """
    if threshold is None:
        threshold = get_completion_threshold()

    position = cursor.last_position
    last_seen = cursor.last_client_timestamp
    duration = state.duration_seconds
    max_position = state.max_position_seconds
    new_intervals: list[Segment] = []
    flags_counted = 0

    for event in events:
        kind = event.kind

        if (
            kind in (PlaybackEventKind.time_update, PlaybackEventKind.loaded_metadata)
            and event.duration
            and event.duration > 0
        ):
            duration = event.duration

        if kind == PlaybackEventKind.time_update and event.position is not None:
            if position is not None and event.position > position:
                new_intervals.append((position, event.position))
            position = event.position
            max_position = max(max_position, event.position)
        elif kind == PlaybackEventKind.seek and event.to_position is not None:
            position = event.to_position
        elif kind == PlaybackEventKind.play and event.position is not None:
            position = event.position

        flags_counted += len(event.flags)
        last_seen = _latest(last_seen, event.client_timestamp)

    if duration is None:
        duration = catalog_duration

    segments = merge_segments(list(state.watched_segments) + new_intervals)
    completion = max(
        state.completion_percentage, completion_for(max_position, duration)
    )
    is_completed = state.is_completed or completion >= threshold

    new_state = replace(
        state,
        total_watched_seconds=max(
            state.total_watched_seconds, round(segments_total(segments), 3)
        ),
        completion_percentage=completion,
        max_position_seconds=max_position,
        duration_seconds=duration,
        watched_segments=segments,
        is_completed=is_completed,
        grade_contribution=max(state.grade_contribution, grade_for(completion)),
        suspicious_activity_count=state.suspicious_activity_count + flags_counted,
    )

    return FoldResult(
        state=new_state,
        cursor=SessionCursor(last_position=position, last_client_timestamp=last_seen),
        became_completed=is_completed and not state.is_completed,
        flags_counted=flags_counted,
    )
