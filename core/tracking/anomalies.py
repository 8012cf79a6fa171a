"""Heuristic anomaly detection for playback telemetry.

The player client uses the per-event checks to attach flags as it records
events. The server re-runs the objective checks on ingestion, adds the flags
a client failed to send, and detects rapid seeking across a batch. Flags are
only counted (suspicious_activity_count); nothing here blocks playback.
"""

from datetime import datetime

from core.enums import AnomalyFlag, PlaybackEventKind
from core.tracking.types import PlaybackEvent

# Playback rates outside this range are reported
MIN_PLAYBACK_RATE = 0.25
MAX_PLAYBACK_RATE = 2.0

# A forward seek is suspicious when it skips more than this many seconds...
MIN_SUSPICIOUS_SEEK_SECONDS = 30.0
# ...and covers more than FACTOR x the wall-clock time since the previous event
SEEK_WALLCLOCK_FACTOR = 5.0

# Three or more seeks within ten seconds
RAPID_SEEK_COUNT = 3
RAPID_SEEK_WINDOW_SECONDS = 10.0


def is_rate_out_of_bounds(rate: float | None) -> bool:
    """Check a playback rate against the sane range."""
    if rate is None:
        return False
    return rate < MIN_PLAYBACK_RATE or rate > MAX_PLAYBACK_RATE


def seek_exceeds_wallclock(
    from_position: float | None,
    to_position: float | None,
    elapsed_seconds: float,
) -> bool:
    """
    Check whether a forward seek skipped far more video than real time elapsed.

    Args:
        from_position: Playback position before the seek (seconds)
        to_position: Playback position after the seek (seconds)
        elapsed_seconds: Wall-clock time since the previous event

    Returns:
        True if the skipped span is large and exceeds the wall-clock budget
    """
    if from_position is None or to_position is None:
        return False
    delta = to_position - from_position
    if delta <= MIN_SUSPICIOUS_SEEK_SECONDS:
        return False
    return delta > SEEK_WALLCLOCK_FACTOR * max(elapsed_seconds, 0.0)


def parse_flags(raw_flags: list[str] | None) -> list[AnomalyFlag]:
    """
    Convert wire flag names to AnomalyFlag, dropping duplicates.

    Raises:
        ValueError: If a flag name is unknown
    """
    flags: list[AnomalyFlag] = []
    for name in raw_flags or []:
        flag = AnomalyFlag(name)
        if flag not in flags:
            flags.append(flag)
    return flags


def _add_flag(event: PlaybackEvent, flag: AnomalyFlag) -> None:
    if flag not in event.flags:
        event.flags.append(flag)


def _seconds_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds()


def add_server_flags(events: list[PlaybackEvent]) -> int:
    """
    Add server-observed flags to an ordered batch, in place.

    Each flag is attached at most once per event, so a client flag and the
    matching server check never double count.

    Returns:
        Number of flags added by the server
    """
    before = sum(len(event.flags) for event in events)

    previous: PlaybackEvent | None = None
    for event in events:
        if event.kind == PlaybackEventKind.rate_change and is_rate_out_of_bounds(
            event.rate
        ):
            _add_flag(event, AnomalyFlag.playback_rate_out_of_bounds)

        if event.kind == PlaybackEventKind.time_update and event.tab_visible is False:
            _add_flag(event, AnomalyFlag.hidden_tab_playback)

        if event.kind == PlaybackEventKind.seek and previous is not None:
            elapsed = _seconds_between(
                previous.client_timestamp, event.client_timestamp
            )
            if seek_exceeds_wallclock(
                event.from_position, event.to_position, elapsed
            ):
                _add_flag(event, AnomalyFlag.seek_exceeds_wallclock)

        previous = event

    for event in detect_rapid_seeking(events):
        _add_flag(event, AnomalyFlag.rapid_seeking)

    return sum(len(event.flags) for event in events) - before


def flag_leading_seek(
    events: list[PlaybackEvent],
    last_client_timestamp: datetime | None,
) -> int:
    """
    Run the wall-clock seek check on a seek that opens a batch.

    add_server_flags() only sees earlier events of the same batch; the
    session's last client timestamp stands in for the previous event here.

    Returns:
        1 if a flag was added, else 0
    """
    if not events or last_client_timestamp is None:
        return 0
    first = events[0]
    if first.kind != PlaybackEventKind.seek:
        return 0
    if AnomalyFlag.seek_exceeds_wallclock in first.flags:
        return 0

    elapsed = _seconds_between(last_client_timestamp, first.client_timestamp)
    if not seek_exceeds_wallclock(first.from_position, first.to_position, elapsed):
        return 0
    first.flags.append(AnomalyFlag.seek_exceeds_wallclock)
    return 1


def detect_rapid_seeking(events: list[PlaybackEvent]) -> list[PlaybackEvent]:
    """
    Find seeks that close a window of RAPID_SEEK_COUNT seeks in a short span.

    Returns:
        The seek events that complete a rapid-seek window (each at most once)
    """
    seeks = [e for e in events if e.kind == PlaybackEventKind.seek]
    flagged: list[PlaybackEvent] = []
    for i in range(len(seeks) - RAPID_SEEK_COUNT + 1):
        first = seeks[i]
        last = seeks[i + RAPID_SEEK_COUNT - 1]
        span = _seconds_between(first.client_timestamp, last.client_timestamp)
        # Identity check: two seeks with equal payloads are still two events
        if span < RAPID_SEEK_WINDOW_SECONDS and not any(last is f for f in flagged):
            flagged.append(last)
    return flagged
