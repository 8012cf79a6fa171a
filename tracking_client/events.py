"""Playback Event Source: provider player messages -> canonical events.

Embedded players post messages shaped {"type": "video:<name>", "data": {...}}
with currentTime, duration, playbackRate and volume in data. Anything that
does not come from an allowed origin or does not parse is dropped.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlsplit

from core.enums import PlaybackEventKind
from core.tracking.types import PlaybackEvent

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_ORIGINS = ("spotlightr.com",)
DEFAULT_MIN_TIME_UPDATE_STEP = 1.0

MESSAGE_KINDS = {
    "video:play": PlaybackEventKind.play,
    "video:pause": PlaybackEventKind.pause,
    "video:seek": PlaybackEventKind.seek,
    "video:timeupdate": PlaybackEventKind.time_update,
    "video:ratechange": PlaybackEventKind.rate_change,
    "video:volumechange": PlaybackEventKind.volume_change,
    "video:ended": PlaybackEventKind.ended,
    "video:loadedmetadata": PlaybackEventKind.loaded_metadata,
}

_PAYLOAD_FIELDS = (
    "position",
    "duration",
    "rate",
    "volume",
    "from_position",
    "to_position",
    "tab_visible",
)


def origin_allowed(origin: str, allowed: tuple[str, ...] | list[str]) -> bool:
    """
    Check a message origin against the allow-list.

    Entries are either full origins ("https://player.example.com") or bare
    domains, which also match their subdomains ("example.com").
    """
    if not origin:
        return False
    host = urlsplit(origin).hostname or ""
    for entry in allowed:
        if "://" in entry:
            if origin.rstrip("/") == entry.rstrip("/"):
                return True
        elif host == entry or host.endswith("." + entry):
            return True
    return False


def event_payload(event: PlaybackEvent) -> dict[str, Any]:
    """Non-empty kind-specific fields of an event."""
    return {
        name: getattr(event, name)
        for name in _PAYLOAD_FIELDS
        if getattr(event, name) is not None
    }


def _number(data: dict[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} is not a number")
    if not math.isfinite(value):
        raise ValueError(f"{key} is not finite")
    return float(value)


class PlayerMessageNormalizer:
    """Translates one player's messages into PlaybackEvents."""

    def __init__(
        self,
        allowed_origins: tuple[str, ...] | list[str] = DEFAULT_ALLOWED_ORIGINS,
        min_time_update_step: float = DEFAULT_MIN_TIME_UPDATE_STEP,
        clock: Callable[[], datetime] | None = None,
    ):
        self.allowed_origins = tuple(allowed_origins)
        self.min_time_update_step = min_time_update_step
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._position: float | None = None
        self._duration: float | None = None
        self._last_emitted_position: float | None = None

    def normalize(self, message: Any, origin: str) -> PlaybackEvent | None:
        """
        Convert a posted message to a canonical event.

        Returns:
            The event, or None when the message is ignored (foreign origin,
            unknown type, malformed payload, or a throttled time-update)
        """
        if not origin_allowed(origin, self.allowed_origins):
            logger.debug(f"Ignoring player message from origin {origin!r}")
            return None

        if not isinstance(message, dict):
            logger.debug("Ignoring non-object player message")
            return None

        kind = MESSAGE_KINDS.get(message.get("type"))
        if kind is None:
            logger.debug(f"Ignoring player message type {message.get('type')!r}")
            return None

        data = message.get("data") or {}
        if not isinstance(data, dict):
            logger.debug(f"Ignoring {message['type']} with malformed data")
            return None

        try:
            current_time = _number(data, "currentTime")
            duration = _number(data, "duration")
            rate = _number(data, "playbackRate")
            volume = _number(data, "volume")
        except ValueError as e:
            logger.debug(f"Ignoring {message['type']}: {e}")
            return None

        if current_time is not None and current_time < 0:
            logger.debug(f"Ignoring {message['type']} with negative position")
            return None

        if kind == PlaybackEventKind.time_update:
            return self._time_update(current_time, duration)
        if kind == PlaybackEventKind.seek:
            return self._seek(current_time)
        if kind == PlaybackEventKind.loaded_metadata:
            if duration:
                self._duration = duration
            return self._event(kind, position=current_time, duration=duration)
        if kind == PlaybackEventKind.rate_change:
            return self._event(kind, rate=rate if rate is not None else 1.0)
        if kind == PlaybackEventKind.volume_change:
            return self._event(kind, volume=volume if volume is not None else 1.0)

        # play, pause, ended
        if current_time is not None:
            self._position = current_time
        return self._event(kind, position=current_time)

    def _time_update(
        self, position: float | None, duration: float | None
    ) -> PlaybackEvent | None:
        if position is None:
            return None
        self._position = position

        duration_changed = bool(duration) and duration != self._duration
        moved_enough = (
            self._last_emitted_position is None
            or abs(position - self._last_emitted_position) >= self.min_time_update_step
        )
        if not (duration_changed or moved_enough):
            return None

        if duration:
            self._duration = duration
        self._last_emitted_position = position
        return self._event(
            PlaybackEventKind.time_update, position=position, duration=duration
        )

    def _seek(self, to_position: float | None) -> PlaybackEvent | None:
        if to_position is None:
            return None
        from_position = self._position
        self._position = to_position
        self._last_emitted_position = to_position
        return self._event(
            PlaybackEventKind.seek,
            from_position=from_position,
            to_position=to_position,
        )

    def _event(self, kind: PlaybackEventKind, **payload: Any) -> PlaybackEvent:
        return PlaybackEvent(kind=kind, client_timestamp=self._clock(), **payload)
