"""Tracking Session Manager: batches and heartbeats playback events.

Lifecycle: idle -> starting -> active -> ending -> closed, with
starting -> idle when the server refuses to open the session.

Events are recorded synchronously into an open buffer. A flush seals the
buffer into a PendingBatch with the next batch_seq and sends batches oldest
first. A batch that fails to send goes back to the head of the queue
unchanged, so its retry carries the same batch_seq and the server can drop
it if it was in fact applied. Retries happen on the next timer tick.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

import httpx

from core.enums import AnomalyFlag, PlaybackEventKind
from core.tracking.anomalies import is_rate_out_of_bounds, seek_exceeds_wallclock
from core.tracking.errors import AuthenticationRequired
from core.tracking.ingestion import MAX_EVENTS_PER_BATCH
from core.tracking.types import PlaybackEvent
from tracking_client.events import (
    DEFAULT_ALLOWED_ORIGINS,
    PlayerMessageNormalizer,
    event_payload,
)
from tracking_client.transport import TrackingTransport

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_INTERVAL_SECONDS = 5.0
DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 10.0


class SessionStartRejected(Exception):
    """Raised when the server did not open a session (safe to retry)."""

    retryable = True


class SessionState(str, Enum):
    idle = "idle"
    starting = "starting"
    active = "active"
    ending = "ending"
    closed = "closed"


@dataclass
class PendingBatch:
    """Sealed, immutable unit of delivery."""

    batch_seq: int
    events: list[PlaybackEvent] = field(default_factory=list)
    heartbeat: bool = False

    def to_payload(self, session_token: str, lesson_id: str) -> dict[str, Any]:
        return {
            "session_token": session_token,
            "lesson_id": lesson_id,
            "batch_seq": self.batch_seq,
            "heartbeat": self.heartbeat,
            "events": [event.to_dict() for event in self.events],
        }


@dataclass
class ProgressView:
    """Progress for display. available=False means the read failed."""

    available: bool
    completion_percentage: float | None = None
    total_watched_seconds: float | None = None
    is_completed: bool = False

    @classmethod
    def from_summary(cls, summary: dict[str, Any]) -> "ProgressView":
        return cls(
            available=True,
            completion_percentage=summary.get("completion_percentage"),
            total_watched_seconds=summary.get("total_watched_seconds"),
            is_completed=bool(summary.get("is_completed")),
        )


class TrackingSession:
    """One viewing session of one lesson in one player instance."""

    def __init__(
        self,
        lesson_id: str,
        transport: TrackingTransport,
        *,
        client_instance_id: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_interval: float = DEFAULT_BATCH_INTERVAL_SECONDS,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.lesson_id = lesson_id
        self.client_instance_id = client_instance_id
        self.batch_size = batch_size
        self.batch_interval = batch_interval
        self.heartbeat_interval = heartbeat_interval
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._monotonic = monotonic

        self.state = SessionState.idle
        self.session_token: str | None = None
        self.current_time = 0.0
        self.duration = 0.0
        self.is_playing = False
        self.playback_rate = 1.0
        self.volume = 1.0
        self.tab_visible = True
        self.last_progress: ProgressView | None = None

        self._open_events: list[PlaybackEvent] = []
        self._outbound: deque[PendingBatch] = deque()
        self._next_batch_seq = 0
        self._next_sequence = 0
        self._last_event_at: float | None = None
        self._flushing = False
        self._flush_task: asyncio.Task | None = None
        self._timers: list[asyncio.Task] = []

    @property
    def queued_count(self) -> int:
        """Events recorded but not yet acknowledged by the server."""
        return len(self._open_events) + sum(len(b.events) for b in self._outbound)

    @property
    def pending_batches(self) -> list[PendingBatch]:
        return list(self._outbound)

    async def start(self) -> str:
        """
        Open the session on the server and start the timers.

        Returns:
            The session token

        Raises:
            AuthenticationRequired: The server answered 401
            SessionStartRejected: Any other failure; the session stays idle
        """
        if self.state == SessionState.active:
            return self.session_token
        if self.state != SessionState.idle:
            raise SessionStartRejected(f"Cannot start a session that is {self.state.value}")

        self.state = SessionState.starting
        try:
            data = await self._transport.start_session(
                self.lesson_id, self.client_instance_id
            )
            token = data["session_token"]
        except httpx.HTTPStatusError as e:
            self.state = SessionState.idle
            if e.response.status_code == 401:
                raise AuthenticationRequired("Sign in to track progress") from e
            raise SessionStartRejected(
                f"Session start failed with HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, KeyError, ValueError) as e:
            self.state = SessionState.idle
            raise SessionStartRejected(f"Session start failed: {e}") from e

        if self.state != SessionState.starting:
            # end() ran while the request was in flight
            try:
                await self._transport.end_session(token)
            except httpx.HTTPError as e:
                logger.warning(f"Could not end session for lesson {self.lesson_id}: {e}")
            raise SessionStartRejected("Session was ended while starting")

        self.session_token = token
        lesson = data.get("lesson") or {}
        if lesson.get("duration_seconds"):
            self.duration = float(lesson["duration_seconds"])
        self.state = SessionState.active
        self._timers = [
            asyncio.create_task(self._run_batch_timer()),
            asyncio.create_task(self._run_heartbeat_timer()),
        ]
        logger.info(f"Tracking session started for lesson {self.lesson_id}")
        return token

    def set_tab_visible(self, visible: bool) -> None:
        self.tab_visible = visible

    def record_event(
        self,
        kind: PlaybackEventKind | str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        """
        Record a playback event. Never raises and never blocks.

        Ignored unless the session is active. Updates the local player state,
        attaches anomaly flags and triggers a flush once batch_size events are
        waiting.
        """
        if self.state != SessionState.active:
            return

        try:
            event = self._build_event(PlaybackEventKind(kind), payload or {})
        except (TypeError, ValueError) as e:
            logger.debug(f"Dropping malformed {kind!r} event: {e}")
            return

        self._open_events.append(event)
        # Backlog of failed batches is retried by the batch timer, not here
        if len(self._open_events) >= self.batch_size:
            self._schedule_flush()

    def _build_event(
        self, kind: PlaybackEventKind, payload: dict[str, Any]
    ) -> PlaybackEvent:
        now = self._monotonic()
        elapsed = None if self._last_event_at is None else now - self._last_event_at
        self._last_event_at = now

        position = _optional_float(payload.get("position"))
        duration = _optional_float(payload.get("duration"))
        event = PlaybackEvent(
            kind=kind,
            client_timestamp=self._clock(),
            sequence=self._next_sequence,
            tab_visible=self.tab_visible,
        )
        self._next_sequence += 1

        if duration and duration > 0:
            self.duration = duration
            event.duration = duration

        if kind == PlaybackEventKind.time_update:
            if position is None:
                position = self.current_time
            self.current_time = position
            event.position = position
            if not self.tab_visible and self.is_playing:
                event.flags.append(AnomalyFlag.hidden_tab_playback)
        elif kind == PlaybackEventKind.seek:
            from_position = _optional_float(payload.get("from_position"))
            if from_position is None:
                from_position = self.current_time
            to_position = _optional_float(payload.get("to_position"))
            if to_position is None:
                to_position = position if position is not None else self.current_time
            event.from_position = from_position
            event.to_position = to_position
            self.current_time = to_position
            if elapsed is not None and seek_exceeds_wallclock(
                from_position, to_position, elapsed
            ):
                event.flags.append(AnomalyFlag.seek_exceeds_wallclock)
        elif kind == PlaybackEventKind.rate_change:
            rate = _optional_float(payload.get("rate"))
            self.playback_rate = rate if rate is not None else 1.0
            event.rate = self.playback_rate
            if is_rate_out_of_bounds(self.playback_rate):
                event.flags.append(AnomalyFlag.playback_rate_out_of_bounds)
        elif kind == PlaybackEventKind.volume_change:
            volume = _optional_float(payload.get("volume"))
            self.volume = volume if volume is not None else 1.0
            event.volume = self.volume
        else:
            if kind == PlaybackEventKind.play:
                self.is_playing = True
            elif kind in (PlaybackEventKind.pause, PlaybackEventKind.ended):
                self.is_playing = False
            if position is not None:
                self.current_time = position
            event.position = position if position is not None else self.current_time

        return event

    def _seal_open_events(self) -> None:
        while self._open_events:
            chunk = self._open_events[:MAX_EVENTS_PER_BATCH]
            del self._open_events[:MAX_EVENTS_PER_BATCH]
            self._outbound.append(PendingBatch(self._take_batch_seq(), chunk))

    def _take_batch_seq(self) -> int:
        seq = self._next_batch_seq
        self._next_batch_seq += 1
        return seq

    def _schedule_flush(self, heartbeat: bool = False) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to run on; the next timer tick flushes
            return
        self._flush_task = loop.create_task(self.flush(heartbeat=heartbeat))

    async def flush(self, heartbeat: bool = False) -> bool:
        """
        Send queued batches oldest first.

        With heartbeat=True and nothing queued, sends an empty heartbeat
        batch instead.

        Returns:
            True if everything queued was delivered, False otherwise
        """
        if self._flushing or self.session_token is None:
            return False
        self._flushing = True
        try:
            self._seal_open_events()

            if not self._outbound:
                if not heartbeat:
                    return True
                return await self._send(
                    PendingBatch(self._take_batch_seq(), heartbeat=True)
                )

            while self._outbound:
                batch = self._outbound.popleft()
                if not await self._send(batch):
                    self._outbound.appendleft(batch)
                    return False
            return True
        finally:
            self._flushing = False

    async def _send(self, batch: PendingBatch) -> bool:
        try:
            response = await self._transport.send_batch(
                batch.to_payload(self.session_token, self.lesson_id)
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"Batch {batch.batch_seq} for lesson {self.lesson_id} not delivered: {e}"
            )
            return False
        except ValueError as e:
            # 2xx with a body that is not JSON; delivery is unconfirmed
            logger.warning(
                f"Batch {batch.batch_seq} for lesson {self.lesson_id} got an "
                f"unreadable response: {e}"
            )
            return False

        progress = response.get("progress") if isinstance(response, dict) else None
        if progress:
            self.last_progress = ProgressView.from_summary(progress)
        return True

    async def _run_batch_timer(self) -> None:
        while True:
            await asyncio.sleep(self.batch_interval)
            if self.queued_count > 0:
                self._schedule_flush()

    async def _run_heartbeat_timer(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if self.queued_count == 0:
                self._schedule_flush(heartbeat=True)

    async def _cancel_timers(self) -> None:
        for task in self._timers:
            task.cancel()
        for task in self._timers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timers = []

    async def end(self) -> None:
        """
        Stop tracking: cancel timers, make one final flush attempt, tell the
        server the session ended, and release local state whatever happens.
        """
        if self.state in (SessionState.ending, SessionState.closed):
            return
        if self.state != SessionState.active:
            self.state = SessionState.closed
            return

        self.state = SessionState.ending
        try:
            await self._cancel_timers()
            if self._flush_task is not None and not self._flush_task.done():
                await self._flush_task
            if not await self.flush():
                logger.warning(
                    f"Final flush for lesson {self.lesson_id} failed, "
                    f"dropping {self.queued_count} event(s)"
                )
            try:
                await self._transport.end_session(self.session_token)
            except httpx.HTTPError as e:
                logger.warning(f"Could not end session for lesson {self.lesson_id}: {e}")
        finally:
            self._open_events.clear()
            self._outbound.clear()
            self.state = SessionState.closed


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError("expected a number")
    return float(value)


class TrackingClient:
    """
    One player instance (browser tab). Holds at most one session per lesson.
    """

    def __init__(
        self,
        transport: TrackingTransport,
        client_instance_id: str | None = None,
        *,
        allowed_origins: tuple[str, ...] | list[str] = DEFAULT_ALLOWED_ORIGINS,
        **session_options: Any,
    ):
        self.transport = transport
        self.client_instance_id = client_instance_id or uuid.uuid4().hex
        self.allowed_origins = tuple(allowed_origins)
        self._session_options = session_options
        self._sessions: dict[str, TrackingSession] = {}
        self._normalizers: dict[str, PlayerMessageNormalizer] = {}

    def get_session(self, lesson_id: str) -> TrackingSession | None:
        return self._sessions.get(lesson_id)

    async def open_session(self, lesson_id: str) -> TrackingSession:
        """
        Start a session for a lesson, ending this instance's previous
        session for the same lesson first.

        Raises:
            AuthenticationRequired, SessionStartRejected: From TrackingSession.start
        """
        previous = self._sessions.pop(lesson_id, None)
        if previous is not None:
            await previous.end()

        session = TrackingSession(
            lesson_id,
            self.transport,
            client_instance_id=self.client_instance_id,
            **self._session_options,
        )
        await session.start()
        self._sessions[lesson_id] = session
        self._normalizers[lesson_id] = PlayerMessageNormalizer(self.allowed_origins)
        return session

    def handle_player_message(self, lesson_id: str, message: Any, origin: str) -> None:
        """Feed a raw player message into the lesson's session, if any."""
        session = self._sessions.get(lesson_id)
        normalizer = self._normalizers.get(lesson_id)
        if session is None or normalizer is None:
            return
        event = normalizer.normalize(message, origin)
        if event is not None:
            session.record_event(event.kind, event_payload(event))

    async def end_session(self, lesson_id: str) -> None:
        session = self._sessions.pop(lesson_id, None)
        self._normalizers.pop(lesson_id, None)
        if session is not None:
            await session.end()

    async def fetch_progress(self, lesson_id: str) -> ProgressView:
        """Read progress for display; available=False if the read fails."""
        try:
            data = await self.transport.get_progress(lesson_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Progress read for lesson {lesson_id} failed: {e}")
            return ProgressView(available=False)

        records = data.get("progress") or []
        if not records:
            return ProgressView(available=True, completion_percentage=0.0)
        return ProgressView.from_summary(records[0])

    async def close(self) -> None:
        for lesson_id in list(self._sessions):
            await self.end_session(lesson_id)
        await self.transport.aclose()
