"""Tests for batch validation and the ingestion pipeline."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from prometheus_client import REGISTRY

from core.enums import AnomalyFlag, PlaybackEventKind
from core.tracking.errors import (
    AuthenticationRequired,
    IngestionTimeout,
    PersistenceConflict,
    SessionMismatch,
    ValidationError,
)
from core.tracking.ingestion import (
    MAX_EVENTS_PER_BATCH,
    _apply_once,
    ingest,
    validate_batch,
)
from core.tracking.types import IngestResult

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


def _raw(kind="time-update", offset=0.0, **fields):
    return {
        "kind": kind,
        "client_timestamp": (NOW + timedelta(seconds=offset)).isoformat(),
        **fields,
    }


def _failures(reason: str) -> float:
    return REGISTRY.get_sample_value(
        "video_batches_failed_total", {"reason": reason}
    ) or 0.0


def _outcomes(outcome: str) -> float:
    return REGISTRY.get_sample_value("video_batches_total", {"outcome": outcome}) or 0.0


class TestValidateBatch:
    def test_parses_and_orders_by_sequence(self):
        events = validate_batch(
            [
                _raw(offset=-2, position=20, sequence=2),
                _raw(offset=-3, position=10, sequence=1),
            ],
            now=NOW,
        )

        assert [e.position for e in events] == [10.0, 20.0]
        assert events[0].kind == PlaybackEventKind.time_update
        assert events[0].client_timestamp.tzinfo is not None

    def test_rejects_oversized_batch(self):
        batch = [_raw(position=i, sequence=i) for i in range(MAX_EVENTS_PER_BATCH + 1)]
        with pytest.raises(ValidationError):
            validate_batch(batch, now=NOW)

    def test_accepts_full_batch(self):
        batch = [_raw(position=i, sequence=i) for i in range(MAX_EVENTS_PER_BATCH)]
        assert len(validate_batch(batch, now=NOW)) == MAX_EVENTS_PER_BATCH

    def test_rejects_future_timestamp(self):
        with pytest.raises(ValidationError, match="future"):
            validate_batch([_raw(offset=301, position=1)], now=NOW)

    def test_allows_small_clock_skew(self):
        assert validate_batch([_raw(offset=299, position=1)], now=NOW)

    def test_rejects_stale_timestamp(self):
        with pytest.raises(ValidationError, match="too old"):
            validate_batch([_raw(offset=-86401, position=1)], now=NOW)

    @pytest.mark.parametrize(
        "fields",
        [
            {"position": -1},
            {"position": float("nan")},
            {"position": float("inf")},
            {"position": "12"},
            {"duration": True},
        ],
    )
    def test_rejects_bad_numbers(self, fields):
        with pytest.raises(ValidationError):
            validate_batch([_raw(**fields)], now=NOW)

    def test_rejects_unknown_kind(self):
        with pytest.raises(ValidationError, match="kind"):
            validate_batch([_raw(kind="rewind")], now=NOW)

    def test_seek_requires_to_position(self):
        with pytest.raises(ValidationError, match="to_position"):
            validate_batch([_raw(kind="seek", from_position=3)], now=NOW)

    def test_rejects_unknown_flag(self):
        with pytest.raises(ValidationError, match="flag"):
            validate_batch([_raw(position=1, flags=["speedrun"])], now=NOW)

    def test_missing_timestamp(self):
        with pytest.raises(ValidationError):
            validate_batch([{"kind": "play"}], now=NOW)

    def test_naive_timestamp_is_utc(self):
        raw = {"kind": "play", "client_timestamp": "2026-03-02T11:59:00", "position": 0}
        event = validate_batch([raw], now=NOW)[0]
        assert event.client_timestamp == NOW - timedelta(minutes=1)

    def test_empty_batch_only_as_heartbeat(self):
        with pytest.raises(ValidationError):
            validate_batch([], now=NOW)
        assert validate_batch([], heartbeat=True, now=NOW) == []

    def test_adds_server_flags(self):
        events = validate_batch(
            [_raw(kind="rate-change", rate=8.0)],
            now=NOW,
        )
        assert events[0].flags == [AnomalyFlag.playback_rate_out_of_bounds]


class TestIngest:
    @pytest.mark.asyncio
    async def test_requires_identity(self):
        before = _failures("unauthenticated")

        with pytest.raises(AuthenticationRequired):
            await ingest(None, "tok", 0, "lesson-a", [_raw(position=1)])

        assert _failures("unauthenticated") == before + 1

    @pytest.mark.asyncio
    async def test_validation_failure_is_counted(self):
        before = _failures("validation")
        future = [
            {
                "kind": "time-update",
                "client_timestamp": (
                    datetime.now(timezone.utc) + timedelta(hours=1)
                ).isoformat(),
                "position": 5,
            }
        ]

        with pytest.raises(ValidationError):
            await ingest(1, "tok", 0, "lesson-a", future)

        assert _failures("validation") == before + 1

    @pytest.mark.asyncio
    async def test_applies_and_counts_outcome(self):
        before = _outcomes("applied")
        progress = {"lesson_id": "lesson-a", "completion_percentage": 10.0}

        with patch(
            "core.tracking.ingestion._apply_once", new_callable=AsyncMock
        ) as mock_apply:
            mock_apply.return_value = IngestResult(accepted=True, progress=progress)
            result = await ingest(
                1,
                "tok",
                4,
                "lesson-a",
                [_raw_now(position=5)],
            )

        assert result.accepted is True
        assert result.progress == progress
        assert mock_apply.call_args.kwargs["batch_seq"] == 4
        assert _outcomes("applied") == before + 1

    @pytest.mark.asyncio
    async def test_duplicate_outcome(self):
        before = _outcomes("duplicate")

        with patch(
            "core.tracking.ingestion._apply_once", new_callable=AsyncMock
        ) as mock_apply:
            mock_apply.return_value = IngestResult(accepted=True, duplicate=True)
            result = await ingest(1, "tok", 4, "lesson-a", [_raw_now(position=5)])

        assert result.duplicate is True
        assert _outcomes("duplicate") == before + 1

    @pytest.mark.asyncio
    async def test_session_mismatch_propagates(self):
        before = _failures("session_mismatch")

        with patch(
            "core.tracking.ingestion._apply_once", new_callable=AsyncMock
        ) as mock_apply:
            mock_apply.side_effect = SessionMismatch("Session belongs to another user")
            with pytest.raises(SessionMismatch):
                await ingest(1, "tok", 0, "lesson-a", [_raw_now(position=5)])

        assert _failures("session_mismatch") == before + 1

    @pytest.mark.asyncio
    async def test_timeout_maps_to_ingestion_timeout(self):
        before = _failures("timeout")

        async def slow_apply(**kwargs):
            await asyncio.sleep(5)

        with (
            patch("core.tracking.ingestion._apply_once", side_effect=slow_apply),
            patch("core.tracking.ingestion.get_ingest_timeout_seconds", return_value=0.01),
        ):
            with pytest.raises(IngestionTimeout):
                await ingest(1, "tok", 0, "lesson-a", [_raw_now(position=5)])

        assert _failures("timeout") == before + 1

    @pytest.mark.asyncio
    async def test_exhausted_conflicts_map_to_ingestion_timeout(self):
        with patch(
            "core.tracking.ingestion.run_with_conflict_retry",
            new_callable=AsyncMock,
            side_effect=PersistenceConflict("busy"),
        ):
            with pytest.raises(IngestionTimeout):
                await ingest(1, "tok", 0, "lesson-a", [_raw_now(position=5)])

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_and_reraised(self):
        with (
            patch(
                "core.tracking.ingestion._apply_once",
                new_callable=AsyncMock,
                side_effect=RuntimeError("boom"),
            ),
            patch("core.tracking.ingestion.sentry_sdk") as mock_sentry,
        ):
            with pytest.raises(RuntimeError):
                await ingest(1, "tok", 0, "lesson-a", [_raw_now(position=5)])

        mock_sentry.capture_exception.assert_called_once()


def _raw_now(**fields):
    return {
        "kind": "time-update",
        "client_timestamp": datetime.now(timezone.utc).isoformat(),
        **fields,
    }


@pytest.fixture
def transaction():
    """Patch get_transaction and the queries _apply_once runs inside it."""
    conn = AsyncMock()
    with (
        patch("core.tracking.ingestion.get_transaction") as mock_txn,
        patch("core.tracking.ingestion.set_lock_timeout", new_callable=AsyncMock),
        patch(
            "core.tracking.ingestion.get_session_for_caller", new_callable=AsyncMock
        ) as mock_session,
        patch(
            "core.tracking.ingestion.record_applied_batch", new_callable=AsyncMock
        ) as mock_ledger,
        patch(
            "core.tracking.ingestion.update_session_cursor", new_callable=AsyncMock
        ) as mock_cursor,
        patch("core.tracking.ingestion.apply_batch", new_callable=AsyncMock) as mock_apply,
    ):
        mock_txn.return_value.__aenter__.return_value = conn
        mock_txn.return_value.__aexit__.return_value = None
        mock_session.return_value = {
            "session_id": 3,
            "user_id": 1,
            "lesson_id": "lesson-a",
            "last_position_seconds": 12.0,
            "last_client_timestamp": None,
        }
        yield {
            "session": mock_session,
            "ledger": mock_ledger,
            "cursor": mock_cursor,
            "apply": mock_apply,
        }


class TestApplyOnce:
    @pytest.mark.asyncio
    async def test_duplicate_batch_is_a_no_op(self, transaction):
        transaction["ledger"].return_value = False

        result = await _apply_once(
            caller_id=1,
            session_token="tok",
            batch_seq=2,
            lesson_id="lesson-a",
            events=validate_batch([_raw_now(position=5)]),
        )

        assert result == IngestResult(accepted=True, duplicate=True)
        transaction["apply"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_heartbeat_only_touches_session(self, transaction):
        transaction["ledger"].return_value = True

        result = await _apply_once(
            caller_id=1,
            session_token="tok",
            batch_seq=3,
            lesson_id="lesson-a",
            events=[],
        )

        assert result.accepted is True
        assert result.progress is None
        transaction["apply"].assert_not_awaited()
        assert transaction["cursor"].call_args.kwargs["last_position_seconds"] == 12.0

    @pytest.mark.asyncio
    async def test_session_checked_before_ledger(self, transaction):
        transaction["session"].side_effect = SessionMismatch("Unknown session token")

        with pytest.raises(SessionMismatch):
            await _apply_once(
                caller_id=1,
                session_token="nope",
                batch_seq=0,
                lesson_id="lesson-a",
                events=[],
            )

        transaction["ledger"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_batch_is_folded(self, transaction):
        transaction["ledger"].return_value = True
        transaction["apply"].return_value = {
            "lesson_id": "lesson-a",
            "completion_percentage": 50.0,
            "total_watched_seconds": 300.0,
            "max_position_seconds": 300.0,
            "duration_seconds": 600.0,
            "is_completed": False,
            "completed_at": None,
            "grade_contribution": 50.0,
            "suspicious_activity_count": 0,
            "last_updated_at": NOW,
        }

        result = await _apply_once(
            caller_id=1,
            session_token="tok",
            batch_seq=1,
            lesson_id="lesson-a",
            events=validate_batch([_raw_now(position=300)]),
        )

        assert result.progress["completion_percentage"] == 50.0
        assert transaction["apply"].call_args.kwargs["session"]["session_id"] == 3
        transaction["session"].assert_awaited_once()
        assert transaction["session"].call_args.kwargs["for_update"] is True

    @pytest.mark.asyncio
    async def test_leading_seek_checked_against_session_time(self, transaction):
        transaction["ledger"].return_value = True
        transaction["apply"].return_value = None
        last_seen = datetime.now(timezone.utc) - timedelta(seconds=2)
        transaction["session"].return_value = {
            "session_id": 3,
            "user_id": 1,
            "lesson_id": "lesson-a",
            "last_position_seconds": 12.0,
            "last_client_timestamp": last_seen,
        }
        events = validate_batch(
            [_raw_now(kind="seek", from_position=12, to_position=500)]
        )
        assert events[0].flags == []

        with patch("core.tracking.ingestion.progress_summary", return_value={}):
            await _apply_once(
                caller_id=1,
                session_token="tok",
                batch_seq=4,
                lesson_id="lesson-a",
                events=events,
            )

        applied = transaction["apply"].call_args.kwargs["events"]
        assert applied[0].flags == [AnomalyFlag.seek_exceeds_wallclock]
