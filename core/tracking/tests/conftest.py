"""Fixtures for video tracking core tests."""

from datetime import datetime, timedelta, timezone

import pytest

from core.enums import PlaybackEventKind
from core.tracking.types import PlaybackEvent

T0 = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_event():
    """
    Build a PlaybackEvent at T0 + offset seconds.

    Sequence numbers increase with every call so events sort in creation order.
    """
    counter = {"seq": 0}

    def _make(kind: PlaybackEventKind, offset: float = 0.0, **payload) -> PlaybackEvent:
        counter["seq"] += 1
        return PlaybackEvent(
            kind=kind,
            client_timestamp=T0 + timedelta(seconds=offset),
            sequence=payload.pop("sequence", counter["seq"]),
            **payload,
        )

    return _make
