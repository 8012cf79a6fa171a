"""Tests for player message normalization."""

from datetime import datetime, timezone

import pytest

from core.enums import PlaybackEventKind
from tracking_client.events import PlayerMessageNormalizer, event_payload, origin_allowed

ORIGIN = "https://app.spotlightr.com"
FIXED = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def normalizer():
    return PlayerMessageNormalizer(min_time_update_step=1.0, clock=lambda: FIXED)


def _msg(name, **data):
    return {"type": f"video:{name}", "data": data}


class TestOriginAllowed:
    @pytest.mark.parametrize(
        "origin",
        ["https://app.spotlightr.com", "https://spotlightr.com", "http://x.spotlightr.com:8080"],
    )
    def test_allowed(self, origin):
        assert origin_allowed(origin, ["spotlightr.com"]) is True

    @pytest.mark.parametrize(
        "origin", ["https://evil.com", "https://spotlightr.com.evil.com", "", "null"]
    )
    def test_rejected(self, origin):
        assert origin_allowed(origin, ["spotlightr.com"]) is False

    def test_exact_origin_entry(self):
        allowed = ["https://player.example.org"]
        assert origin_allowed("https://player.example.org", allowed) is True
        assert origin_allowed("https://other.example.org", allowed) is False


class TestNormalize:
    def test_foreign_origin_ignored(self, normalizer):
        assert normalizer.normalize(_msg("play", currentTime=0), "https://evil.com") is None

    @pytest.mark.parametrize(
        "message",
        [
            "video:play",
            {"type": "video:teleport", "data": {}},
            {"type": "video:play", "data": "oops"},
            _msg("timeupdate", currentTime="ten"),
            _msg("timeupdate", currentTime=-4),
        ],
    )
    def test_malformed_ignored(self, normalizer, message):
        assert normalizer.normalize(message, ORIGIN) is None

    def test_time_update(self, normalizer):
        event = normalizer.normalize(_msg("timeupdate", currentTime=12.5, duration=600), ORIGIN)

        assert event.kind == PlaybackEventKind.time_update
        assert event.position == 12.5
        assert event.duration == 600
        assert event.client_timestamp == FIXED

    def test_time_updates_are_throttled(self, normalizer):
        emitted = [
            normalizer.normalize(_msg("timeupdate", currentTime=t, duration=600), ORIGIN)
            for t in (0.0, 0.25, 0.5, 0.75, 1.0, 1.25)
        ]

        assert [e.position for e in emitted if e] == [0.0, 1.0]

    def test_duration_change_bypasses_throttle(self, normalizer):
        normalizer.normalize(_msg("timeupdate", currentTime=5, duration=600), ORIGIN)
        event = normalizer.normalize(_msg("timeupdate", currentTime=5.1, duration=620), ORIGIN)

        assert event is not None
        assert event.duration == 620

    def test_seek_carries_from_and_to(self, normalizer):
        normalizer.normalize(_msg("timeupdate", currentTime=30, duration=600), ORIGIN)
        event = normalizer.normalize(_msg("seek", currentTime=400), ORIGIN)

        assert event.kind == PlaybackEventKind.seek
        assert event.from_position == 30
        assert event.to_position == 400

    def test_rate_and_volume(self, normalizer):
        rate = normalizer.normalize(_msg("ratechange", playbackRate=1.5), ORIGIN)
        volume = normalizer.normalize(_msg("volumechange", volume=0.2), ORIGIN)

        assert rate.rate == 1.5
        assert volume.volume == 0.2

    def test_loaded_metadata(self, normalizer):
        event = normalizer.normalize(_msg("loadedmetadata", duration=321), ORIGIN)
        assert event.kind == PlaybackEventKind.loaded_metadata
        assert event.duration == 321

    def test_ended_and_pause(self, normalizer):
        assert normalizer.normalize(_msg("pause", currentTime=5), ORIGIN).position == 5
        assert normalizer.normalize(_msg("ended"), ORIGIN).kind == PlaybackEventKind.ended

    def test_event_payload_skips_empty_fields(self, normalizer):
        event = normalizer.normalize(_msg("seek", currentTime=10), ORIGIN)
        assert event_payload(event) == {"to_position": 10.0}
