"""Fixtures for tracking client tests: an in-process fake tracking API."""

import json

import httpx
import pytest

from tracking_client.transport import TrackingTransport


class FakeTrackingApi:
    """
    Answers the tracking endpoints through httpx.MockTransport.

    Set fail_batches to a number of batch requests that should fail with 503,
    html_batches to a number answered 200 with a non-JSON body, or
    start_status to make session start fail.
    """

    def __init__(self):
        self.requests: list[tuple[str, dict]] = []
        self.fail_batches = 0
        self.html_batches = 0
        self.start_status = 200
        self.progress_status = 200
        self.network_down = False
        self._sessions = 0

    @property
    def batches(self) -> list[dict]:
        return [body for path, body in self.requests if path == "/api/video/events/batch"]

    @property
    def ended(self) -> list[str]:
        return [
            body["session_token"]
            for path, body in self.requests
            if path == "/api/video/sessions/end"
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.network_down:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        body = json.loads(request.content) if request.content else {}
        self.requests.append((path, body))

        if path == "/api/video/sessions":
            if self.start_status != 200:
                return httpx.Response(self.start_status, json={"detail": "nope"})
            self._sessions += 1
            return httpx.Response(
                200,
                json={
                    "session_token": f"tok-{self._sessions}",
                    "lesson": {
                        "lesson_id": body["lesson_id"],
                        "title": "Lesson",
                        "duration_seconds": 600.0,
                    },
                },
            )

        if path == "/api/video/events/batch":
            if self.fail_batches:
                self.fail_batches -= 1
                return httpx.Response(503, json={"detail": "busy"})
            if self.html_batches:
                # A proxy answering 200 with an error page
                self.html_batches -= 1
                return httpx.Response(
                    200, text="<html>oops</html>", headers={"content-type": "text/html"}
                )
            return httpx.Response(
                202,
                json={
                    "accepted": True,
                    "duplicate": False,
                    "progress": {
                        "lesson_id": body["lesson_id"],
                        "completion_percentage": 42.0,
                        "total_watched_seconds": 120.0,
                        "is_completed": False,
                    },
                },
            )

        if path == "/api/video/sessions/end":
            return httpx.Response(204)

        if path == "/api/video/progress":
            if self.progress_status != 200:
                return httpx.Response(self.progress_status)
            return httpx.Response(
                200,
                json={
                    "progress": [
                        {
                            "lesson_id": request.url.params["lesson_id"],
                            "completion_percentage": 96.67,
                            "total_watched_seconds": 580.0,
                            "is_completed": True,
                        }
                    ]
                },
            )

        return httpx.Response(404)


@pytest.fixture
def api():
    return FakeTrackingApi()


@pytest.fixture
def transport(api):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(api.handler), base_url="http://tracking.test"
    )
    return TrackingTransport("http://tracking.test", client=client)
