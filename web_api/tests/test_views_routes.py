"""Tests for the learner watched-marker routes."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

VIEW = {
    "view_id": 3,
    "user_id": 7,
    "lesson_id": "lesson-a",
    "created_at": datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc),
}


class TestListOwnViews:
    def test_lists_caller_views(self, client_as, db_context):
        with (
            patch("web_api.routes.views.get_connection") as mock_conn,
            patch("web_api.routes.views.list_views", new_callable=AsyncMock) as mock_list,
        ):
            db_context(mock_conn)
            mock_list.return_value = [VIEW]

            response = client_as(7).get("/api/course/video-views?lessonId=lesson-a")

        assert response.status_code == 200
        views = response.json()["views"]
        assert [(v["id"], v["lessonId"]) for v in views] == [(3, "lesson-a")]
        assert views[0]["createdAt"].startswith("2026-03-02T12:00:00")
        assert mock_list.call_args.args[1:] == (7, "lesson-a")


class TestRegisterOwnView:
    def test_registers_view(self, client_as, db_context):
        with (
            patch("web_api.routes.views.get_transaction") as mock_txn,
            patch("web_api.routes.views.get_lesson", new_callable=AsyncMock) as mock_lesson,
            patch("web_api.routes.views.register_view", new_callable=AsyncMock) as mock_register,
        ):
            db_context(mock_txn)
            mock_lesson.return_value = {"lesson_id": "lesson-a", "title": "Intro"}
            mock_register.return_value = VIEW

            response = client_as(7).post(
                "/api/course/video-views", json={"lessonId": "lesson-a"}
            )

        assert response.status_code == 201
        assert response.json()["view"]["id"] == 3
        assert mock_register.call_args.args[1:] == (7, "lesson-a")

    def test_unknown_lesson(self, client_as, db_context):
        with (
            patch("web_api.routes.views.get_transaction") as mock_txn,
            patch("web_api.routes.views.get_lesson", new_callable=AsyncMock) as mock_lesson,
            patch("web_api.routes.views.register_view", new_callable=AsyncMock) as mock_register,
        ):
            db_context(mock_txn)
            mock_lesson.return_value = None

            response = client_as().post(
                "/api/course/video-views", json={"lessonId": "missing"}
            )

        assert response.status_code == 404
        mock_register.assert_not_awaited()
