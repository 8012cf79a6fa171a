"""Tests for admin video reporting endpoints."""

from unittest.mock import AsyncMock, patch

from core.enums import UserRole
from core.tracking.errors import PermissionDenied

STUDENTS = [
    {
        "user_id": 7,
        "email": "ana@example.org",
        "username": "ana",
        "organization_id": 3,
        "watched_lessons": [
            {"lesson_id": "l1", "lesson_title": "Lesson One", "watched_at": None}
        ],
    }
]


class TestAdminVideoViews:
    def test_admin_gets_summaries(self, client_as, db_context):
        with (
            patch("web_api.routes.admin.get_connection") as mock_conn,
            patch("web_api.routes.admin.list_progress", new_callable=AsyncMock) as mock_list,
        ):
            db_context(mock_conn)
            mock_list.return_value = STUDENTS

            response = client_as(1, role=UserRole.admin).get(
                "/api/admin/video-views?userId=7&organizationId=3"
            )

        assert response.status_code == 200
        assert response.json() == {"students": STUDENTS}
        assert mock_list.call_args.kwargs == {"user_id": 7, "organization_id": 3}
        caller = mock_list.call_args.args[1]
        assert caller.role == UserRole.admin

    def test_org_admin_passes_caller_scope(self, client_as, db_context):
        with (
            patch("web_api.routes.admin.get_connection") as mock_conn,
            patch("web_api.routes.admin.list_progress", new_callable=AsyncMock) as mock_list,
        ):
            db_context(mock_conn)
            mock_list.return_value = []

            response = client_as(2, role=UserRole.org_admin, organization_id=3).get(
                "/api/admin/video-views"
            )

        assert response.status_code == 200
        caller = mock_list.call_args.args[1]
        assert caller.organization_id == 3

    def test_denied_maps_to_403(self, client_as, db_context):
        with (
            patch("web_api.routes.admin.get_connection") as mock_conn,
            patch("web_api.routes.admin.list_progress", new_callable=AsyncMock) as mock_list,
        ):
            db_context(mock_conn)
            mock_list.side_effect = PermissionDenied("Admin access required")

            response = client_as(5, role=UserRole.student).get("/api/admin/video-views")

        assert response.status_code == 403


PROGRESS_ROW = {
    "progress_id": 4,
    "user_id": 7,
    "lesson_id": "l1",
    "lesson_title": "Lesson One",
    "email": "ana@example.org",
    "username": "ana",
    "organization_id": 3,
    "completion_percentage": 50.0,
    "total_watched_seconds": 300.0,
    "max_position_seconds": 300.0,
    "duration_seconds": 600.0,
    "is_completed": False,
    "completed_at": None,
    "grade_contribution": 50.0,
    "suspicious_activity_count": 1,
    "last_updated_at": None,
}


class TestAdminVideoProgress:
    def test_lists_records_with_pagination(self, client_as, db_context):
        with (
            patch("web_api.routes.admin.get_connection") as mock_conn,
            patch(
                "web_api.routes.admin.list_progress_records", new_callable=AsyncMock
            ) as mock_list,
        ):
            db_context(mock_conn)
            mock_list.return_value = {
                "progress": [PROGRESS_ROW],
                "pagination": {"total": 3, "limit": 1, "offset": 1, "has_more": True},
            }

            response = client_as(1, role=UserRole.admin).get(
                "/api/admin/video-progress?lessonId=l1&limit=1&offset=1"
            )

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["has_more"] is True
        record = body["progress"][0]
        assert record["user_id"] == 7
        assert record["lesson_title"] == "Lesson One"
        assert record["completion_percentage"] == 50.0
        kwargs = mock_list.call_args.kwargs
        assert kwargs["lesson_id"] == "l1"
        assert kwargs["user_id"] is None
        assert (kwargs["page"].limit, kwargs["page"].offset) == (1, 1)

    def test_filters_by_user(self, client_as, db_context):
        with (
            patch("web_api.routes.admin.get_connection") as mock_conn,
            patch(
                "web_api.routes.admin.list_progress_records", new_callable=AsyncMock
            ) as mock_list,
        ):
            db_context(mock_conn)
            mock_list.return_value = {
                "progress": [],
                "pagination": {"total": 0, "limit": 100, "offset": 0, "has_more": False},
            }

            response = client_as(2, role=UserRole.org_admin, organization_id=3).get(
                "/api/admin/video-progress?userId=7"
            )

        assert response.status_code == 200
        assert mock_list.call_args.kwargs["user_id"] == 7
        assert mock_list.call_args.args[1].organization_id == 3

    def test_rejects_oversized_page(self, client_as):
        response = client_as(1, role=UserRole.admin).get(
            "/api/admin/video-progress?limit=5000"
        )
        assert response.status_code == 422

    def test_out_of_scope_is_403(self, client_as, db_context):
        with (
            patch("web_api.routes.admin.get_connection") as mock_conn,
            patch(
                "web_api.routes.admin.list_progress_records", new_callable=AsyncMock
            ) as mock_list,
        ):
            db_context(mock_conn)
            mock_list.side_effect = PermissionDenied("User is outside your organization")

            response = client_as(2, role=UserRole.org_admin, organization_id=3).get(
                "/api/admin/video-progress?userId=99"
            )

        assert response.status_code == 403


class TestAdminSuspiciousActivity:
    def test_lists_activities(self, client_as, db_context):
        with (
            patch("web_api.routes.admin.get_connection") as mock_conn,
            patch(
                "web_api.routes.admin.list_suspicious_activity", new_callable=AsyncMock
            ) as mock_list,
        ):
            db_context(mock_conn)
            mock_list.return_value = {
                "activities": [
                    {"activity_id": 1, "user_id": 7, "flag": "rapid_seeking"}
                ],
                "pagination": {"total": 1, "limit": 100, "offset": 0, "has_more": False},
            }

            response = client_as(1, role=UserRole.admin).get(
                "/api/admin/video-suspicious-activity?userId=7"
            )

        assert response.status_code == 200
        assert response.json()["activities"][0]["flag"] == "rapid_seeking"
        assert mock_list.call_args.kwargs["user_id"] == 7

    def test_student_denied(self, client_as, db_context):
        with (
            patch("web_api.routes.admin.get_connection") as mock_conn,
            patch(
                "web_api.routes.admin.list_suspicious_activity", new_callable=AsyncMock
            ) as mock_list,
        ):
            db_context(mock_conn)
            mock_list.side_effect = PermissionDenied("Admin access required")

            response = client_as(5, role=UserRole.student).get(
                "/api/admin/video-suspicious-activity"
            )

        assert response.status_code == 403
