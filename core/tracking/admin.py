"""Admin Aggregation Service: role-scoped reads of views, progress and anomalies.

Every admin-facing read goes through resolve_admin_scope(), the only place
that decides which users a caller may see.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection

from core.enums import UserRole
from core.queries.activities import list_activities_page
from core.queries.lessons import get_lesson_titles
from core.queries.progress import get_progress_records, list_progress_page
from core.queries.users import get_user_by_id, list_students
from core.queries.views import list_views_for_users
from core.tracking.errors import CatalogLookupMiss, PermissionDenied, ValidationError
from core.tracking.types import Caller

logger = logging.getLogger(__name__)


@dataclass
class AdminScope:
    """Filters an admin read is allowed to run with."""

    user_id: int | None = None
    organization_id: int | None = None


def resolve_admin_scope(
    caller: Caller,
    user_id: int | None = None,
    organization_id: int | None = None,
) -> AdminScope:
    """
    Decide the scope of an admin read.

    - admin: filters applied as requested
    - org_admin: organization forced to the caller's own
    - anyone else: denied

    Raises:
        PermissionDenied: Role not allowed, or an org admin asked for another
            organization
    """
    if caller.role == UserRole.admin:
        return AdminScope(user_id=user_id, organization_id=organization_id)

    if caller.role == UserRole.org_admin:
        if caller.organization_id is None:
            raise PermissionDenied("Organization admin has no organization")
        if organization_id is not None and organization_id != caller.organization_id:
            raise PermissionDenied("Cannot read another organization")
        return AdminScope(user_id=user_id, organization_id=caller.organization_id)

    raise PermissionDenied("Admin access required")


def lesson_title(titles: dict[str, str], lesson_id: str) -> str:
    """
    Look up a lesson title.

    Raises:
        CatalogLookupMiss: If the lesson is not in the catalog
    """
    try:
        return titles[lesson_id]
    except KeyError:
        raise CatalogLookupMiss(lesson_id)


def _title_or_placeholder(titles: dict[str, str], lesson_id: str) -> str:
    try:
        return lesson_title(titles, lesson_id)
    except CatalogLookupMiss as e:
        logger.warning(str(e))
        return f"Lesson {lesson_id}"


async def _check_target_in_scope(
    conn: AsyncConnection, scope: AdminScope
) -> None:
    if scope.user_id is None or scope.organization_id is None:
        return
    target = await get_user_by_id(conn, scope.user_id)
    if target is None or target.get("organization_id") != scope.organization_id:
        raise PermissionDenied("User is outside your organization")


async def list_progress(
    conn: AsyncConnection,
    caller: Caller,
    *,
    user_id: int | None = None,
    organization_id: int | None = None,
) -> list[dict[str, Any]]:
    """
    Summaries of watched lessons for the students in the caller's scope.

    Returns:
        One dict per student:
        {"user_id", "email", "username", "organization_id",
         "watched_lessons": [{"lesson_id", "lesson_title", "watched_at"}]}
        with watched lessons newest first
    """
    scope = resolve_admin_scope(caller, user_id, organization_id)

    students = await list_students(
        conn, user_id=scope.user_id, organization_id=scope.organization_id
    )
    if not students:
        return []

    views = await list_views_for_users(conn, [s["user_id"] for s in students])
    titles = await get_lesson_titles(conn, [v["lesson_id"] for v in views])

    watched_by_user: dict[int, list[dict[str, Any]]] = {}
    for view in views:
        watched_by_user.setdefault(view["user_id"], []).append(
            {
                "lesson_id": view["lesson_id"],
                "lesson_title": _title_or_placeholder(titles, view["lesson_id"]),
                "watched_at": view["created_at"],
            }
        )

    return [
        {
            "user_id": student["user_id"],
            "email": student.get("email"),
            "username": student.get("username"),
            "organization_id": student.get("organization_id"),
            "watched_lessons": watched_by_user.get(student["user_id"], []),
        }
        for student in students
    ]


async def read_progress(
    conn: AsyncConnection,
    caller: Caller,
    user_id: int | None = None,
    lesson_id: str | None = None,
) -> list[dict[str, Any]]:
    """
    Read progress records for the caller or, for admins, another user.

    Raises:
        PermissionDenied: If the target user is outside the caller's scope
    """
    if user_id is None or user_id == caller.user_id:
        return await get_progress_records(conn, caller.user_id, lesson_id)

    scope = resolve_admin_scope(caller, user_id=user_id)
    await _check_target_in_scope(conn, scope)

    return await get_progress_records(conn, user_id, lesson_id)


MAX_PAGE_SIZE = 500


@dataclass
class Page:
    """Pagination window for admin listings."""

    limit: int = 100
    offset: int = 0

    def validate(self) -> None:
        if self.limit < 1 or self.limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if self.offset < 0:
            raise ValidationError("offset must not be negative")

    def describe(self, total: int) -> dict[str, Any]:
        return {
            "total": total,
            "limit": self.limit,
            "offset": self.offset,
            "has_more": total > self.offset + self.limit,
        }


async def list_progress_records(
    conn: AsyncConnection,
    caller: Caller,
    *,
    user_id: int | None = None,
    organization_id: int | None = None,
    lesson_id: str | None = None,
    page: Page | None = None,
) -> dict[str, Any]:
    """
    Page through progress records of every user in the caller's scope.

    Returns:
        {"progress": [record + lesson_title, email, username, organization_id],
         "pagination": {"total", "limit", "offset", "has_more"}}

    Raises:
        PermissionDenied: Caller not an admin, or the filters leave the scope
        ValidationError: Bad pagination window
    """
    page = page or Page()
    page.validate()
    scope = resolve_admin_scope(caller, user_id, organization_id)
    await _check_target_in_scope(conn, scope)

    rows, total = await list_progress_page(
        conn,
        user_id=scope.user_id,
        organization_id=scope.organization_id,
        lesson_id=lesson_id,
        limit=page.limit,
        offset=page.offset,
    )
    titles = await get_lesson_titles(conn, [row["lesson_id"] for row in rows])

    return {
        "progress": [
            {**row, "lesson_title": _title_or_placeholder(titles, row["lesson_id"])}
            for row in rows
        ],
        "pagination": page.describe(total),
    }


async def list_suspicious_activity(
    conn: AsyncConnection,
    caller: Caller,
    *,
    user_id: int | None = None,
    organization_id: int | None = None,
    lesson_id: str | None = None,
    page: Page | None = None,
) -> dict[str, Any]:
    """
    Page through recorded anomaly flags in the caller's scope, newest first.

    Raises:
        PermissionDenied: Caller not an admin, or the filters leave the scope
        ValidationError: Bad pagination window
    """
    page = page or Page()
    page.validate()
    scope = resolve_admin_scope(caller, user_id, organization_id)
    await _check_target_in_scope(conn, scope)

    rows, total = await list_activities_page(
        conn,
        user_id=scope.user_id,
        organization_id=scope.organization_id,
        lesson_id=lesson_id,
        limit=page.limit,
        offset=page.offset,
    )
    return {"activities": rows, "pagination": page.describe(total)}
