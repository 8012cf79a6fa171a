"""
Admin video reporting API routes.

Scope is decided by core.tracking.resolve_admin_scope: admins see everyone,
organization admins see their own organization, other roles are refused.

Endpoints:
- GET /api/admin/video-views - Watched lessons per student
- GET /api/admin/video-progress - Paginated progress records across users
- GET /api/admin/video-suspicious-activity - Paginated anomaly records
"""

from typing import Any

from fastapi import APIRouter, Depends, Query

from core.database import get_connection
from core.tracking import (
    Page,
    TrackingError,
    list_progress,
    list_progress_records,
    list_suspicious_activity,
)
from core.tracking.admin import MAX_PAGE_SIZE
from core.tracking.ingestion import progress_summary
from core.tracking.types import Caller
from web_api.auth import get_caller
from web_api.routes.video import to_http_exception

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/video-views")
async def get_video_views(
    user_id: int | None = Query(None, alias="userId"),
    organization_id: int | None = Query(None, alias="organizationId"),
    caller: Caller = Depends(get_caller),
) -> dict[str, Any]:
    """Per-student summaries of watched lessons within the caller's scope."""
    try:
        async with get_connection() as conn:
            students = await list_progress(
                conn, caller, user_id=user_id, organization_id=organization_id
            )
    except TrackingError as e:
        raise to_http_exception(e)

    return {"students": students}


@router.get("/video-progress")
async def get_all_video_progress(
    user_id: int | None = Query(None, alias="userId"),
    organization_id: int | None = Query(None, alias="organizationId"),
    lesson_id: str | None = Query(None, alias="lessonId"),
    limit: int = Query(100, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(get_caller),
) -> dict[str, Any]:
    """Progress records of every user in the caller's scope, newest first."""
    try:
        async with get_connection() as conn:
            result = await list_progress_records(
                conn,
                caller,
                user_id=user_id,
                organization_id=organization_id,
                lesson_id=lesson_id,
                page=Page(limit=limit, offset=offset),
            )
    except TrackingError as e:
        raise to_http_exception(e)

    return {
        "progress": [
            {
                **progress_summary(record),
                "user_id": record["user_id"],
                "email": record.get("email"),
                "username": record.get("username"),
                "organization_id": record.get("organization_id"),
                "lesson_title": record["lesson_title"],
            }
            for record in result["progress"]
        ],
        "pagination": result["pagination"],
    }


@router.get("/video-suspicious-activity")
async def get_suspicious_activity(
    user_id: int | None = Query(None, alias="userId"),
    organization_id: int | None = Query(None, alias="organizationId"),
    lesson_id: str | None = Query(None, alias="lessonId"),
    limit: int = Query(100, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(get_caller),
) -> dict[str, Any]:
    """Recorded anomaly flags within the caller's scope, newest first."""
    try:
        async with get_connection() as conn:
            return await list_suspicious_activity(
                conn,
                caller,
                user_id=user_id,
                organization_id=organization_id,
                lesson_id=lesson_id,
                page=Page(limit=limit, offset=offset),
            )
    except TrackingError as e:
        raise to_http_exception(e)
