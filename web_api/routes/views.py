"""Watched-marker API routes for the signed-in learner.

Endpoints:
- GET /api/course/video-views - List own watched markers
- POST /api/course/video-views - Register a view of a lesson
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from core.database import get_connection, get_transaction
from core.queries.lessons import get_lesson
from core.tracking import list_views, register_view
from web_api.auth import get_current_user

router = APIRouter(prefix="/api/course", tags=["video-views"])


class RegisterViewRequest(BaseModel):
    lesson_id: str = Field(alias="lessonId")


def _view_response(view: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": view["view_id"],
        "lessonId": view["lesson_id"],
        "createdAt": view["created_at"],
    }


@router.get("/video-views")
async def get_own_views(
    lesson_id: str | None = Query(None, alias="lessonId"),
    user: dict = Depends(get_current_user),
) -> dict[str, Any]:
    """List the caller's watched markers, newest first."""
    async with get_connection() as conn:
        views = await list_views(conn, int(user["sub"]), lesson_id)
    return {"views": [_view_response(v) for v in views]}


@router.post("/video-views", status_code=201)
async def create_own_view(
    body: RegisterViewRequest,
    user: dict = Depends(get_current_user),
) -> dict[str, Any]:
    """Register a view; returns the existing marker if already watched."""
    async with get_transaction() as conn:
        lesson = await get_lesson(conn, body.lesson_id)
        if not lesson:
            raise HTTPException(404, "Lesson not found")
        view = await register_view(conn, int(user["sub"]), body.lesson_id)
    return {"view": _view_response(view)}
