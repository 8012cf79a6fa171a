"""Video tracking API routes.

Endpoints:
- POST /api/video/sessions - Start a viewing session
- POST /api/video/sessions/end - End a viewing session
- POST /api/video/events/batch - Ingest a batch of playback events
- GET /api/video/progress - Read progress records (own, or in admin scope)
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from core.database import get_connection, get_transaction
from core.tracking import (
    AuthenticationRequired,
    IngestionTimeout,
    LessonNotFoundError,
    PermissionDenied,
    SessionMismatch,
    TrackingError,
    ValidationError,
    end_session,
    ingest,
    read_progress,
    start_session,
)
from core.tracking.ingestion import progress_summary
from core.tracking.types import Caller
from web_api.auth import get_caller, get_current_user

router = APIRouter(prefix="/api/video", tags=["video"])

_STATUS_BY_ERROR = [
    (AuthenticationRequired, 401),
    (SessionMismatch, 403),
    (PermissionDenied, 403),
    (ValidationError, 400),
    (LessonNotFoundError, 404),
    (IngestionTimeout, 503),
]


def to_http_exception(error: TrackingError) -> HTTPException:
    """Translate a tracking error into the matching HTTP status."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail="Internal error")


class StartSessionRequest(BaseModel):
    lesson_id: str
    client_instance_id: str | None = None


class EndSessionRequest(BaseModel):
    session_token: str


class EventBatchRequest(BaseModel):
    session_token: str
    lesson_id: str
    batch_seq: int = Field(ge=0)
    heartbeat: bool = False
    # Validated by the ingestion core so bad events map to 400
    events: list[dict[str, Any]] = []


@router.post("/sessions")
async def start_video_session(
    body: StartSessionRequest,
    user: dict = Depends(get_current_user),
) -> dict[str, Any]:
    """Open a viewing session and return its opaque token."""
    try:
        async with get_transaction() as conn:
            return await start_session(
                conn,
                user_id=int(user["sub"]),
                lesson_id=body.lesson_id,
                client_instance_id=body.client_instance_id,
            )
    except TrackingError as e:
        raise to_http_exception(e)


@router.post("/sessions/end", status_code=204)
async def end_video_session(
    body: EndSessionRequest,
    user: dict = Depends(get_current_user),
) -> Response:
    """End a viewing session. Late batches for it are still accepted."""
    try:
        async with get_transaction() as conn:
            await end_session(
                conn, session_token=body.session_token, user_id=int(user["sub"])
            )
    except TrackingError as e:
        raise to_http_exception(e)
    return Response(status_code=204)


@router.post("/events/batch", status_code=202)
async def ingest_event_batch(
    body: EventBatchRequest,
    user: dict = Depends(get_current_user),
) -> dict[str, Any]:
    """
    Apply a batch of playback events.

    Returns:
        {"accepted": true, "duplicate": bool, "progress": {...} | null}
    """
    try:
        result = await ingest(
            int(user["sub"]),
            body.session_token,
            body.batch_seq,
            body.lesson_id,
            body.events,
            heartbeat=body.heartbeat,
        )
    except TrackingError as e:
        raise to_http_exception(e)

    return {
        "accepted": result.accepted,
        "duplicate": result.duplicate,
        "progress": result.progress,
    }


@router.get("/progress")
async def get_video_progress(
    lesson_id: str | None = Query(None),
    user_id: int | None = Query(None),
    caller: Caller = Depends(get_caller),
) -> dict[str, Any]:
    """Read progress records for the caller, or for a user in admin scope."""
    try:
        async with get_connection() as conn:
            records = await read_progress(conn, caller, user_id, lesson_id)
    except TrackingError as e:
        raise to_http_exception(e)

    return {"progress": [progress_summary(record) for record in records]}
