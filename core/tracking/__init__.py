"""Video engagement tracking: ingestion, progress aggregation, views, admin reads."""

from .admin import (
    AdminScope,
    Page,
    list_progress,
    list_progress_records,
    list_suspicious_activity,
    read_progress,
    resolve_admin_scope,
)
from .aggregator import apply_batch, run_with_conflict_retry
from .calculator import fold_batch, merge_segments
from .errors import (
    AuthenticationRequired,
    CatalogLookupMiss,
    IngestionTimeout,
    LessonNotFoundError,
    PermissionDenied,
    PersistenceConflict,
    SessionMismatch,
    TrackingError,
    ValidationError,
)
from .ingestion import MAX_EVENTS_PER_BATCH, ingest, validate_batch
from .sessions import end_session, get_session_for_caller, start_session
from .types import Caller, IngestResult, PlaybackEvent, ProgressState, SessionCursor
from .views import has_watched, list_views, register_view

__all__ = [
    # Sessions
    "start_session",
    "end_session",
    "get_session_for_caller",
    # Ingestion
    "ingest",
    "validate_batch",
    "MAX_EVENTS_PER_BATCH",
    # Aggregation
    "fold_batch",
    "merge_segments",
    "apply_batch",
    "run_with_conflict_retry",
    # Views
    "register_view",
    "list_views",
    "has_watched",
    # Admin
    "AdminScope",
    "resolve_admin_scope",
    "list_progress",
    "list_progress_records",
    "list_suspicious_activity",
    "Page",
    "read_progress",
    # Types
    "Caller",
    "IngestResult",
    "PlaybackEvent",
    "ProgressState",
    "SessionCursor",
    # Errors
    "TrackingError",
    "AuthenticationRequired",
    "SessionMismatch",
    "ValidationError",
    "PermissionDenied",
    "PersistenceConflict",
    "CatalogLookupMiss",
    "LessonNotFoundError",
    "IngestionTimeout",
]
