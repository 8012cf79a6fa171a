"""Error taxonomy for video tracking.

Routes map these onto HTTP status codes; PersistenceConflict and
CatalogLookupMiss are handled inside the core and never reach a caller.
"""


class TrackingError(Exception):
    """Base class for video tracking errors."""

    pass


class AuthenticationRequired(TrackingError):
    """Raised when no valid identity accompanies a call."""

    pass


class SessionMismatch(TrackingError):
    """Raised when a session token does not belong to the caller or lesson."""

    pass


class ValidationError(TrackingError):
    """Raised for malformed or out-of-window playback events."""

    pass


class PermissionDenied(TrackingError):
    """Raised when the caller's role or scope does not allow a read."""

    pass


class PersistenceConflict(TrackingError):
    """Raised on transient contention for a keyed record (retried internally)."""

    pass


class CatalogLookupMiss(TrackingError):
    """Raised when a lesson id is missing from the catalog."""

    def __init__(self, lesson_id: str):
        super().__init__(f"Lesson not in catalog: {lesson_id}")
        self.lesson_id = lesson_id


class LessonNotFoundError(TrackingError):
    """Raised when an operation requires a lesson that does not exist."""

    pass


class IngestionTimeout(TrackingError):
    """Raised when a batch could not be applied within the ingestion timeout."""

    pass
