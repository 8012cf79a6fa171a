"""Value types for playback events and progress state.

Database rows stay plain dicts (as returned by the query layer); these
dataclasses are what the fold and the ingestion validator work with.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from core.enums import AnomalyFlag, PlaybackEventKind, UserRole

Segment = tuple[float, float]


@dataclass
class PlaybackEvent:
    """One normalized playback occurrence."""

    kind: PlaybackEventKind
    client_timestamp: datetime
    sequence: int = 0
    position: float | None = None
    duration: float | None = None
    rate: float | None = None
    volume: float | None = None
    from_position: float | None = None
    to_position: float | None = None
    tab_visible: bool | None = None
    flags: list[AnomalyFlag] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (JSON-safe, omits empty payload fields)."""
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "client_timestamp": self.client_timestamp.isoformat(),
            "sequence": self.sequence,
        }
        for name in (
            "position",
            "duration",
            "rate",
            "volume",
            "from_position",
            "to_position",
            "tab_visible",
        ):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.flags:
            data["flags"] = [flag.value for flag in self.flags]
        return data


@dataclass
class SessionCursor:
    """Per-session position cursor used for forward-delta accounting."""

    last_position: float | None = None
    last_client_timestamp: datetime | None = None


@dataclass
class ProgressState:
    """The folded part of a video_progress row."""

    total_watched_seconds: float = 0.0
    completion_percentage: float = 0.0
    max_position_seconds: float = 0.0
    duration_seconds: float | None = None
    watched_segments: list[Segment] = field(default_factory=list)
    is_completed: bool = False
    grade_contribution: float = 0.0
    suspicious_activity_count: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProgressState":
        return cls(
            total_watched_seconds=row.get("total_watched_seconds") or 0.0,
            completion_percentage=row.get("completion_percentage") or 0.0,
            max_position_seconds=row.get("max_position_seconds") or 0.0,
            duration_seconds=row.get("duration_seconds"),
            watched_segments=[
                (float(start), float(end))
                for start, end in (row.get("watched_segments") or [])
            ],
            is_completed=bool(row.get("is_completed")),
            grade_contribution=row.get("grade_contribution") or 0.0,
            suspicious_activity_count=row.get("suspicious_activity_count") or 0,
        )

    def to_values(self) -> dict[str, Any]:
        """Column values for an UPDATE of video_progress."""
        return {
            "total_watched_seconds": self.total_watched_seconds,
            "completion_percentage": self.completion_percentage,
            "max_position_seconds": self.max_position_seconds,
            "duration_seconds": self.duration_seconds,
            "watched_segments": [list(s) for s in self.watched_segments],
            "is_completed": self.is_completed,
            "grade_contribution": self.grade_contribution,
            "suspicious_activity_count": self.suspicious_activity_count,
        }


@dataclass
class FoldResult:
    """Outcome of folding one batch into a progress state."""

    state: ProgressState
    cursor: SessionCursor
    became_completed: bool = False
    flags_counted: int = 0


@dataclass
class Caller:
    """Resolved identity of an API caller."""

    user_id: int
    role: UserRole
    organization_id: int | None = None


@dataclass
class IngestResult:
    """Outcome of one ingestion call."""

    accepted: bool
    duplicate: bool = False
    progress: dict[str, Any] | None = None
