"""SQLAlchemy enum definitions for the database schema."""

import enum

from sqlalchemy import Enum as SQLEnum


# =====================================================
# Python Enum Classes
# =====================================================


class UserRole(str, enum.Enum):
    admin = "admin"
    org_admin = "org_admin"
    instructor = "instructor"
    student = "student"


class PlaybackEventKind(str, enum.Enum):
    """Canonical playback vocabulary shared by the player client and the API."""

    play = "play"
    pause = "pause"
    seek = "seek"
    time_update = "time-update"
    rate_change = "rate-change"
    volume_change = "volume-change"
    ended = "ended"
    loaded_metadata = "loaded-metadata"


class AnomalyFlag(str, enum.Enum):
    """Heuristic flags attached to individual playback events."""

    seek_exceeds_wallclock = "seek_exceeds_wallclock"
    playback_rate_out_of_bounds = "playback_rate_out_of_bounds"
    hidden_tab_playback = "hidden_tab_playback"
    # Server-observed only
    rapid_seeking = "rapid_seeking"


# =====================================================
# SQLAlchemy Enum Types
# These reference existing PostgreSQL types (create_type=False)
# =====================================================

user_role_enum = SQLEnum(
    UserRole, name="user_role", create_type=False, native_enum=True
)
