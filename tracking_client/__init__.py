"""Player-side tracking: normalize player messages, batch and deliver them."""

from .events import PlayerMessageNormalizer, origin_allowed
from .session import (
    PendingBatch,
    ProgressView,
    SessionStartRejected,
    SessionState,
    TrackingClient,
    TrackingSession,
)
from .transport import TrackingTransport

__all__ = [
    "PlayerMessageNormalizer",
    "origin_allowed",
    "PendingBatch",
    "ProgressView",
    "SessionStartRejected",
    "SessionState",
    "TrackingClient",
    "TrackingSession",
    "TrackingTransport",
]
