"""
Core business logic - transport-agnostic.
Used by the web API; the tracking client reuses the event vocabulary.
"""

# Database (SQLAlchemy)
from .database import get_connection, get_transaction, get_engine, close_engine, is_configured

# Enums shared by server and client
from .enums import UserRole, PlaybackEventKind, AnomalyFlag

__all__ = [
    # Database (SQLAlchemy)
    'get_connection', 'get_transaction', 'get_engine', 'close_engine', 'is_configured',
    # Enums
    'UserRole', 'PlaybackEventKind', 'AnomalyFlag',
]
