"""
JWT authentication utilities for the web API.

Login and cookie issuing live in the main product; this service only
verifies the session token it receives.

- HS256 signing algorithm
- "session" cookie, or an Authorization: Bearer header for API clients
- sub claim carries the user ID; role and organization come from the users table
"""

import os
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, Request

from core.database import get_connection
from core.enums import UserRole
from core.queries.users import get_user_by_id
from core.tracking.types import Caller

JWT_SECRET = os.environ.get("JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = 24


def create_jwt(user_id: int) -> str:
    """
    Create a signed JWT token for a user (used by tests and local tooling).

    Args:
        user_id: The user's database ID

    Returns:
        Signed JWT token string
    """
    if not JWT_SECRET:
        raise ValueError("JWT_SECRET environment variable not set")

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(hours=JWT_EXPIRATION_HOURS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_jwt(token: str) -> dict | None:
    """
    Verify and decode a JWT token.

    Returns:
        Decoded payload dict if valid, None if invalid
    """
    if not JWT_SECRET:
        raise ValueError("JWT_SECRET environment variable not set")

    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def _extract_token(request: Request) -> str | None:
    token = request.cookies.get("session")
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


async def get_current_user(request: Request) -> dict:
    """
    FastAPI dependency to get the current authenticated user's JWT payload.

    Raises:
        HTTPException: 401 if not authenticated or invalid token
    """
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = verify_jwt(token)
    if not payload or not str(payload.get("sub", "")).isdigit():
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


async def get_caller(user: dict = Depends(get_current_user)) -> Caller:
    """
    FastAPI dependency resolving the JWT subject to a Caller with role and
    organization.

    Raises:
        HTTPException: 401 if the user no longer exists
    """
    user_id = int(user["sub"])
    async with get_connection() as conn:
        row = await get_user_by_id(conn, user_id)

    if not row:
        raise HTTPException(status_code=401, detail="User not found")

    return Caller(
        user_id=row["user_id"],
        role=UserRole(row["role"]),
        organization_id=row.get("organization_id"),
    )
