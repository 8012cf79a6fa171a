# web_api/tests/conftest.py
"""Pytest fixtures for web API tests.

Routes are mounted on a bare FastAPI app; authentication dependencies are
overridden per test and the core functions are patched in the route modules,
so these tests need neither a database nor a JWT secret.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.enums import UserRole
from core.tracking.types import Caller
from web_api.auth import get_caller, get_current_user
from web_api.routes.admin import router as admin_router
from web_api.routes.video import router as video_router
from web_api.routes.views import router as views_router


@pytest.fixture
def app():
    app = FastAPI()
    app.include_router(video_router)
    app.include_router(views_router)
    app.include_router(admin_router)
    return app


@pytest.fixture
def client_as(app):
    """
    Build a TestClient authenticated as the given user.

    Usage:
        client = client_as(7, role=UserRole.org_admin, organization_id=3)
    """

    def _client(
        user_id: int = 1,
        role: UserRole = UserRole.student,
        organization_id: int | None = None,
    ) -> TestClient:
        app.dependency_overrides[get_current_user] = lambda: {"sub": str(user_id)}
        app.dependency_overrides[get_caller] = lambda: Caller(
            user_id=user_id, role=role, organization_id=organization_id
        )
        return TestClient(app)

    yield _client
    app.dependency_overrides.clear()


def mock_db_context(mock_factory: MagicMock) -> AsyncMock:
    """Make a patched get_connection/get_transaction yield a mock connection."""
    conn = AsyncMock()
    mock_factory.return_value.__aenter__.return_value = conn
    mock_factory.return_value.__aexit__.return_value = None
    return conn


@pytest.fixture
def db_context():
    return mock_db_context
