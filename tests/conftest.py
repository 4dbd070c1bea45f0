"""
Pytest configuration and fixtures for the voting backend tests.

This module provides:
- Test environment variables (set before the app is imported)
- A mocked asyncpg connection for service and API tests
- FastAPI test client with the database dependency overridden
- Users and bearer tokens for each role
"""

import os
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test_secret_key_for_testing_only"
os.environ["ACCESS_TOKEN_EXPIRE_MINUTES"] = "60"

from fastapi.testclient import TestClient  # noqa: E402

from app.core.database import get_db  # noqa: E402
from app.core.security import create_user_token  # noqa: E402
from app.main import app  # noqa: E402

ADMIN_ID = "11111111-1111-1111-1111-111111111111"
VOTER_ID = "22222222-2222-2222-2222-222222222222"
OUTSIDER_ID = "33333333-3333-3333-3333-333333333333"
SESSION_ID = "44444444-4444-4444-4444-444444444444"
CANDIDATE_ID = "55555555-5555-5555-5555-555555555555"

CREATED_AT = datetime(2026, 1, 5, 9, 30, tzinfo=UTC)


def make_user(user_id: str, username: str, role: str = "user") -> dict[str, Any]:
    return {
        "id": user_id,
        "username": username,
        "email": f"{username}@example.com",
        "role": role,
        "created_at": CREATED_AT,
    }


def make_session(**overrides: Any) -> dict[str, Any]:
    """A voting session dict shaped like voting_sessions.get_session output."""
    session = {
        "id": SESSION_ID,
        "title": "Class representative",
        "description": None,
        "candidates": [{"id": CANDIDATE_ID, "name": "Alice", "description": ""}],
        "status": "draft",
        "start_date": None,
        "end_date": None,
        "allow_new_candidates": False,
        "multiple_choice": False,
        "max_choices": 1,
        "is_anonymous": False,
        "is_global": False,
        "created_by": ADMIN_ID,
        "creator": {"id": ADMIN_ID, "username": "admin", "email": "admin@example.com"},
        "created_at": CREATED_AT,
        "updated_at": CREATED_AT,
        "assigned_users": [
            {"id": VOTER_ID, "username": "voter", "email": "voter@example.com"}
        ],
    }
    session.update(overrides)
    return session


@pytest.fixture
def mock_conn() -> MagicMock:
    """asyncpg.Connection stand-in; transaction() works as an async context manager."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="UPDATE 0")
    return conn


@pytest.fixture
def admin_user() -> dict[str, Any]:
    return make_user(ADMIN_ID, "admin", role="admin")


@pytest.fixture
def voter_user() -> dict[str, Any]:
    return make_user(VOTER_ID, "voter")


@pytest.fixture
def outsider_user() -> dict[str, Any]:
    return make_user(OUTSIDER_ID, "outsider")


@pytest.fixture
def known_users(admin_user, voter_user, outsider_user) -> dict[str, dict[str, Any]]:
    return {u["id"]: u for u in (admin_user, voter_user, outsider_user)}


@pytest.fixture
def client(mock_conn, known_users):
    """TestClient whose get_db yields mock_conn and whose token users are known_users."""

    async def override_get_db():
        yield mock_conn

    async def lookup_user(conn, user_id):
        user = known_users.get(str(user_id))
        return {**user, "password_hash": "x"} if user else None

    app.dependency_overrides[get_db] = override_get_db
    with patch("app.api.deps.get_user_by_id", AsyncMock(side_effect=lookup_user)):
        yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def bearer(user: dict[str, Any]) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest.fixture
def admin_headers(admin_user) -> dict[str, str]:
    return bearer(admin_user)


@pytest.fixture
def voter_headers(voter_user) -> dict[str, str]:
    return bearer(voter_user)


@pytest.fixture
def outsider_headers(outsider_user) -> dict[str, str]:
    return bearer(outsider_user)
