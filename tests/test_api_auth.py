"""Tests for the authentication endpoints and bearer token handling."""

from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from app.api.deps import require_admin, require_user
from app.core.exceptions import Forbidden
from app.core.security import decode_access_token, hash_password

from .conftest import CREATED_AT, VOTER_ID, bearer


def register_payload(**overrides):
    payload = {"username": "newvoter", "email": "NewVoter@Example.com", "password": "secret1"}
    payload.update(overrides)
    return payload


class TestRegister:
    def test_admin_role_is_refused(self, client):
        response = client.post("/auth/register", json=register_payload(role="admin"))

        assert response.status_code == 403
        assert response.json() == {
            "message": "Cannot register admin users through this endpoint"
        }

    @pytest.mark.parametrize("role", [None, "user", "superuser"])
    def test_role_is_forced_to_user(self, client, role):
        created = {
            "id": VOTER_ID,
            "username": "newvoter",
            "email": "newvoter@example.com",
            "password_hash": "hash",
            "role": "user",
            "created_at": CREATED_AT,
        }
        with (
            patch("app.api.routes.auth.user_exists", AsyncMock(return_value=False)),
            patch("app.api.routes.auth.create_user", AsyncMock(return_value=created)) as create,
        ):
            response = client.post("/auth/register", json=register_payload(role=role))

        assert response.status_code == 201
        body = response.json()
        assert body["user"]["role"] == "user"
        assert "passwordHash" not in body["user"]
        assert create.await_args.kwargs["role"] == "user"
        assert create.await_args.kwargs["email"] == "newvoter@example.com"
        assert decode_access_token(body["token"])["sub"] == VOTER_ID

    def test_duplicate_user(self, client):
        with patch("app.api.routes.auth.user_exists", AsyncMock(return_value=True)):
            response = client.post("/auth/register", json=register_payload())

        assert response.status_code == 409
        assert response.json()["message"] == "User with this username or email already exists"

    def test_concurrent_duplicate_user(self, client):
        with (
            patch("app.api.routes.auth.user_exists", AsyncMock(return_value=False)),
            patch(
                "app.api.routes.auth.create_user",
                AsyncMock(side_effect=asyncpg.UniqueViolationError("duplicate key")),
            ),
        ):
            response = client.post("/auth/register", json=register_payload())

        assert response.status_code == 409

    def test_invalid_email(self, client):
        response = client.post("/auth/register", json=register_payload(email="not-an-email"))

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid email format"
        assert response.json()["errors"]["email"] == "Invalid email format"

    def test_short_password(self, client):
        response = client.post("/auth/register", json=register_payload(password="12345"))

        assert response.status_code == 400
        assert response.json()["message"] == "Password must be at least 6 characters long"


class TestLogin:
    def test_unknown_user(self, client):
        with patch("app.api.routes.auth.get_user_by_login", AsyncMock(return_value=None)):
            response = client.post(
                "/auth/login", json={"username": "ghost", "password": "whatever"}
            )

        assert response.status_code == 401
        assert response.json() == {"message": "Invalid credentials"}

    def test_login_by_email(self, client, voter_user):
        stored = {**voter_user, "password_hash": hash_password("secret1")}
        with patch(
            "app.api.routes.auth.get_user_by_login", AsyncMock(return_value=stored)
        ) as lookup:
            ok = client.post(
                "/auth/login", json={"username": voter_user["email"], "password": "secret1"}
            )
            bad = client.post(
                "/auth/login", json={"username": voter_user["email"], "password": "wrong1"}
            )

        assert ok.status_code == 200
        assert ok.json()["user"]["username"] == "voter"
        assert decode_access_token(ok.json()["token"])["sub"] == VOTER_ID
        assert lookup.await_args.args[1] == voter_user["email"]
        assert bad.status_code == 401


class TestBearerToken:
    def test_missing_token_is_401(self, client):
        response = client.get("/auth/profile")

        assert response.status_code == 401
        assert response.json() == {"message": "Access token required"}

    def test_invalid_token_is_403(self, client):
        response = client.get(
            "/auth/profile", headers={"Authorization": "Bearer not.a.token"}
        )

        assert response.status_code == 403
        assert response.json() == {"message": "Invalid or expired token"}

    def test_profile(self, client, voter_headers):
        response = client.get("/auth/profile", headers=voter_headers)

        assert response.status_code == 200
        assert response.json()["user"]["id"] == VOTER_ID

    def test_api_prefix(self, client, voter_headers):
        response = client.get("/api/auth/verify", headers=voter_headers)

        assert response.status_code == 200
        assert response.json()["valid"] is True

    def test_token_for_deleted_user_is_404_not_401(self, client):
        token_user = {
            "id": "99999999-9999-9999-9999-999999999999",
            "username": "gone",
            "role": "user",
        }
        response = client.get("/auth/profile", headers=bearer(token_user))

        assert response.status_code == 404
        assert response.json() == {"message": "User not found"}


class TestRoleGates:
    def test_require_user_accepts_both_roles(self):
        for role in ("user", "admin"):
            user = {"id": VOTER_ID, "role": role}
            assert require_user(user) is user

    def test_require_user_rejects_unknown_role(self):
        with pytest.raises(Forbidden) as exc_info:
            require_user({"id": VOTER_ID, "role": "guest"})

        assert exc_info.value.message == "User access required"

    def test_require_admin_rejects_voter(self):
        with pytest.raises(Forbidden) as exc_info:
            require_admin({"id": VOTER_ID, "role": "user"})

        assert exc_info.value.message == "Admin access required"
