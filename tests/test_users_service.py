"""Tests for user service functions."""

from unittest.mock import AsyncMock, patch
from uuid import UUID

import asyncpg
import pytest

from app.core.config import Settings
from app.core.exceptions import Conflict
from app.services import users as user_service

from .conftest import CREATED_AT, VOTER_ID


def user_row(role="user"):
    return {
        "id": UUID(VOTER_ID),
        "username": "voter",
        "email": "voter@example.com",
        "password_hash": "hash",
        "role": role,
        "created_at": CREATED_AT,
    }


class TestUserService:
    @pytest.mark.asyncio
    async def test_create_user_lowercases_email(self, mock_conn):
        mock_conn.fetchrow.return_value = user_row()

        user = await user_service.create_user(
            mock_conn, "voter", "Voter@Example.COM", "hash"
        )

        assert user["id"] == VOTER_ID
        assert mock_conn.fetchrow.await_args.args[2] == "voter@example.com"

    @pytest.mark.asyncio
    async def test_create_user_duplicate(self, mock_conn):
        mock_conn.fetchrow.side_effect = asyncpg.exceptions.UniqueViolationError(
            "duplicate key value violates unique constraint"
        )

        with pytest.raises(Conflict, match="already exists"):
            await user_service.create_user(mock_conn, "voter", "voter@example.com", "hash")

    @pytest.mark.asyncio
    async def test_delete_user_removes_ballots_first(self, mock_conn):
        mock_conn.execute.return_value = "DELETE 2"
        mock_conn.fetchrow.return_value = user_row()

        deleted, ballots_removed = await user_service.delete_user(mock_conn, UUID(VOTER_ID))

        assert deleted["username"] == "voter"
        assert ballots_removed == 2
        assert "DELETE FROM ballots" in mock_conn.execute.await_args.args[0]
        mock_conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_delete_missing_user(self, mock_conn):
        mock_conn.execute.return_value = "DELETE 0"
        mock_conn.fetchrow.return_value = None

        assert await user_service.delete_user(mock_conn, UUID(VOTER_ID)) == (None, 0)

    @pytest.mark.asyncio
    async def test_find_missing_user_ids(self, mock_conn):
        other = UUID("88888888-8888-8888-8888-888888888888")
        mock_conn.fetch.return_value = [{"id": UUID(VOTER_ID)}]

        missing = await user_service.find_missing_user_ids(mock_conn, [UUID(VOTER_ID), other])

        assert missing == [str(other)]

    @pytest.mark.asyncio
    async def test_user_stats(self, mock_conn):
        mock_conn.fetchrow.return_value = {
            "total_users": 5,
            "regular_users": 4,
            "admin_users": 1,
            "users_who_voted": 3,
            "total_votes": 6,
        }

        stats = await user_service.get_user_stats(mock_conn)

        assert stats["users_who_not_voted"] == 1
        assert stats["total_votes"] == 6

    @pytest.mark.asyncio
    async def test_default_admin_created_once(self, mock_conn):
        settings = Settings(DEFAULT_ADMIN_PASSWORD="bootstrap-pass")
        mock_conn.execute.return_value = "INSERT 0 1"

        with patch.object(user_service, "hash_password", return_value="hashed"):
            assert await user_service.ensure_default_admin(mock_conn, settings) is True

        mock_conn.fetchrow.return_value = user_row(role="admin")
        assert await user_service.ensure_default_admin(mock_conn, settings) is False

    def test_public_user_drops_hash(self):
        assert "password_hash" not in user_service.public_user(user_row())
