"""Tests for the voting session service: candidates, windows and lifecycle."""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import pytest

from app.core.exceptions import InvalidInput, InvalidState, NotFound
from app.services import voting_sessions as session_service

from .conftest import ADMIN_ID, CANDIDATE_ID, SESSION_ID, VOTER_ID


class TestCandidates:
    def test_build_candidate_assigns_id_and_trims(self):
        candidate = session_service.build_candidate("  Alice ", " Class rep ")

        assert candidate["name"] == "Alice"
        assert candidate["description"] == "Class rep"
        assert UUID(candidate["id"])

    def test_build_candidate_rejects_blank_name(self):
        with pytest.raises(InvalidInput, match="Candidate name is required"):
            session_service.build_candidate("   ")

    def test_build_candidates_keeps_existing_ids_and_order(self):
        candidates = session_service.build_candidates(
            [{"id": CANDIDATE_ID, "name": "Alice"}, {"name": "Bob"}]
        )

        assert [c["name"] for c in candidates] == ["Alice", "Bob"]
        assert candidates[0]["id"] == CANDIDATE_ID
        assert candidates[1]["id"] != CANDIDATE_ID


class TestValidation:
    def test_window_must_end_after_start(self):
        start = datetime(2026, 3, 1, tzinfo=UTC)
        with pytest.raises(InvalidInput, match="End date must be after start date"):
            session_service.validate_window(start, start)
        session_service.validate_window(start, start + timedelta(hours=1))
        session_service.validate_window(None, start)

    def test_closed_is_ended(self):
        assert session_service.normalize_status("closed") == "ended"
        assert session_service.normalize_status("active") == "active"
        with pytest.raises(InvalidInput):
            session_service.normalize_status("paused")

    def test_single_choice_forces_one(self):
        assert session_service.effective_max_choices(False, 5) == 1
        assert session_service.effective_max_choices(True, 3) == 3
        assert session_service.effective_max_choices(True, None) == 1


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_rejects_unknown_assignees(self, mock_conn):
        mock_conn.fetch.return_value = []

        with pytest.raises(InvalidInput, match="Some assigned users do not exist"):
            await session_service.create_session(
                mock_conn,
                title="Poll",
                created_by=UUID(ADMIN_ID),
                assigned_user_ids=[UUID(VOTER_ID)],
            )
        mock_conn.fetchval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requires_title(self, mock_conn):
        with pytest.raises(InvalidInput, match="Title is required"):
            await session_service.create_session(
                mock_conn, title="  ", created_by=UUID(ADMIN_ID)
            )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_activate_only_from_draft(self, mock_conn):
        mock_conn.fetchval.return_value = "active"

        with pytest.raises(InvalidState, match="Only draft voting sessions can be activated"):
            await session_service.activate_session(mock_conn, UUID(SESSION_ID))

    @pytest.mark.asyncio
    async def test_end_twice(self, mock_conn):
        mock_conn.fetchval.return_value = "ended"

        with pytest.raises(InvalidState, match="Voting session is already ended"):
            await session_service.end_session(mock_conn, UUID(SESSION_ID))

    @pytest.mark.asyncio
    async def test_cancelled_cannot_end(self, mock_conn):
        mock_conn.fetchval.return_value = "cancelled"

        with pytest.raises(InvalidState):
            await session_service.end_session(mock_conn, UUID(SESSION_ID))

    @pytest.mark.asyncio
    async def test_missing_session(self, mock_conn):
        mock_conn.fetchval.return_value = None

        with pytest.raises(NotFound, match="Voting session not found"):
            await session_service.cancel_session(mock_conn, UUID(SESSION_ID))

    @pytest.mark.asyncio
    async def test_lost_race_is_invalid_state(self, mock_conn):
        # Read sees draft, but the conditional UPDATE matches nothing
        mock_conn.fetchval.side_effect = ["draft", None]

        with pytest.raises(InvalidState):
            await session_service.activate_session(mock_conn, UUID(SESSION_ID))

        update_sql = mock_conn.fetchval.call_args_list[1].args[0]
        assert "status = ANY($3::varchar[])" in update_sql

    @pytest.mark.asyncio
    async def test_activate_draft(self, mock_conn):
        mock_conn.fetchval.side_effect = ["draft", SESSION_ID]
        mock_conn.fetchrow.return_value = {
            "id": UUID(SESSION_ID),
            "title": "Poll",
            "candidates": "[]",
            "status": "active",
            "created_by": UUID(ADMIN_ID),
            "creator_username": "admin",
            "creator_email": "admin@example.com",
        }

        session = await session_service.activate_session(mock_conn, UUID(SESSION_ID))

        assert session["status"] == "active"
        assert session["candidates"] == []
        assert session["creator"]["username"] == "admin"
        assert session["assigned_users"] == []


class TestDeleteSession:
    @pytest.mark.asyncio
    async def test_delete_reports_removed_ballots(self, mock_conn):
        mock_conn.execute.return_value = "DELETE 3"
        mock_conn.fetchrow.return_value = {
            "id": UUID(SESSION_ID),
            "title": "Poll",
            "status": "ended",
        }

        deleted, removed = await session_service.delete_session(mock_conn, UUID(SESSION_ID))

        assert deleted["id"] == SESSION_ID
        assert removed == 3
        mock_conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_delete_missing(self, mock_conn):
        mock_conn.execute.return_value = "DELETE 0"
        mock_conn.fetchrow.return_value = None

        assert await session_service.delete_session(mock_conn, UUID(SESSION_ID)) == (None, 0)


class TestAssignment:
    @pytest.mark.asyncio
    async def test_assign_requires_ids(self, mock_conn):
        with pytest.raises(InvalidInput, match="User IDs array is required"):
            await session_service.assign_users(mock_conn, UUID(SESSION_ID), [])

    @pytest.mark.asyncio
    async def test_assign_rejects_unknown_users(self, mock_conn):
        mock_conn.fetch.return_value = []

        with pytest.raises(InvalidInput, match="Some user IDs are invalid"):
            await session_service.assign_users(
                mock_conn, UUID(SESSION_ID), [UUID(VOTER_ID)]
            )

    @pytest.mark.asyncio
    async def test_remove_unknown_candidate(self, mock_conn):
        mock_conn.fetchrow.return_value = {
            "id": UUID(SESSION_ID),
            "candidates": f'[{{"id": "{CANDIDATE_ID}", "name": "Alice", "description": ""}}]',
            "created_by": None,
            "creator_username": None,
            "creator_email": None,
        }

        with pytest.raises(NotFound, match="Candidate not found in this voting session"):
            await session_service.remove_candidate(
                mock_conn,
                UUID(SESSION_ID),
                UUID("77777777-7777-7777-7777-777777777777"),
            )


class TestStats:
    @pytest.mark.asyncio
    async def test_counts_by_status(self, mock_conn):
        mock_conn.fetch.return_value = [
            {"status": "draft", "count": 2},
            {"status": "active", "count": 1},
        ]

        stats = await session_service.get_session_stats(mock_conn)

        assert stats == {"total": 3, "by_status": {"draft": 2, "active": 1}}
