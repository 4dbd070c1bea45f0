"""Tests for the legacy global-poll vote endpoints and app-level handlers."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch
from uuid import UUID

from app.services import voting as voting_service
from app.services.voting_sessions import GLOBAL_SESSION_ID

from .conftest import VOTER_ID

CAST_AT = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def global_session_row():
    return {
        "id": GLOBAL_SESSION_ID,
        "title": "Global poll",
        "status": "active",
        "start_date": None,
        "end_date": None,
        "allow_new_candidates": True,
        "candidates": "[]",
        "is_global": True,
        "is_assigned": False,
    }


def global_ballot(name="Alice"):
    return {
        "id": UUID("66666666-6666-6666-6666-666666666666"),
        "user_id": UUID(VOTER_ID),
        "session_id": GLOBAL_SESSION_ID,
        "candidate_id": None,
        "candidate_name": name,
        "is_custom_candidate": False,
        "cast_at": CAST_AT,
    }


class TestGlobalVote:
    def test_any_user_can_vote(self, client, mock_conn, voter_headers):
        mock_conn.fetchrow.side_effect = [global_session_row(), global_ballot()]

        response = client.post("/votes", json={"candidateName": "Alice"}, headers=voter_headers)

        assert response.status_code == 201
        assert response.json()["vote"]["candidateName"] == "Alice"

    def test_second_vote(self, client, mock_conn, voter_headers):
        mock_conn.fetchrow.side_effect = [global_session_row(), None]

        response = client.post("/votes", json={"candidateName": "Bob"}, headers=voter_headers)

        assert response.status_code == 409
        assert response.json() == {"message": "User has already voted"}

    def test_blank_name(self, client, mock_conn, voter_headers):
        mock_conn.fetchrow.side_effect = [global_session_row()]

        response = client.post("/api/votes", json={"candidateName": "  "}, headers=voter_headers)

        assert response.status_code == 400
        assert response.json() == {"message": "Candidate name is required"}

    def test_status(self, client, mock_conn, voter_headers):
        mock_conn.fetchrow.return_value = global_ballot()

        response = client.get("/votes/status", headers=voter_headers)

        assert response.status_code == 200
        assert response.json()["hasVoted"] is True
        assert response.json()["vote"]["candidateName"] == "Alice"

    def test_status_without_vote(self, client, voter_headers):
        response = client.get("/votes/status", headers=voter_headers)

        assert response.json()["hasVoted"] is False
        assert response.json()["vote"] is None


class TestGlobalAdmin:
    def test_results_admin_only(self, client, voter_headers):
        response = client.get("/votes/results", headers=voter_headers)

        assert response.status_code == 403

    def test_results(self, client, admin_headers):
        summary = {
            "results": [
                {"candidate_name": "A", "vote_count": 2},
                {"candidate_name": "B", "vote_count": 1},
            ],
            "total_votes": 3,
            "total_candidates": 2,
            "candidates": ["A", "B"],
        }
        with patch.object(voting_service, "get_global_results", AsyncMock(return_value=summary)):
            response = client.get("/votes/results", headers=admin_headers)

        body = response.json()
        assert body["results"][0] == {"candidateName": "A", "voteCount": 2}
        assert body["totalVotes"] == 3
        assert body["totalCandidates"] == 2

    def test_reset(self, client, mock_conn, admin_headers):
        mock_conn.fetchval.return_value = 5

        response = client.delete("/votes/all", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["deletedCount"] == 5

    def test_candidates(self, client, mock_conn, voter_headers):
        mock_conn.fetch.return_value = [{"candidate_name": "A"}, {"candidate_name": "B"}]

        response = client.get("/votes/candidates", headers=voter_headers)

        assert response.json()["candidates"] == ["A", "B"]


class TestAppHandlers:
    def test_health_without_pool(self, client):
        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_unknown_route_envelope(self, client):
        response = client.get("/no-such-route")

        assert response.status_code == 404
        assert response.json() == {"message": "Not Found"}

    def test_security_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
