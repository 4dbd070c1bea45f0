"""Voting session API routes: lifecycle, assignment, candidates and ballots."""

from datetime import UTC, datetime
from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, Query, status
from pydantic import Field, field_validator

from app.api.deps import (
    AdminUser,
    CurrentUser,
    VoterUser,
    ensure_assigned_or_admin,
    ensure_can_edit,
    ensure_can_view,
    ensure_creator_or_admin,
    ensure_found,
    is_creator_or_admin,
)
from app.api.schemas import (
    BallotOut,
    CamelModel,
    CandidateOut,
    ResultsOut,
    SessionStatsOut,
    VotingSessionOut,
    dump,
)
from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import InvalidInput, NotFound
from app.core.logging_config import get_logger
from app.core.responses import ErrorResponse, message_response
from app.services import voting as voting_service
from app.services import voting_sessions as session_service

router = APIRouter(
    prefix="/voting-sessions",
    tags=["Voting Sessions"],
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
logger = get_logger(__name__)


# ============================================
# PYDANTIC MODELS
# ============================================


class CandidateIn(CamelModel):
    id: UUID | None = None
    name: str | None = None
    description: str | None = None


class SessionWindowIn(CamelModel):
    """Voting window bounds; naive datetimes are read as UTC."""

    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        # Stored bounds come back from timestamptz columns tz-aware
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class CreateSessionRequest(SessionWindowIn):
    """Create voting session request model."""

    title: str | None = Field(None, max_length=200)
    description: str | None = Field(None, max_length=1000)
    candidates: list[CandidateIn] = []
    assigned_users: list[UUID] = []
    allow_new_candidates: bool = False
    multiple_choice: bool = False
    max_choices: int = Field(1, ge=1)
    is_anonymous: bool = False


class UpdateSessionRequest(SessionWindowIn):
    """Update voting session request model. Only fields sent are changed."""

    title: str | None = Field(None, max_length=200)
    description: str | None = Field(None, max_length=1000)
    candidates: list[CandidateIn] | None = None
    assigned_users: list[UUID] | None = None
    allow_new_candidates: bool | None = None
    multiple_choice: bool | None = None
    max_choices: int | None = Field(None, ge=1)
    is_anonymous: bool | None = None


class UserIdsRequest(CamelModel):
    user_ids: list[UUID] = []


class AddCandidateRequest(CamelModel):
    name: str | None = Field(None, max_length=200)
    description: str | None = Field(None, max_length=1000)


class CastVoteRequest(CamelModel):
    """Session-scoped ballot."""

    voting_session_id: UUID | None = None
    candidate_id: UUID | None = None
    candidate_name: str | None = Field(None, max_length=200)
    is_custom_candidate: bool = False


# ============================================
# COLLECTION ENDPOINTS
# ============================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_voting_session(
    request: CreateSessionRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """
    Create a new voting session (admin only).

    Sessions start as drafts; activate them to open voting.
    """
    session = await session_service.create_session(
        conn,
        title=request.title or "",
        created_by=UUID(current_user["id"]),
        description=request.description,
        candidates=[c.model_dump() for c in request.candidates],
        assigned_user_ids=request.assigned_users,
        allow_new_candidates=request.allow_new_candidates,
        multiple_choice=request.multiple_choice,
        max_choices=request.max_choices,
        is_anonymous=request.is_anonymous,
        start_date=request.start_date,
        end_date=request.end_date,
    )
    return message_response(
        "Voting session created successfully",
        votingSession=dump(VotingSessionOut, session),
    )


@router.get("/admin/all")
async def list_voting_sessions(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
    status_filter: str | None = Query(None, alias="status"),
):
    """List every voting session with ballot counts (admin only)."""
    sessions = await session_service.list_sessions(conn, status=status_filter)
    return message_response(
        "Voting sessions retrieved successfully",
        votingSessions=dump(VotingSessionOut, sessions),
        totalSessions=len(sessions),
    )


@router.get("/stats")
async def get_voting_session_stats(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """Voting session counts by status (admin only)."""
    stats = await session_service.get_session_stats(conn)
    return message_response(
        "Voting session statistics retrieved successfully",
        stats=dump(SessionStatsOut, stats),
    )


@router.get("/my-sessions")
async def list_my_voting_sessions(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Sessions the caller can vote in right now, with their vote status."""
    sessions = await session_service.list_open_sessions_for_user(
        conn,
        UUID(current_user["id"]),
        now=datetime.now(UTC),
        end_inclusive=settings.VOTING_END_INCLUSIVE,
    )
    return message_response(
        "User voting sessions retrieved successfully",
        votingSessions=dump(VotingSessionOut, sessions),
        totalSessions=len(sessions),
    )


@router.get("/user/assigned")
async def list_assigned_voting_sessions(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
    status_filter: str | None = Query(None, alias="status"),
    include_ended: bool = Query(False, alias="includeEnded"),
):
    """
    Every session the caller is assigned to, with their vote status.

    Draft and active sessions by default; pass includeEnded=true to also see
    ended and cancelled ones, or status to pick a single state.
    """
    sessions = await session_service.list_assigned_sessions_for_user(
        conn,
        UUID(current_user["id"]),
        status=status_filter,
        include_ended=include_ended,
    )
    return message_response(
        "User voting sessions retrieved successfully",
        votingSessions=dump(VotingSessionOut, sessions),
        totalSessions=len(sessions),
    )


@router.post("/vote", status_code=status.HTTP_201_CREATED)
async def cast_vote_in_session(
    request: CastVoteRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: VoterUser,
):
    """Cast the caller's single ballot in a voting session."""
    if request.voting_session_id is None:
        raise InvalidInput("Voting session ID is required")
    if request.voting_session_id == session_service.GLOBAL_SESSION_ID:
        raise NotFound("Voting session not found")

    ballot = await voting_service.cast_ballot(
        conn,
        user_id=UUID(current_user["id"]),
        session_id=request.voting_session_id,
        candidate_name=request.candidate_name,
        candidate_id=request.candidate_id,
        is_custom_candidate=request.is_custom_candidate,
        end_inclusive=settings.VOTING_END_INCLUSIVE,
    )
    return message_response("Vote cast successfully", vote=dump(BallotOut, ballot))


# ============================================
# SINGLE SESSION ENDPOINTS
# ============================================


@router.get("/{session_id}")
async def get_voting_session(
    session_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """
    Get a voting session with its results and ballots.

    Visible to admins, the creator and assigned voters. Voter identities are
    shown only to the creator and admins, and never for anonymous sessions.
    """
    session = ensure_found(await session_service.get_session(conn, session_id))
    ensure_can_view(current_user, session)

    results = await voting_service.get_session_results(conn, session_id)
    anonymous = session["is_anonymous"] or not is_creator_or_admin(current_user, session)
    ballots = await voting_service.list_session_ballots(
        conn, session_id, anonymous=anonymous
    )
    return message_response(
        "Voting session retrieved successfully",
        votingSession=dump(VotingSessionOut, session),
        results=dump(ResultsOut, results),
        votes=dump(BallotOut, ballots),
    )


@router.put("/{session_id}")
async def update_voting_session(
    session_id: UUID,
    request: UpdateSessionRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Update a voting session. Non-admin creators can only edit drafts."""
    session = ensure_found(await session_service.get_session(conn, session_id))
    ensure_can_edit(current_user, session)

    changes = request.model_dump(exclude_unset=True)
    assigned_user_ids = changes.pop("assigned_users", None)
    # Explicit nulls only clear the nullable columns
    changes = {
        k: v
        for k, v in changes.items()
        if v is not None or k in ("description", "start_date", "end_date")
    }

    updated = await session_service.update_session(
        conn, session_id, assigned_user_ids=assigned_user_ids, **changes
    )
    return message_response(
        "Voting session updated successfully",
        votingSession=dump(VotingSessionOut, ensure_found(updated)),
    )


@router.delete("/{session_id}")
async def delete_voting_session(
    session_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Delete a voting session together with all of its ballots."""
    session = ensure_found(await session_service.get_session(conn, session_id))
    ensure_creator_or_admin(current_user, session)

    deleted, ballots_removed = await session_service.delete_session(conn, session_id)
    ensure_found(deleted)
    return message_response(
        "Voting session and associated votes deleted successfully",
        votesDeleted=ballots_removed,
    )


@router.post("/{session_id}/activate")
async def activate_voting_session(
    session_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Open a draft session for voting."""
    ensure_creator_or_admin(
        current_user, ensure_found(await session_service.get_session(conn, session_id))
    )
    session = await session_service.activate_session(conn, session_id)
    return message_response(
        "Voting session activated successfully",
        votingSession=dump(VotingSessionOut, session),
    )


@router.post("/{session_id}/end")
async def end_voting_session(
    session_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Close a draft or active session."""
    ensure_creator_or_admin(
        current_user, ensure_found(await session_service.get_session(conn, session_id))
    )
    session = await session_service.end_session(conn, session_id)
    return message_response(
        "Voting session ended successfully",
        votingSession=dump(VotingSessionOut, session),
    )


@router.post("/{session_id}/cancel")
async def cancel_voting_session(
    session_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Cancel a draft or active session."""
    ensure_creator_or_admin(
        current_user, ensure_found(await session_service.get_session(conn, session_id))
    )
    session = await session_service.cancel_session(conn, session_id)
    return message_response(
        "Voting session cancelled successfully",
        votingSession=dump(VotingSessionOut, session),
    )


# ============================================
# ASSIGNED VOTERS
# ============================================


@router.post("/{session_id}/assign-users")
async def assign_users_to_session(
    session_id: UUID,
    request: UserIdsRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Assign voters to a session."""
    ensure_creator_or_admin(
        current_user, ensure_found(await session_service.get_session(conn, session_id))
    )
    session = await session_service.assign_users(conn, session_id, request.user_ids)
    return message_response(
        "Users assigned to voting session successfully",
        votingSession=dump(VotingSessionOut, ensure_found(session)),
    )


@router.post("/{session_id}/remove-users")
async def remove_users_from_session(
    session_id: UUID,
    request: UserIdsRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Unassign voters from a session."""
    ensure_creator_or_admin(
        current_user, ensure_found(await session_service.get_session(conn, session_id))
    )
    session = await session_service.remove_users(conn, session_id, request.user_ids)
    return message_response(
        "Users removed from voting session successfully",
        votingSession=dump(VotingSessionOut, ensure_found(session)),
    )


# ============================================
# CANDIDATES
# ============================================


@router.post("/{session_id}/candidates")
async def add_candidate_to_session(
    session_id: UUID,
    request: AddCandidateRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Append a candidate to a session."""
    ensure_creator_or_admin(
        current_user, ensure_found(await session_service.get_session(conn, session_id))
    )
    session, candidate = await session_service.add_candidate(
        conn, session_id, request.name, request.description
    )
    return message_response(
        "Candidate added to voting session successfully",
        votingSession=dump(VotingSessionOut, ensure_found(session)),
        candidate=dump(CandidateOut, candidate),
    )


@router.delete("/{session_id}/candidates/{candidate_id}")
async def remove_candidate_from_session(
    session_id: UUID,
    candidate_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Remove a candidate from a session. Ballots already cast are kept."""
    ensure_creator_or_admin(
        current_user, ensure_found(await session_service.get_session(conn, session_id))
    )
    session = await session_service.remove_candidate(conn, session_id, candidate_id)
    return message_response(
        "Candidate removed from voting session successfully",
        votingSession=dump(VotingSessionOut, ensure_found(session)),
    )


# ============================================
# RESULTS AND BALLOTS
# ============================================


@router.get("/{session_id}/results")
async def get_session_results(
    session_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Aggregated results for assigned voters and admins."""
    session = ensure_found(await session_service.get_session(conn, session_id))
    ensure_assigned_or_admin(current_user, session)

    results = await voting_service.get_session_results(conn, session_id)
    return message_response(
        "Session results retrieved successfully",
        votingSession={"id": session["id"], "title": session["title"], "status": session["status"]},
        **dump(ResultsOut, results),
    )


@router.get("/{session_id}/votes")
async def list_session_votes(
    session_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Ballots in a session; voter identity is hidden for anonymous sessions."""
    session = ensure_found(await session_service.get_session(conn, session_id))
    ensure_creator_or_admin(current_user, session)

    ballots = await voting_service.list_session_ballots(
        conn, session_id, anonymous=session["is_anonymous"]
    )
    return message_response(
        "Session votes retrieved successfully",
        votes=dump(BallotOut, ballots),
        totalVotes=len(ballots),
    )


@router.get("/{session_id}/vote-status")
async def get_vote_status(
    session_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Whether the caller has voted in a session, and for whom."""
    ensure_found(await session_service.get_session(conn, session_id))

    ballot = await voting_service.get_user_ballot(
        conn, UUID(current_user["id"]), session_id
    )
    return message_response(
        "Vote status retrieved successfully",
        hasVoted=ballot is not None,
        vote=dump(BallotOut, ballot),
    )
