"""Legacy vote routes backed by the implicit global poll session."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, status
from pydantic import Field

from app.api.deps import AdminUser, CurrentUser, VoterUser
from app.api.schemas import BallotOut, CamelModel, ResultsOut, dump
from app.core.database import get_db
from app.core.responses import ErrorResponse, message_response
from app.services import voting as voting_service
from app.services.voting_sessions import GLOBAL_SESSION_ID

router = APIRouter(
    prefix="/votes",
    tags=["Votes"],
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)


class GlobalVoteRequest(CamelModel):
    candidate_name: str | None = Field(None, max_length=200)


@router.post("", status_code=status.HTTP_201_CREATED)
async def cast_vote(
    request: GlobalVoteRequest,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: VoterUser,
):
    """Cast the caller's single ballot in the global poll."""
    ballot = await voting_service.cast_global_vote(
        conn, UUID(current_user["id"]), request.candidate_name
    )
    return message_response("Vote cast successfully", vote=dump(BallotOut, ballot))


@router.get("/status")
async def get_vote_status(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Whether the caller has voted in the global poll."""
    ballot = await voting_service.get_user_ballot(
        conn, UUID(current_user["id"]), GLOBAL_SESSION_ID
    )
    return message_response(
        "Vote status retrieved successfully",
        hasVoted=ballot is not None,
        vote=dump(BallotOut, ballot),
    )


@router.get("/user/my-votes")
async def list_my_votes(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """The caller's ballots across all voting sessions."""
    ballots = await voting_service.list_user_ballots(conn, UUID(current_user["id"]))
    return message_response(
        "User votes retrieved successfully",
        votes=dump(BallotOut, ballots),
        totalVotes=len(ballots),
    )


@router.get("/candidates")
async def list_candidates(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: CurrentUser,
):
    """Distinct candidate names voted for in the global poll."""
    candidates = await voting_service.list_global_candidates(conn)
    return message_response(
        "Candidates retrieved successfully", candidates=candidates
    )


@router.get("/results")
async def get_results(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """Aggregated global poll results (admin only)."""
    results = await voting_service.get_global_results(conn)
    return message_response(
        "Vote results retrieved successfully", **dump(ResultsOut, results)
    )


@router.get("/all")
async def list_all_votes(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """Every global poll ballot with its voter (admin only)."""
    ballots = await voting_service.list_global_ballots(conn)
    return message_response(
        "All votes retrieved successfully",
        votes=dump(BallotOut, ballots),
        totalVotes=len(ballots),
    )


@router.delete("/all")
async def delete_all_votes(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """Reset the global poll (admin only)."""
    deleted = await voting_service.delete_global_ballots(conn)
    return message_response("All votes deleted successfully", deletedCount=deleted)


@router.get("/candidate/{candidate_name}")
async def list_votes_for_candidate(
    candidate_name: str,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """Global poll ballots for one candidate (admin only)."""
    ballots = await voting_service.list_global_ballots(conn, candidate_name=candidate_name)
    return message_response(
        "Candidate votes retrieved successfully",
        candidateName=candidate_name,
        votes=dump(BallotOut, ballots),
        voteCount=len(ballots),
    )
