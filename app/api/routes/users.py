"""User management routes (admin only)."""

from typing import Annotated
from uuid import UUID

import asyncpg
from fastapi import APIRouter, Depends, Query

from app.api.deps import AdminUser
from app.api.schemas import UserOut, UserStatsOut, UserWithVoteOut, dump
from app.core.database import get_db
from app.core.exceptions import Forbidden, InvalidInput, NotFound
from app.core.logging_config import get_logger, security_logger
from app.core.responses import ErrorResponse, message_response
from app.services import users as user_service
from app.services import voting as voting_service
from app.services.voting_sessions import GLOBAL_SESSION_ID

router = APIRouter(
    prefix="/users",
    tags=["Users"],
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
logger = get_logger(__name__)


@router.get("")
async def list_users(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
    role: str | None = Query(None, description="Filter by role: user or admin"),
):
    """List all users, newest first."""
    if role is not None and role not in ("user", "admin"):
        raise InvalidInput("Role must be 'user' or 'admin'")
    users = await user_service.list_users(conn, role=role)
    return message_response(
        "Users retrieved successfully",
        users=dump(UserOut, [user_service.public_user(u) for u in users]),
        count=len(users),
    )


@router.get("/stats")
async def get_user_stats(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """User counts and voting participation."""
    stats = await user_service.get_user_stats(conn)
    return message_response(
        "User statistics retrieved successfully", stats=dump(UserStatsOut, stats)
    )


@router.get("/with-votes")
async def list_users_with_votes(
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """Regular users with their global poll ballot, if any."""
    users = await user_service.list_users_with_global_vote(conn, GLOBAL_SESSION_ID)
    voted_count = sum(1 for u in users if u["has_voted"])
    return message_response(
        "Users with vote status retrieved successfully",
        users=dump(UserWithVoteOut, [user_service.public_user(u) for u in users]),
        totalUsers=len(users),
        votedCount=voted_count,
    )


@router.get("/{user_id}")
async def get_user(
    user_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """Get one user with their global poll vote status."""
    user = await user_service.get_user_by_id(conn, user_id)
    if not user:
        raise NotFound("User not found")

    ballot = await voting_service.get_user_ballot(conn, user_id, GLOBAL_SESSION_ID)
    user = user_service.public_user(user)
    user["has_voted"] = ballot is not None
    user["voted_for"] = ballot["candidate_name"] if ballot else None
    user["vote_timestamp"] = ballot["cast_at"] if ballot else None

    return message_response(
        "User retrieved successfully", user=dump(UserWithVoteOut, user)
    )


@router.delete("/{user_id}")
async def delete_user(
    user_id: UUID,
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
    current_user: AdminUser,
):
    """
    Delete a user account and every ballot it cast.

    Admins cannot delete themselves or other admins.
    """
    if str(user_id) == current_user["id"]:
        raise Forbidden("Cannot delete your own account")

    target = await user_service.get_user_by_id(conn, user_id)
    if not target:
        raise NotFound("User not found")
    if target["role"] == "admin":
        raise Forbidden("Cannot delete admin users")

    deleted, ballots_removed = await user_service.delete_user(conn, user_id)
    if deleted is None:
        raise NotFound("User not found")

    security_logger.log_user_deletion(
        deleted["id"], deleted["username"], current_user["id"], ballots_removed
    )
    return message_response(
        "User and associated votes deleted successfully",
        deletedUser=dump(UserOut, user_service.public_user(deleted)),
        votesDeleted=ballots_removed,
    )
