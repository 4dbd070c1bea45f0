"""API dependencies for authentication and authorization."""

from typing import Annotated, Any
from uuid import UUID

import asyncpg
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.database import get_db
from app.core.exceptions import Forbidden, InvalidState, NotFound, Unauthenticated
from app.core.logging_config import security_logger
from app.core.security import decode_access_token
from app.services.users import get_user_by_id, public_user

# auto_error=False: a missing header is 401 here, not FastAPI's 403
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    conn: Annotated[asyncpg.Connection, Depends(get_db)],
) -> dict:
    """
    Dependency to get the current authenticated user.

    A missing bearer token is 401; a token that is malformed, expired or
    badly signed is 403; a valid token for a deleted user is 404.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Access token required")

    payload = decode_access_token(credentials.credentials)
    try:
        user_id = UUID(str(payload.get("sub"))) if payload else None
    except ValueError:
        user_id = None

    if user_id is None:
        security_logger.log_unauthorized_access(
            request.url.path, reason="invalid or expired token"
        )
        raise Forbidden("Invalid or expired token")

    user = await get_user_by_id(conn, user_id)
    if user is None:
        raise NotFound("User not found")

    return public_user(user)


CurrentUser = Annotated[dict, Depends(get_current_user)]


def is_admin(user: dict[str, Any]) -> bool:
    return user.get("role") == "admin"


def is_creator(user: dict[str, Any], session: dict[str, Any]) -> bool:
    return session.get("created_by") is not None and session["created_by"] == str(
        user["id"]
    )


def is_creator_or_admin(user: dict[str, Any], session: dict[str, Any]) -> bool:
    return is_admin(user) or is_creator(user, session)


def is_assigned(user: dict[str, Any], session: dict[str, Any]) -> bool:
    return any(a["id"] == str(user["id"]) for a in session.get("assigned_users", []))


def is_assigned_or_admin(user: dict[str, Any], session: dict[str, Any]) -> bool:
    return is_admin(user) or is_assigned(user, session)


def require_admin(current_user: CurrentUser) -> dict:
    """
    Dependency to require admin role.

    Raises 403 if user is not an admin.
    """
    if not is_admin(current_user):
        security_logger.log_unauthorized_access(
            "admin", user_id=current_user["id"], reason="admin role required"
        )
        raise Forbidden("Admin access required")
    return current_user


AdminUser = Annotated[dict, Depends(require_admin)]


def require_user(current_user: CurrentUser) -> dict:
    """Dependency to require a voting role (user or admin)."""
    if current_user.get("role") not in ("user", "admin"):
        security_logger.log_unauthorized_access(
            "user", user_id=current_user["id"], reason="user role required"
        )
        raise Forbidden("User access required")
    return current_user


VoterUser = Annotated[dict, Depends(require_user)]


def ensure_found(session: dict[str, Any] | None) -> dict[str, Any]:
    if session is None:
        raise NotFound("Voting session not found")
    return session


def ensure_creator_or_admin(user: dict[str, Any], session: dict[str, Any]) -> None:
    """Session mutations are limited to its creator and admins."""
    if not is_creator_or_admin(user, session):
        security_logger.log_unauthorized_access(
            f"voting-session:{session['id']}",
            user_id=user["id"],
            reason="not creator or admin",
        )
        raise Forbidden("Access denied")


def ensure_can_edit(user: dict[str, Any], session: dict[str, Any]) -> None:
    """Admins edit any session; a non-admin creator only edits drafts."""
    ensure_creator_or_admin(user, session)
    if not is_admin(user) and session["status"] != "draft":
        raise InvalidState("Cannot update active or ended voting sessions")


def ensure_can_view(user: dict[str, Any], session: dict[str, Any]) -> None:
    if not (is_creator_or_admin(user, session) or is_assigned(user, session)):
        raise Forbidden("Access denied")


def ensure_assigned_or_admin(user: dict[str, Any], session: dict[str, Any]) -> None:
    if not is_assigned_or_admin(user, session):
        raise Forbidden("You are not assigned to this voting session")
