"""User service functions."""

from typing import Any
from uuid import UUID

import asyncpg

from app.core.config import Settings
from app.core.database import affected_rows
from app.core.exceptions import Conflict
from app.core.logging_config import get_logger
from app.core.security import hash_password

logger = get_logger(__name__)

USER_COLUMNS = "id, username, email, password_hash, role, created_at"


async def create_user(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection,
    username: str,
    email: str,
    password_hash: str,
    role: str = "user",
) -> dict[str, Any]:
    """Create a new user.

    Username and email uniqueness is enforced by the table constraints; a
    concurrent duplicate registration surfaces as Conflict.
    """
    try:
        result = await conn.fetchrow(
            f"""
            INSERT INTO users (username, email, password_hash, role)
            VALUES ($1, $2, $3, $4)
            RETURNING {USER_COLUMNS}
            """,
            username,
            email.lower(),
            password_hash,
            role,
        )
    except asyncpg.exceptions.UniqueViolationError as e:
        raise Conflict("User with this username or email already exists") from e
    return _parse_user_row(result)


async def get_user_by_id(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection, user_id: UUID
) -> dict[str, Any] | None:
    """Get user by ID."""
    result = await conn.fetchrow(
        f"SELECT {USER_COLUMNS} FROM users WHERE id = $1",
        str(user_id),
    )
    return _parse_user_row(result) if result else None


async def get_user_by_login(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection, identifier: str
) -> dict[str, Any] | None:
    """Get user by username or email."""
    result = await conn.fetchrow(
        f"""
        SELECT {USER_COLUMNS}
        FROM users
        WHERE username = $1 OR email = lower($1)
        LIMIT 1
        """,
        identifier,
    )
    return _parse_user_row(result) if result else None


async def user_exists(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection, username: str, email: str
) -> bool:
    """Check whether the username or email is already taken."""
    result = await conn.fetchval(
        "SELECT EXISTS(SELECT 1 FROM users WHERE username = $1 OR email = lower($2))",
        username,
        email,
    )
    return bool(result)


async def find_missing_user_ids(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection, user_ids: list[UUID]
) -> list[str]:
    """Return the ids in user_ids that do not belong to any user."""
    if not user_ids:
        return []
    rows = await conn.fetch(
        "SELECT id FROM users WHERE id = ANY($1::uuid[])",
        [str(user_id) for user_id in user_ids],
    )
    found = {str(row["id"]) for row in rows}
    return [str(user_id) for user_id in user_ids if str(user_id) not in found]


async def list_users(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection, role: str | None = None
) -> list[dict[str, Any]]:
    """List users, newest first, optionally filtered by role."""
    query = f"SELECT {USER_COLUMNS} FROM users"
    params: list[Any] = []

    if role:
        params.append(role)
        query += f" WHERE role = ${len(params)}"

    query += " ORDER BY created_at DESC"

    rows = await conn.fetch(query, *params)
    return [_parse_user_row(row) for row in rows]


async def list_users_with_global_vote(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection, global_session_id: UUID
) -> list[dict[str, Any]]:
    """List regular users together with their ballot in the global poll, if any."""
    rows = await conn.fetch(
        """
        SELECT u.id, u.username, u.email, u.password_hash, u.role, u.created_at,
               b.candidate_name AS voted_for, b.cast_at AS vote_timestamp
        FROM users u
        LEFT JOIN ballots b ON b.user_id = u.id AND b.session_id = $1
        WHERE u.role = 'user'
        ORDER BY u.created_at DESC
        """,
        str(global_session_id),
    )
    users = []
    for row in rows:
        user = _parse_user_row(row)
        user["has_voted"] = row["voted_for"] is not None
        users.append(user)
    return users


async def delete_user(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection, user_id: UUID
) -> tuple[dict[str, Any] | None, int]:
    """Delete a user and the ballots it cast.

    Ballots are removed first, then the user row, inside one transaction.
    Returns (deleted_user, ballots_removed); deleted_user is None when the
    user did not exist.
    """
    async with conn.transaction():
        ballots_status = await conn.execute(
            "DELETE FROM ballots WHERE user_id = $1", str(user_id)
        )
        result = await conn.fetchrow(
            f"DELETE FROM users WHERE id = $1 RETURNING {USER_COLUMNS}",
            str(user_id),
        )
    if result is None:
        return None, 0
    return _parse_user_row(result), affected_rows(ballots_status)


async def get_user_stats(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection,
) -> dict[str, int]:
    """Aggregate user and participation counts."""
    row = await conn.fetchrow(
        """
        SELECT
            COUNT(*) AS total_users,
            COUNT(*) FILTER (WHERE role = 'user') AS regular_users,
            COUNT(*) FILTER (WHERE role = 'admin') AS admin_users,
            COUNT(*) FILTER (
                WHERE role = 'user'
                AND EXISTS (SELECT 1 FROM ballots b WHERE b.user_id = users.id)
            ) AS users_who_voted,
            (SELECT COUNT(*) FROM ballots) AS total_votes
        FROM users
        """
    )
    stats = {key: int(row[key] or 0) for key in row.keys()}
    stats["users_who_not_voted"] = stats["regular_users"] - stats["users_who_voted"]
    return stats


async def ensure_default_admin(  # type: ignore[no-any-unimported]
    conn: asyncpg.Connection, settings: Settings
) -> bool:
    """Create the default admin account once. Returns True if it was created."""
    existing = await get_user_by_login(conn, settings.DEFAULT_ADMIN_USERNAME)
    if existing:
        return False

    status = await conn.execute(
        """
        INSERT INTO users (username, email, password_hash, role)
        VALUES ($1, $2, $3, 'admin')
        ON CONFLICT DO NOTHING
        """,
        settings.DEFAULT_ADMIN_USERNAME,
        settings.DEFAULT_ADMIN_EMAIL.lower(),
        hash_password(settings.DEFAULT_ADMIN_PASSWORD),
    )
    created = affected_rows(status) > 0
    if created:
        logger.info(f"Default admin user created: {settings.DEFAULT_ADMIN_USERNAME}")
    return created


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    """Copy of a user row without the password hash."""
    return {key: value for key, value in user.items() if key != "password_hash"}


def _parse_user_row(row: asyncpg.Record) -> dict[str, Any]:
    """Parse a user row into a dict."""
    result = dict(row)
    if result.get("id") is not None:
        result["id"] = str(result["id"])
    return result
