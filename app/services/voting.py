"""Voting service functions: casting ballots and aggregating results."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import asyncpg

from app.core.exceptions import Conflict, Forbidden, InvalidInput, InvalidState, NotFound
from app.core.logging_config import get_logger
from app.services.voting_sessions import GLOBAL_SESSION_ID, get_session_for_vote

logger = get_logger(__name__)

BALLOT_COLUMNS = """
    b.id, b.user_id, b.session_id, b.candidate_id, b.candidate_name,
    b.is_custom_candidate, b.cast_at
"""


# ============================================
# BALLOT ELIGIBILITY
# ============================================


def check_ballot_eligibility(
    session: dict[str, Any] | None,
    candidate_name: str | None,
    candidate_id: UUID | None = None,
    is_custom_candidate: bool = False,
    now: datetime | None = None,
    end_inclusive: bool = False,
) -> str:
    """Run the ordered ballot checks against a loaded session.

    Returns the trimmed candidate name to store. The first failing check
    raises.
    """
    if session is None:
        raise NotFound("Voting session not found")

    if not session["is_global"] and not session["is_assigned"]:
        raise Forbidden("You are not assigned to this voting session")

    if session["status"] != "active":
        raise InvalidState("Voting session is not active")

    now = now or datetime.now(UTC)
    start_date, end_date = session.get("start_date"), session.get("end_date")
    if start_date is not None and now < start_date:
        raise InvalidState("Voting session has not started yet")
    if end_date is not None and (now > end_date if end_inclusive else now >= end_date):
        raise InvalidState("Voting session has ended")

    if is_custom_candidate and not session["allow_new_candidates"]:
        raise InvalidState(
            "Adding new candidates is not allowed for this voting session"
        )

    if candidate_id is not None and not is_custom_candidate:
        if not any(c["id"] == str(candidate_id) for c in session["candidates"]):
            raise InvalidInput("Candidate not found in this voting session")

    name = (candidate_name or "").strip()
    if not name:
        raise InvalidInput("Candidate name is required")
    return name


# ============================================
# CASTING
# ============================================


async def cast_ballot(
    conn: asyncpg.Connection,
    user_id: UUID,
    session_id: UUID,
    candidate_name: str | None,
    candidate_id: UUID | None = None,
    is_custom_candidate: bool = False,
    end_inclusive: bool = False,
    duplicate_message: str = "User has already voted in this voting session",
) -> dict[str, Any]:
    """Cast the user's one ballot in a session.

    The UNIQUE (user_id, session_id) constraint decides duplicates; there is
    no read-before-write check, so concurrent casts yield exactly one ballot.
    """
    session = await get_session_for_vote(conn, session_id, user_id)
    name = check_ballot_eligibility(
        session,
        candidate_name,
        candidate_id=candidate_id,
        is_custom_candidate=is_custom_candidate,
        end_inclusive=end_inclusive,
    )

    try:
        row = await conn.fetchrow(
            """
            INSERT INTO ballots (user_id, session_id, candidate_id, candidate_name, is_custom_candidate)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (user_id, session_id) DO NOTHING
            RETURNING id, user_id, session_id, candidate_id, candidate_name,
                      is_custom_candidate, cast_at
            """,
            str(user_id),
            str(session_id),
            str(candidate_id) if candidate_id and not is_custom_candidate else None,
            name,
            is_custom_candidate,
        )
    except asyncpg.exceptions.UniqueViolationError as e:
        raise Conflict(duplicate_message) from e
    except asyncpg.exceptions.ForeignKeyViolationError as e:
        # Session or user deleted between the read and the insert
        raise NotFound("Voting session not found") from e

    if row is None:
        raise Conflict(duplicate_message)

    logger.info(f"Ballot cast: user={user_id} session={session_id}")
    return _parse_ballot_row(row)


async def cast_global_vote(
    conn: asyncpg.Connection, user_id: UUID, candidate_name: str | None
) -> dict[str, Any]:
    """Cast the user's one ballot in the legacy global poll."""
    return await cast_ballot(
        conn,
        user_id,
        GLOBAL_SESSION_ID,
        candidate_name,
        duplicate_message="User has already voted",
    )


# ============================================
# RESULTS
# ============================================


def build_results(
    rows: list[asyncpg.Record] | list[dict[str, Any]],
    total_votes: int,
    include_custom_counts: bool = True,
) -> dict[str, Any]:
    """Shape grouped (candidate_name, vote_count) rows into a results summary."""
    results = []
    for row in rows:
        entry: dict[str, Any] = {
            "candidate_name": row["candidate_name"],
            "vote_count": int(row["vote_count"]),
        }
        if include_custom_counts:
            entry["custom_candidate_count"] = int(row["custom_candidate_count"] or 0)
        results.append(entry)

    results.sort(key=lambda r: r["vote_count"], reverse=True)
    candidates = sorted(r["candidate_name"] for r in results)
    return {
        "results": results,
        "total_votes": int(total_votes or 0),
        "total_candidates": len(candidates),
        "candidates": candidates,
    }


async def get_session_results(
    conn: asyncpg.Connection,
    session_id: UUID,
    include_custom_counts: bool = True,
) -> dict[str, Any]:
    """Aggregate a session's ballots from a single snapshot."""
    async with conn.transaction(isolation="repeatable_read", readonly=True):
        rows = await conn.fetch(
            """
            SELECT candidate_name,
                   COUNT(*) AS vote_count,
                   COUNT(*) FILTER (WHERE is_custom_candidate) AS custom_candidate_count
            FROM ballots
            WHERE session_id = $1
            GROUP BY candidate_name
            ORDER BY vote_count DESC
            """,
            str(session_id),
        )
        total = await conn.fetchval(
            "SELECT COUNT(*) FROM ballots WHERE session_id = $1", str(session_id)
        )
    return build_results(rows, total, include_custom_counts)


async def get_global_results(conn: asyncpg.Connection) -> dict[str, Any]:
    return await get_session_results(
        conn, GLOBAL_SESSION_ID, include_custom_counts=False
    )


# ============================================
# BALLOT QUERIES
# ============================================


async def get_user_ballot(
    conn: asyncpg.Connection, user_id: UUID, session_id: UUID
) -> dict[str, Any] | None:
    """Get the user's ballot in a session, if any."""
    row = await conn.fetchrow(
        f"""
        SELECT {BALLOT_COLUMNS}
        FROM ballots b
        WHERE b.user_id = $1 AND b.session_id = $2
        """,
        str(user_id),
        str(session_id),
    )
    return _parse_ballot_row(row)


async def list_session_ballots(
    conn: asyncpg.Connection,
    session_id: UUID,
    anonymous: bool = False,
) -> list[dict[str, Any]]:
    """List a session's ballots, newest first.

    With anonymous=True the voter identity is left out of every entry.
    """
    rows = await conn.fetch(
        f"""
        SELECT {BALLOT_COLUMNS}, u.username, u.email
        FROM ballots b
        LEFT JOIN users u ON u.id = b.user_id
        WHERE b.session_id = $1
        ORDER BY b.cast_at DESC
        """,
        str(session_id),
    )
    ballots = []
    for row in rows:
        ballot = _parse_ballot_row(row)
        username = ballot.pop("username", None)
        email = ballot.pop("email", None)
        if anonymous:
            ballot.pop("user_id", None)
            ballot["user"] = None
        else:
            ballot["user"] = {"id": ballot["user_id"], "username": username, "email": email}
        ballots.append(ballot)
    return ballots


async def list_user_ballots(
    conn: asyncpg.Connection, user_id: UUID
) -> list[dict[str, Any]]:
    """The user's ballots across every voting session, newest first."""
    rows = await conn.fetch(
        f"""
        SELECT {BALLOT_COLUMNS}, s.title AS session_title, s.status AS session_status
        FROM ballots b
        JOIN voting_sessions s ON s.id = b.session_id
        WHERE b.user_id = $1 AND s.is_global = FALSE
        ORDER BY b.cast_at DESC
        """,
        str(user_id),
    )
    return [_parse_ballot_row(row) for row in rows]


async def list_global_ballots(
    conn: asyncpg.Connection, candidate_name: str | None = None
) -> list[dict[str, Any]]:
    """Global poll ballots with voter details, optionally for one candidate."""
    query = f"""
        SELECT {BALLOT_COLUMNS}, u.username, u.email
        FROM ballots b
        LEFT JOIN users u ON u.id = b.user_id
        WHERE b.session_id = $1
    """
    params: list[Any] = [str(GLOBAL_SESSION_ID)]
    if candidate_name is not None:
        params.append(candidate_name)
        query += f" AND b.candidate_name = ${len(params)}"
    query += " ORDER BY b.cast_at DESC"

    rows = await conn.fetch(query, *params)
    ballots = []
    for row in rows:
        ballot = _parse_ballot_row(row)
        ballot["user"] = {
            "id": ballot["user_id"],
            "username": ballot.pop("username", None),
            "email": ballot.pop("email", None),
        }
        ballots.append(ballot)
    return ballots


async def list_global_candidates(conn: asyncpg.Connection) -> list[str]:
    """Distinct candidate names voted for in the global poll, sorted."""
    rows = await conn.fetch(
        """
        SELECT DISTINCT candidate_name
        FROM ballots
        WHERE session_id = $1
        ORDER BY candidate_name
        """,
        str(GLOBAL_SESSION_ID),
    )
    return [row["candidate_name"] for row in rows]


async def delete_global_ballots(conn: asyncpg.Connection) -> int:
    """Reset the global poll. Returns the number of ballots removed."""
    deleted = await conn.fetchval(
        """
        WITH removed AS (
            DELETE FROM ballots WHERE session_id = $1 RETURNING id
        )
        SELECT COUNT(*) FROM removed
        """,
        str(GLOBAL_SESSION_ID),
    )
    logger.warning(f"Global poll reset: {deleted} ballots removed")
    return int(deleted or 0)


def _parse_ballot_row(row: asyncpg.Record | None) -> dict[str, Any] | None:
    """Parse a ballot row into a dict."""
    if not row:
        return None

    result = dict(row)
    for field in ("id", "user_id", "session_id", "candidate_id"):
        if result.get(field) is not None:
            result[field] = str(result[field])
    return result
