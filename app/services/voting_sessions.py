"""Voting session service functions.

A voting session is the unified poll entity: an ordered candidate list
(embedded JSONB), a set of assigned voters, an optional time window, a status
and configuration flags. The legacy global poll is the one session row with
``is_global = TRUE``; it is always active, has no window and is hidden from
every function here unless ``include_global`` is passed.
"""

import json
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

import asyncpg

from app.core.database import affected_rows
from app.core.exceptions import InvalidInput, InvalidState, NotFound
from app.core.logging_config import get_logger
from app.services.users import find_missing_user_ids

logger = get_logger(__name__)

GLOBAL_SESSION_ID = UUID("00000000-0000-0000-0000-000000000000")

STATUSES = ("draft", "active", "ended", "cancelled")
STATUS_ALIASES = {"closed": "ended"}

SESSION_COLUMNS = """
    s.id, s.title, s.description, s.candidates, s.status, s.start_date,
    s.end_date, s.allow_new_candidates, s.multiple_choice, s.max_choices,
    s.is_anonymous, s.is_global, s.created_by, s.created_at, s.updated_at,
    cu.username AS creator_username, cu.email AS creator_email
"""

BALLOT_STATUS_COLUMNS = """
    b.id AS ballot_id, b.candidate_name AS ballot_candidate_name,
    b.cast_at AS ballot_cast_at,
    b.is_custom_candidate AS ballot_is_custom_candidate
"""

UPDATABLE_FIELDS = {
    "title",
    "description",
    "candidates",
    "start_date",
    "end_date",
    "allow_new_candidates",
    "multiple_choice",
    "max_choices",
    "is_anonymous",
}


# ============================================
# VALIDATION HELPERS
# ============================================


def normalize_status(status: str) -> str:
    """Map accepted status spellings onto the stored vocabulary."""
    status = STATUS_ALIASES.get(status, status)
    if status not in STATUSES:
        raise InvalidInput(f"Invalid status: {status}")
    return status


def build_candidate(name: str | None, description: str | None = None) -> dict[str, str]:
    """Create an embedded candidate with a fresh identity."""
    name = (name or "").strip()
    if not name:
        raise InvalidInput("Candidate name is required")
    return {
        "id": str(uuid4()),
        "name": name,
        "description": (description or "").strip(),
    }


def build_candidates(raw: list[dict[str, Any]] | None) -> list[dict[str, str]]:
    """Normalize a candidate list, keeping ids that are already present."""
    candidates = []
    for item in raw or []:
        candidate = build_candidate(item.get("name"), item.get("description"))
        if item.get("id"):
            candidate["id"] = str(item["id"])
        candidates.append(candidate)
    return candidates


def validate_window(start_date: datetime | None, end_date: datetime | None) -> None:
    """A time window, when fully set, must end strictly after it starts."""
    if start_date is not None and end_date is not None and end_date <= start_date:
        raise InvalidInput("End date must be after start date")


def effective_max_choices(multiple_choice: bool, max_choices: int | None) -> int:
    return max(1, max_choices or 1) if multiple_choice else 1


# ============================================
# SESSION CRUD OPERATIONS
# ============================================


async def create_session(
    conn: asyncpg.Connection,
    title: str,
    created_by: UUID,
    description: str | None = None,
    candidates: list[dict[str, Any]] | None = None,
    assigned_user_ids: list[UUID] | None = None,
    allow_new_candidates: bool = False,
    multiple_choice: bool = False,
    max_choices: int = 1,
    is_anonymous: bool = False,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict[str, Any]:
    """Create a draft voting session with its candidates and assigned voters."""
    title = (title or "").strip()
    if not title:
        raise InvalidInput("Title is required")
    validate_window(start_date, end_date)
    embedded = build_candidates(candidates)
    assigned_user_ids = list(dict.fromkeys(assigned_user_ids or []))

    missing = await find_missing_user_ids(conn, assigned_user_ids)
    if missing:
        raise InvalidInput(f"Some assigned users do not exist: {', '.join(missing)}")

    async with conn.transaction():
        session_id = await conn.fetchval(
            """
            INSERT INTO voting_sessions (
                title, description, candidates, allow_new_candidates,
                multiple_choice, max_choices, is_anonymous, start_date,
                end_date, created_by
            )
            VALUES ($1, $2, $3::jsonb, $4, $5, $6, $7, $8, $9, $10)
            RETURNING id
            """,
            title,
            description.strip() if description else None,
            json.dumps(embedded),
            allow_new_candidates,
            multiple_choice,
            effective_max_choices(multiple_choice, max_choices),
            is_anonymous,
            start_date,
            end_date,
            str(created_by),
        )
        await _add_assignments(conn, session_id, assigned_user_ids)

    logger.info(f"Voting session created: {session_id} by {created_by}")
    return await get_session(conn, session_id)


async def get_session(
    conn: asyncpg.Connection,
    session_id: UUID,
    include_global: bool = False,
) -> dict[str, Any] | None:
    """Get a voting session with its creator and assigned voters."""
    query = f"""
        SELECT {SESSION_COLUMNS}
        FROM voting_sessions s
        LEFT JOIN users cu ON cu.id = s.created_by
        WHERE s.id = $1
    """
    if not include_global:
        query += " AND s.is_global = FALSE"

    row = await conn.fetchrow(query, str(session_id))
    if not row:
        return None

    session = _parse_session_row(row)
    assignees = await conn.fetch(
        """
        SELECT u.id, u.username, u.email
        FROM voting_session_users vsu
        JOIN users u ON u.id = vsu.user_id
        WHERE vsu.session_id = $1
        ORDER BY vsu.assigned_at, u.username
        """,
        str(session_id),
    )
    session["assigned_users"] = [_parse_user_ref(a) for a in assignees]
    return session


async def get_session_for_vote(
    conn: asyncpg.Connection, session_id: UUID, user_id: UUID
) -> dict[str, Any] | None:
    """Load what the voting engine needs in one read, including assignment."""
    row = await conn.fetchrow(
        """
        SELECT s.id, s.title, s.status, s.start_date, s.end_date,
               s.allow_new_candidates, s.candidates, s.is_global,
               EXISTS (
                   SELECT 1 FROM voting_session_users vsu
                   WHERE vsu.session_id = s.id AND vsu.user_id = $2
               ) AS is_assigned
        FROM voting_sessions s
        WHERE s.id = $1
        """,
        str(session_id),
        str(user_id),
    )
    return _parse_session_row(row) if row else None


async def list_sessions(
    conn: asyncpg.Connection, status: str | None = None
) -> list[dict[str, Any]]:
    """List voting sessions, newest first, with ballot statistics.

    status filters by lifecycle state; "closed" is accepted for "ended".
    """
    query = f"""
        SELECT {SESSION_COLUMNS},
               COALESCE(bs.total_votes, 0) AS total_votes,
               COALESCE(bs.total_candidates, 0) AS total_candidates
        FROM voting_sessions s
        LEFT JOIN users cu ON cu.id = s.created_by
        LEFT JOIN (
            SELECT session_id,
                   COUNT(*) AS total_votes,
                   COUNT(DISTINCT candidate_name) AS total_candidates
            FROM ballots
            GROUP BY session_id
        ) bs ON bs.session_id = s.id
        WHERE s.is_global = FALSE
    """
    params: list[Any] = []
    if status:
        params.append(normalize_status(status))
        query += f" AND s.status = ${len(params)}"
    query += " ORDER BY s.created_at DESC"

    rows = await conn.fetch(query, *params)
    sessions = [_parse_session_row(row) for row in rows]
    await _attach_assignees(conn, sessions)
    return sessions


async def list_open_sessions_for_user(
    conn: asyncpg.Connection,
    user_id: UUID,
    now: datetime,
    end_inclusive: bool = False,
) -> list[dict[str, Any]]:
    """Active sessions the user is assigned to whose window contains now."""
    end_op = ">=" if end_inclusive else ">"
    rows = await conn.fetch(
        f"""
        SELECT {SESSION_COLUMNS}, {BALLOT_STATUS_COLUMNS}
        FROM voting_sessions s
        JOIN voting_session_users vsu ON vsu.session_id = s.id AND vsu.user_id = $1
        LEFT JOIN users cu ON cu.id = s.created_by
        LEFT JOIN ballots b ON b.session_id = s.id AND b.user_id = $1
        WHERE s.status = 'active'
          AND s.is_global = FALSE
          AND (s.start_date IS NULL OR s.start_date <= $2)
          AND (s.end_date IS NULL OR s.end_date {end_op} $2)
        ORDER BY s.start_date NULLS FIRST, s.created_at DESC
        """,
        str(user_id),
        now,
    )
    return [_parse_vote_status_row(row) for row in rows]


async def list_assigned_sessions_for_user(
    conn: asyncpg.Connection,
    user_id: UUID,
    status: str | None = None,
    include_ended: bool = False,
) -> list[dict[str, Any]]:
    """Every session the user is assigned to, with their vote status.

    Without a status filter only draft and active sessions are returned,
    unless include_ended is set.
    """
    query = f"""
        SELECT {SESSION_COLUMNS}, {BALLOT_STATUS_COLUMNS}
        FROM voting_sessions s
        JOIN voting_session_users vsu ON vsu.session_id = s.id AND vsu.user_id = $1
        LEFT JOIN users cu ON cu.id = s.created_by
        LEFT JOIN ballots b ON b.session_id = s.id AND b.user_id = $1
        WHERE s.is_global = FALSE
    """
    params: list[Any] = [str(user_id)]
    if status:
        params.append(normalize_status(status))
        query += f" AND s.status = ${len(params)}"
    elif not include_ended:
        query += " AND s.status IN ('draft', 'active')"
    query += " ORDER BY s.start_date NULLS FIRST, s.created_at DESC"

    rows = await conn.fetch(query, *params)
    return [_parse_vote_status_row(row) for row in rows]


async def update_session(
    conn: asyncpg.Connection,
    session_id: UUID,
    assigned_user_ids: list[UUID] | None = None,
    **kwargs: Any,
) -> dict[str, Any] | None:
    """Update session details; assigned_user_ids, when given, replaces the set.

    Status is not updatable here; it only moves through the lifecycle
    operations below.
    """
    existing = await get_session(conn, session_id)
    if not existing:
        return None

    fields = {k: v for k, v in kwargs.items() if k in UPDATABLE_FIELDS}

    if "title" in fields:
        fields["title"] = (fields["title"] or "").strip()
        if not fields["title"]:
            raise InvalidInput("Title is required")

    validate_window(
        fields.get("start_date", existing["start_date"]),
        fields.get("end_date", existing["end_date"]),
    )

    if "candidates" in fields:
        fields["candidates"] = json.dumps(build_candidates(fields["candidates"]))

    if "multiple_choice" in fields or "max_choices" in fields:
        multiple_choice = fields.get("multiple_choice", existing["multiple_choice"])
        fields["max_choices"] = effective_max_choices(
            multiple_choice, fields.get("max_choices", existing["max_choices"])
        )

    if assigned_user_ids is not None:
        assigned_user_ids = list(dict.fromkeys(assigned_user_ids))
        missing = await find_missing_user_ids(conn, assigned_user_ids)
        if missing:
            raise InvalidInput(
                f"Some assigned users do not exist: {', '.join(missing)}"
            )

    updates: list[str] = []
    params: list[Any] = []
    for field, value in fields.items():
        params.append(value)
        cast = "::jsonb" if field == "candidates" else ""
        updates.append(f"{field} = ${len(params)}{cast}")

    async with conn.transaction():
        updates.append("updated_at = CURRENT_TIMESTAMP")
        params.append(str(session_id))
        await conn.execute(
            f"""
            UPDATE voting_sessions
            SET {", ".join(updates)}
            WHERE id = ${len(params)} AND is_global = FALSE
            """,
            *params,
        )
        if assigned_user_ids is not None:
            await conn.execute(
                "DELETE FROM voting_session_users WHERE session_id = $1",
                str(session_id),
            )
            await _add_assignments(conn, session_id, assigned_user_ids)

    return await get_session(conn, session_id)


async def delete_session(
    conn: asyncpg.Connection, session_id: UUID
) -> tuple[dict[str, Any] | None, int]:
    """Delete a session and its ballots in one transaction.

    Returns (deleted_session, ballots_removed); deleted_session is None when
    no such session exists.
    """
    async with conn.transaction():
        ballots_status = await conn.execute(
            """
            DELETE FROM ballots b
            USING voting_sessions s
            WHERE b.session_id = s.id AND s.id = $1 AND s.is_global = FALSE
            """,
            str(session_id),
        )
        row = await conn.fetchrow(
            """
            DELETE FROM voting_sessions
            WHERE id = $1 AND is_global = FALSE
            RETURNING id, title, status
            """,
            str(session_id),
        )
    if row is None:
        return None, 0

    removed = affected_rows(ballots_status)
    logger.info(f"Voting session deleted: {session_id} ({removed} ballots removed)")
    return {"id": str(row["id"]), "title": row["title"], "status": row["status"]}, removed


# ============================================
# ASSIGNED VOTERS
# ============================================


async def assign_users(
    conn: asyncpg.Connection, session_id: UUID, user_ids: list[UUID]
) -> dict[str, Any] | None:
    """Add voters to a session; already-assigned voters are left as they are."""
    if not user_ids:
        raise InvalidInput("User IDs array is required")

    missing = await find_missing_user_ids(conn, user_ids)
    if missing:
        raise InvalidInput("Some user IDs are invalid")

    if not await _session_exists(conn, session_id):
        return None

    await _add_assignments(conn, session_id, list(dict.fromkeys(user_ids)))
    return await get_session(conn, session_id)


async def remove_users(
    conn: asyncpg.Connection, session_id: UUID, user_ids: list[UUID]
) -> dict[str, Any] | None:
    """Remove voters from a session. Ballots they already cast are kept."""
    if not user_ids:
        raise InvalidInput("User IDs array is required")

    if not await _session_exists(conn, session_id):
        return None

    await conn.execute(
        """
        DELETE FROM voting_session_users
        WHERE session_id = $1 AND user_id = ANY($2::uuid[])
        """,
        str(session_id),
        [str(user_id) for user_id in user_ids],
    )
    return await get_session(conn, session_id)


# ============================================
# CANDIDATES
# ============================================


async def add_candidate(
    conn: asyncpg.Connection,
    session_id: UUID,
    name: str | None,
    description: str | None = None,
) -> tuple[dict[str, Any] | None, dict[str, str]]:
    """Append a candidate to the session's ordered list."""
    candidate = build_candidate(name, description)
    updated = await conn.fetchval(
        """
        UPDATE voting_sessions
        SET candidates = candidates || $2::jsonb, updated_at = CURRENT_TIMESTAMP
        WHERE id = $1 AND is_global = FALSE
        RETURNING id
        """,
        str(session_id),
        json.dumps([candidate]),
    )
    if updated is None:
        return None, candidate
    return await get_session(conn, session_id), candidate


async def remove_candidate(
    conn: asyncpg.Connection, session_id: UUID, candidate_id: UUID
) -> dict[str, Any] | None:
    """Remove a candidate by id, preserving the order of the others."""
    session = await get_session(conn, session_id)
    if not session:
        return None

    if not any(c["id"] == str(candidate_id) for c in session["candidates"]):
        raise NotFound("Candidate not found in this voting session")

    await conn.execute(
        """
        UPDATE voting_sessions
        SET candidates = COALESCE(
                (
                    SELECT jsonb_agg(c.value ORDER BY c.ord)
                    FROM jsonb_array_elements(candidates) WITH ORDINALITY AS c(value, ord)
                    WHERE c.value->>'id' <> $2
                ),
                '[]'::jsonb
            ),
            updated_at = CURRENT_TIMESTAMP
        WHERE id = $1 AND is_global = FALSE
        """,
        str(session_id),
        str(candidate_id),
    )
    return await get_session(conn, session_id)


# ============================================
# SESSION LIFECYCLE MANAGEMENT
# ============================================


async def activate_session(conn: asyncpg.Connection, session_id: UUID) -> dict[str, Any]:
    """draft -> active."""
    return await _transition(
        conn,
        session_id,
        to_status="active",
        from_statuses=("draft",),
        error="Only draft voting sessions can be activated",
    )


async def end_session(conn: asyncpg.Connection, session_id: UUID) -> dict[str, Any]:
    """draft/active -> ended."""
    return await _transition(
        conn,
        session_id,
        to_status="ended",
        from_statuses=("draft", "active"),
        error="Voting session is already ended",
    )


async def cancel_session(conn: asyncpg.Connection, session_id: UUID) -> dict[str, Any]:
    """draft/active -> cancelled."""
    return await _transition(
        conn,
        session_id,
        to_status="cancelled",
        from_statuses=("draft", "active"),
        error="Only draft or active voting sessions can be cancelled",
    )


async def _transition(
    conn: asyncpg.Connection,
    session_id: UUID,
    to_status: str,
    from_statuses: tuple[str, ...],
    error: str,
) -> dict[str, Any]:
    current = await conn.fetchval(
        "SELECT status FROM voting_sessions WHERE id = $1 AND is_global = FALSE",
        str(session_id),
    )
    if current is None:
        raise NotFound("Voting session not found")

    if current not in from_statuses:
        if current == "cancelled" and to_status == "ended":
            raise InvalidState("Cancelled voting sessions cannot be ended")
        raise InvalidState(error)

    # Conditional on the source state so racing transitions cannot both apply
    updated = await conn.fetchval(
        """
        UPDATE voting_sessions
        SET status = $1, updated_at = CURRENT_TIMESTAMP
        WHERE id = $2 AND status = ANY($3::varchar[]) AND is_global = FALSE
        RETURNING id
        """,
        to_status,
        str(session_id),
        list(from_statuses),
    )
    if updated is None:
        raise InvalidState(error)

    logger.info(f"Voting session {session_id}: {current} -> {to_status}")
    return await get_session(conn, session_id)


async def get_session_stats(conn: asyncpg.Connection) -> dict[str, Any]:
    """Count sessions by status."""
    rows = await conn.fetch(
        """
        SELECT status, COUNT(*) AS count
        FROM voting_sessions
        WHERE is_global = FALSE
        GROUP BY status
        """
    )
    by_status = {row["status"]: int(row["count"]) for row in rows}
    return {"total": sum(by_status.values()), "by_status": by_status}


async def ensure_global_session(conn: asyncpg.Connection) -> None:
    """Make sure the implicit global poll session exists and is votable."""
    await conn.execute(
        """
        INSERT INTO voting_sessions (id, title, description, status, allow_new_candidates, is_global)
        VALUES ($1, 'Global poll', 'Implicit session for votes cast outside any voting session',
                'active', TRUE, TRUE)
        ON CONFLICT (id) DO UPDATE SET status = 'active'
        """,
        str(GLOBAL_SESSION_ID),
    )


# ============================================
# HELPER FUNCTIONS
# ============================================


async def _session_exists(conn: asyncpg.Connection, session_id: UUID) -> bool:
    result = await conn.fetchval(
        "SELECT EXISTS (SELECT 1 FROM voting_sessions WHERE id = $1 AND is_global = FALSE)",
        str(session_id),
    )
    return bool(result)


async def _add_assignments(
    conn: asyncpg.Connection, session_id: UUID | str, user_ids: list[UUID]
) -> None:
    if not user_ids:
        return
    await conn.execute(
        """
        INSERT INTO voting_session_users (session_id, user_id)
        SELECT $1, unnest($2::uuid[])
        ON CONFLICT DO NOTHING
        """,
        str(session_id),
        [str(user_id) for user_id in user_ids],
    )


async def _attach_assignees(
    conn: asyncpg.Connection, sessions: list[dict[str, Any]]
) -> None:
    if not sessions:
        return
    rows = await conn.fetch(
        """
        SELECT vsu.session_id, u.id, u.username, u.email
        FROM voting_session_users vsu
        JOIN users u ON u.id = vsu.user_id
        WHERE vsu.session_id = ANY($1::uuid[])
        ORDER BY vsu.assigned_at, u.username
        """,
        [s["id"] for s in sessions],
    )
    by_session: dict[str, list[dict[str, Any]]] = {s["id"]: [] for s in sessions}
    for row in rows:
        by_session[str(row["session_id"])].append(_parse_user_ref(row))
    for session in sessions:
        session["assigned_users"] = by_session[session["id"]]


def _parse_user_ref(row: asyncpg.Record) -> dict[str, Any]:
    return {"id": str(row["id"]), "username": row["username"], "email": row["email"]}


def _parse_session_row(row: asyncpg.Record | None) -> dict[str, Any] | None:
    """Parse a voting session row into a dict."""
    if not row:
        return None

    result = dict(row)

    for field in ("id", "created_by"):
        if result.get(field) is not None:
            result[field] = str(result[field])

    candidates = result.get("candidates")
    if isinstance(candidates, str):
        result["candidates"] = json.loads(candidates)
    elif candidates is None and "candidates" in result:
        result["candidates"] = []

    if "creator_username" in result:
        creator_username = result.pop("creator_username")
        creator_email = result.pop("creator_email", None)
        result["creator"] = (
            {
                "id": result["created_by"],
                "username": creator_username,
                "email": creator_email,
            }
            if result.get("created_by")
            else None
        )

    return result


def _parse_vote_status_row(row: asyncpg.Record) -> dict[str, Any]:
    """Parse a session row joined with the caller's ballot, if any."""
    session = _parse_session_row(row)
    ballot_id = session.pop("ballot_id")
    candidate_name = session.pop("ballot_candidate_name")
    cast_at = session.pop("ballot_cast_at")
    is_custom = session.pop("ballot_is_custom_candidate")
    session["has_voted"] = ballot_id is not None
    session["user_vote"] = (
        {
            "candidate_name": candidate_name,
            "cast_at": cast_at,
            "is_custom_candidate": is_custom,
        }
        if ballot_id is not None
        else None
    )
    return session
