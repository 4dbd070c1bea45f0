"""
Response schemas: service dicts (snake_case) in, camelCase JSON out.

Organised by resource:
    1. Users
    2. Voting sessions
    3. Ballots and results
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input, serialises camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def dump(model: type[CamelModel], data: Any) -> Any:
    """Serialise a service dict (or list of dicts) through a response model."""
    if data is None:
        return None
    if isinstance(data, list):
        return [dump(model, item) for item in data]
    return model.model_validate(data).model_dump(
        by_alias=True, mode="json", exclude_unset=True
    )


# ══════════════════════════════════════════════════════════════════════════════
# 1. USERS
# ══════════════════════════════════════════════════════════════════════════════


class UserRef(CamelModel):
    id: str
    username: str | None = None
    email: str | None = None


class UserOut(CamelModel):
    id: str
    username: str
    email: str
    role: str
    created_at: datetime | None = None


class UserWithVoteOut(UserOut):
    has_voted: bool = False
    voted_for: str | None = None
    vote_timestamp: datetime | None = None


class UserStatsOut(CamelModel):
    total_users: int
    regular_users: int
    admin_users: int
    users_who_voted: int
    users_who_not_voted: int
    total_votes: int


# ══════════════════════════════════════════════════════════════════════════════
# 2. VOTING SESSIONS
# ══════════════════════════════════════════════════════════════════════════════


class CandidateOut(CamelModel):
    id: str
    name: str
    description: str | None = ""


class UserVoteOut(CamelModel):
    candidate_name: str
    cast_at: datetime | None = Field(None, alias="timestamp")
    is_custom_candidate: bool = False


class VotingSessionOut(CamelModel):
    id: str
    title: str
    description: str | None = None
    candidates: list[CandidateOut] = []
    assigned_users: list[UserRef] = []
    creator: UserRef | None = Field(None, alias="createdBy")
    status: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    allow_new_candidates: bool = False
    multiple_choice: bool = False
    max_choices: int = 1
    is_anonymous: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    total_votes: int | None = None
    total_candidates: int | None = None
    has_voted: bool | None = None
    user_vote: UserVoteOut | None = None


class SessionStatsOut(CamelModel):
    total: int
    by_status: dict[str, int]


# ══════════════════════════════════════════════════════════════════════════════
# 3. BALLOTS AND RESULTS
# ══════════════════════════════════════════════════════════════════════════════


class BallotOut(CamelModel):
    id: str
    user_id: str | None = None
    session_id: str | None = Field(None, alias="votingSessionId")
    candidate_id: str | None = None
    candidate_name: str
    is_custom_candidate: bool = False
    cast_at: datetime | None = Field(None, alias="timestamp")
    session_title: str | None = None
    session_status: str | None = None
    user: UserRef | None = None


class ResultEntryOut(CamelModel):
    candidate_name: str
    vote_count: int
    custom_candidate_count: int | None = None


class ResultsOut(CamelModel):
    results: list[ResultEntryOut]
    total_votes: int
    total_candidates: int
    candidates: list[str]
