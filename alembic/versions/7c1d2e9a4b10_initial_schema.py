"""initial_schema

Revision ID: 7c1d2e9a4b10
Revises:
Create Date: 2026-10-18 09:12:44.120311

"""
from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c1d2e9a4b10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute("""
-- Enable UUID extension
CREATE EXTENSION IF NOT EXISTS "uuid-ossp";

-- Users table
CREATE TABLE IF NOT EXISTS users (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    username VARCHAR(50) NOT NULL,
    email VARCHAR(255) NOT NULL,
    password_hash TEXT NOT NULL,
    role VARCHAR(20) NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT uq_users_username UNIQUE (username),
    CONSTRAINT uq_users_email UNIQUE (email)
);

-- Voting sessions (polls); candidates are embedded and ordered
CREATE TABLE IF NOT EXISTS voting_sessions (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    title VARCHAR(200) NOT NULL,
    description VARCHAR(1000),
    candidates JSONB NOT NULL DEFAULT '[]'::jsonb,
    status VARCHAR(20) NOT NULL DEFAULT 'draft'
        CHECK (status IN ('draft', 'active', 'ended', 'cancelled')),
    start_date TIMESTAMP WITH TIME ZONE,
    end_date TIMESTAMP WITH TIME ZONE,
    allow_new_candidates BOOLEAN NOT NULL DEFAULT FALSE,
    multiple_choice BOOLEAN NOT NULL DEFAULT FALSE,
    max_choices INTEGER NOT NULL DEFAULT 1 CHECK (max_choices >= 1),
    is_anonymous BOOLEAN NOT NULL DEFAULT FALSE,
    is_global BOOLEAN NOT NULL DEFAULT FALSE,
    created_by UUID REFERENCES users(id) ON DELETE SET NULL,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT ck_voting_sessions_window
        CHECK (start_date IS NULL OR end_date IS NULL OR end_date > start_date)
);

CREATE INDEX IF NOT EXISTS idx_voting_sessions_status_window
    ON voting_sessions(status, start_date, end_date);
CREATE INDEX IF NOT EXISTS idx_voting_sessions_created_by ON voting_sessions(created_by);

-- Only one implicit global scope session may exist
CREATE UNIQUE INDEX IF NOT EXISTS uq_voting_sessions_global
    ON voting_sessions(is_global) WHERE is_global;

-- Assigned voters (many-to-many: sessions <-> users)
CREATE TABLE IF NOT EXISTS voting_session_users (
    session_id UUID NOT NULL REFERENCES voting_sessions(id) ON DELETE CASCADE,
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    assigned_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (session_id, user_id)
);

CREATE INDEX IF NOT EXISTS idx_voting_session_users_user ON voting_session_users(user_id);

-- Ballots: at most one per (user, session), enforced here
CREATE TABLE IF NOT EXISTS ballots (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    session_id UUID NOT NULL REFERENCES voting_sessions(id) ON DELETE CASCADE,
    candidate_id UUID,
    candidate_name VARCHAR(200) NOT NULL CHECK (length(trim(candidate_name)) > 0),
    is_custom_candidate BOOLEAN NOT NULL DEFAULT FALSE,
    cast_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT uq_ballots_user_session UNIQUE (user_id, session_id)
);

CREATE INDEX IF NOT EXISTS idx_ballots_session_candidate ON ballots(session_id, candidate_name);
CREATE INDEX IF NOT EXISTS idx_ballots_session_cast_at ON ballots(session_id, cast_at);

-- Implicit always-active session backing the legacy global poll
INSERT INTO voting_sessions (id, title, description, status, allow_new_candidates, is_global)
VALUES (
    '00000000-0000-0000-0000-000000000000',
    'Global poll',
    'Implicit session for votes cast outside any voting session',
    'active',
    TRUE,
    TRUE
)
ON CONFLICT DO NOTHING;
""")


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("""
DROP TABLE IF EXISTS ballots;
DROP TABLE IF EXISTS voting_session_users;
DROP TABLE IF EXISTS voting_sessions;
DROP TABLE IF EXISTS users;
""")
