"""Quest engine tables.

Creates quests, completions, user_xp, leaderboard and winner_records.

Revision ID: 001_quest_engine_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_quest_engine_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quests (
            id VARCHAR(64) PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            creator_id VARCHAR(64) NOT NULL,
            reward_points INTEGER NOT NULL CHECK (reward_points > 0),
            prize_pool_amount NUMERIC(36, 18),
            prize_token VARCHAR(64),
            distribution_type VARCHAR(8),
            number_of_winners INTEGER,
            winner_prizes JSONB,
            max_completions INTEGER CHECK (max_completions IS NULL OR max_completions > 0),
            expires_at TIMESTAMPTZ,
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            closed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_quests_status_expires
        ON quests(status, expires_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_quests_creator
        ON quests(creator_id)
    """)

    # --- Completion ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS completions (
            id BIGSERIAL PRIMARY KEY,
            quest_id VARCHAR(64) NOT NULL REFERENCES quests(id) ON DELETE CASCADE,
            user_id VARCHAR(64) NOT NULL,
            points_awarded INTEGER NOT NULL,
            completed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_completions_quest_user UNIQUE (quest_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_completions_quest_order
        ON completions(quest_id, completed_at, id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_completions_user
        ON completions(user_id, completed_at)
    """)

    # --- Points ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_xp (
            user_id VARCHAR(64) PRIMARY KEY,
            total_points BIGINT NOT NULL DEFAULT 0,
            quests_completed INTEGER NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_xp_rank_order
        ON user_xp(total_points DESC, updated_at, user_id)
    """)

    # --- Leaderboard snapshot ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard (
            user_id VARCHAR(64) PRIMARY KEY,
            total_points BIGINT NOT NULL,
            level INTEGER NOT NULL,
            quests_completed INTEGER NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL,
            rank INTEGER NOT NULL,
            snapshot_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_leaderboard_rank UNIQUE (rank)
        )
    """)

    # --- Winner records ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS winner_records (
            id BIGSERIAL PRIMARY KEY,
            quest_id VARCHAR(64) NOT NULL REFERENCES quests(id) ON DELETE CASCADE,
            distribution_type VARCHAR(8),
            winners JSONB NOT NULL DEFAULT '[]',
            prize_per_winner NUMERIC(36, 18),
            prize_token VARCHAR(64),
            seed VARCHAR(64),
            total_completions INTEGER NOT NULL DEFAULT 0,
            computed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            distributed BOOLEAN NOT NULL DEFAULT false,
            distribution_proof VARCHAR(256),
            distributed_at TIMESTAMPTZ,
            CONSTRAINT uq_winner_records_quest UNIQUE (quest_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_winner_records_pending
        ON winner_records(quest_id)
        WHERE distributed = false
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS winner_records CASCADE")
    op.execute("DROP TABLE IF EXISTS leaderboard CASCADE")
    op.execute("DROP TABLE IF EXISTS user_xp CASCADE")
    op.execute("DROP TABLE IF EXISTS completions CASCADE")
    op.execute("DROP TABLE IF EXISTS quests CASCADE")
