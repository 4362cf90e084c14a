"""Gamification core tables.

Creates the activity log, streaks, quests, levels, ledgers, badges,
recommendations and leaderboards. ``users`` and ``transactions`` belong to
the account service and are only created here when missing.

Revision ID: 001_gamification_core
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users (shared) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL PRIMARY KEY,
            username VARCHAR(64) UNIQUE NOT NULL,
            reward_points INTEGER NOT NULL DEFAULT 0,
            total_earnings DOUBLE PRECISION NOT NULL DEFAULT 0,
            tier VARCHAR(16) NOT NULL DEFAULT 'Bronze',
            created_at TIMESTAMPTZ
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(16) NOT NULL,
            amount DOUBLE PRECISION NOT NULL,
            currency VARCHAR(8) NOT NULL DEFAULT 'VRC',
            status VARCHAR(16) NOT NULL,
            description VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_transactions_user_created
        ON transactions(user_id, created_at)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_preferences (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            preference_key VARCHAR(64) NOT NULL,
            preference_value JSONB NOT NULL DEFAULT '{}',
            updated_at TIMESTAMPTZ,
            CONSTRAINT user_preferences_user_key UNIQUE(user_id, preference_key)
        )
    """)

    # --- Activity log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_activities (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            activity_type VARCHAR(64) NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            amount DOUBLE PRECISION,
            category VARCHAR(64),
            timestamp TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_activities_user_timestamp
        ON user_activities(user_id, timestamp)
    """)

    # --- Streaks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS streaks (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            streak_type VARCHAR(32) NOT NULL,
            current_count INTEGER NOT NULL DEFAULT 0,
            max_count INTEGER NOT NULL DEFAULT 0,
            last_activity_date DATE,
            last_activity_at TIMESTAMPTZ,
            multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            CONSTRAINT streaks_user_type_key UNIQUE(user_id, streak_type)
        )
    """)

    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quests (
            id SERIAL PRIMARY KEY,
            code VARCHAR(64) UNIQUE NOT NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            type VARCHAR(16) NOT NULL,
            category VARCHAR(32) NOT NULL,
            difficulty VARCHAR(16) NOT NULL,
            requirements JSONB NOT NULL,
            rewards JSONB NOT NULL,
            points_reward INTEGER NOT NULL DEFAULT 0,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_quests (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            quest_id INTEGER NOT NULL REFERENCES quests(id),
            status VARCHAR(16) NOT NULL DEFAULT 'ACTIVE',
            progress JSONB NOT NULL DEFAULT '{}',
            started_at TIMESTAMPTZ NOT NULL,
            completed_at TIMESTAMPTZ,
            expires_at TIMESTAMPTZ
        )
    """)
    # At most one ACTIVE instance per (user, quest)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_user_quests_active
        ON user_quests(user_id, quest_id) WHERE status = 'ACTIVE'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_quests_user_status
        ON user_quests(user_id, status)
    """)

    # --- Levels and ledgers ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_levels (
            user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            level INTEGER NOT NULL DEFAULT 1,
            xp INTEGER NOT NULL DEFAULT 0,
            xp_to_next INTEGER NOT NULL DEFAULT 100,
            total_xp INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_ledger (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            description VARCHAR(256),
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_points_ledger_user
        ON points_ledger(user_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_ledger (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ
        )
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS nft_badges (
            id SERIAL PRIMARY KEY,
            code VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            image VARCHAR(256),
            rarity VARCHAR(16) NOT NULL,
            category VARCHAR(32) NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            mint_condition JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES nft_badges(id),
            earned_at TIMESTAMPTZ NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            token_id VARCHAR(128),
            CONSTRAINT user_badges_user_id_badge_id_key UNIQUE(user_id, badge_id)
        )
    """)

    # --- Recommendations ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS spending_patterns (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            category VARCHAR(64) NOT NULL,
            period_start DATE NOT NULL,
            period_end DATE NOT NULL,
            total_amount DOUBLE PRECISION NOT NULL DEFAULT 0,
            frequency INTEGER NOT NULL DEFAULT 0,
            avg_amount DOUBLE PRECISION NOT NULL DEFAULT 0,
            trend_direction VARCHAR(16) NOT NULL DEFAULT 'STABLE',
            last_activity TIMESTAMPTZ,
            CONSTRAINT spending_patterns_user_cat_period_key UNIQUE(user_id, category, period_start)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS reward_recommendations (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            reward_type VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            value DOUBLE PRECISION NOT NULL DEFAULT 0,
            confidence DOUBLE PRECISION NOT NULL,
            reasoning TEXT NOT NULL DEFAULT '',
            metadata JSONB NOT NULL DEFAULT '{}',
            status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
            expires_at TIMESTAMPTZ,
            claimed_at TIMESTAMPTZ,
            claim_result JSONB,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_reward_recommendations_user_status
        ON reward_recommendations(user_id, status)
    """)

    # --- Leaderboards ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboards (
            id SERIAL PRIMARY KEY,
            type VARCHAR(16) NOT NULL,
            category VARCHAR(32) NOT NULL,
            period VARCHAR(16) NOT NULL,
            CONSTRAINT leaderboards_type_cat_period_key UNIQUE(type, category, period)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_entries (
            id SERIAL PRIMARY KEY,
            leaderboard_id INTEGER NOT NULL REFERENCES leaderboards(id) ON DELETE CASCADE,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            rank INTEGER,
            score DOUBLE PRECISION NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ,
            CONSTRAINT leaderboard_entries_board_user_key UNIQUE(leaderboard_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_leaderboard_entries_board_score
        ON leaderboard_entries(leaderboard_id, score DESC)
    """)


def downgrade() -> None:
    for table in [
        "leaderboard_entries",
        "leaderboards",
        "reward_recommendations",
        "spending_patterns",
        "user_badges",
        "nft_badges",
        "xp_ledger",
        "points_ledger",
        "user_levels",
        "user_quests",
        "quests",
        "streaks",
        "user_activities",
        "user_preferences",
    ]:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")  # noqa: S608
