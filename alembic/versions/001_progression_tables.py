"""Progression tables.

Creates user_profiles, xp_ledger, focus_sessions, achievement_unlocks,
challenge_instances, activity_log, referrals and notifications.

Revision ID: 001_progression_tables
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- User Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_profiles (
            user_id VARCHAR(64) PRIMARY KEY,
            xp_total BIGINT NOT NULL DEFAULT 0 CHECK (xp_total >= 0),
            level INTEGER NOT NULL DEFAULT 1,
            title VARCHAR(32) NOT NULL DEFAULT 'Novice',
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_active_date DATE,
            permanent_xp_bonus NUMERIC(4,2) NOT NULL DEFAULT 1.00 CHECK (permanent_xp_bonus >= 1.0),
            lifetime_tasks_completed INTEGER NOT NULL DEFAULT 0,
            lifetime_high_priority_completed INTEGER NOT NULL DEFAULT 0,
            lifetime_habits_completed INTEGER NOT NULL DEFAULT 0,
            lifetime_focus_minutes INTEGER NOT NULL DEFAULT 0,
            lifetime_long_focus_sessions INTEGER NOT NULL DEFAULT 0,
            lifetime_early_bird_tasks INTEGER NOT NULL DEFAULT 0,
            lifetime_night_owl_tasks INTEGER NOT NULL DEFAULT 0,
            lifetime_streak_recoveries INTEGER NOT NULL DEFAULT 0,
            achievements_unlocked INTEGER NOT NULL DEFAULT 0,
            referral_count INTEGER NOT NULL DEFAULT 0,
            referred_by VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- XP Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            description VARCHAR(256),
            idempotency_key VARCHAR(256) UNIQUE,
            client_key VARCHAR(256),
            counter_deltas JSONB NOT NULL DEFAULT '{}',
            activity_date DATE,
            revoked_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_xp_ledger_user_id
        ON xp_ledger(user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_ledger_source
        ON xp_ledger(user_id, source, source_id)
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_xp_ledger_user_client_key
        ON xp_ledger(user_id, client_key)
    """)

    # --- Focus Sessions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS focus_sessions (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            planned_minutes INTEGER NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            started_at TIMESTAMPTZ NOT NULL,
            ended_at TIMESTAMPTZ,
            actual_minutes INTEGER,
            xp_awarded INTEGER
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_focus_sessions_user_id
        ON focus_sessions(user_id)
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_focus_sessions_user_active
        ON focus_sessions(user_id) WHERE status = 'active'
    """)

    # --- Achievement Unlocks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_unlocks (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            achievement_id VARCHAR(64) NOT NULL,
            family VARCHAR(32) NOT NULL,
            tier VARCHAR(8) NOT NULL,
            xp_awarded INTEGER NOT NULL,
            progress_value INTEGER NOT NULL DEFAULT 0,
            unlocked_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_achievement_unlocks_user_achievement UNIQUE (user_id, achievement_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_achievement_unlocks_user_id
        ON achievement_unlocks(user_id)
    """)

    # --- Challenge Instances ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_instances (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            template_id VARCHAR(64) NOT NULL,
            periodicity VARCHAR(8) NOT NULL,
            period_start DATE NOT NULL,
            progress INTEGER NOT NULL DEFAULT 0,
            target_value INTEGER NOT NULL,
            completed BOOLEAN NOT NULL DEFAULT false,
            xp_awarded INTEGER,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_challenge_instances_user_template_period UNIQUE (user_id, template_id, period_start),
            CHECK (progress >= 0 AND progress <= target_value)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenge_instances_user_period
        ON challenge_instances(user_id, periodicity, period_start)
    """)

    # --- Activity Log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS activity_log (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            activity_date DATE NOT NULL,
            xp_earned INTEGER NOT NULL DEFAULT 0,
            tasks_completed INTEGER NOT NULL DEFAULT 0,
            focus_minutes INTEGER NOT NULL DEFAULT 0,
            habits_completed INTEGER NOT NULL DEFAULT 0,
            streak_maintained BOOLEAN NOT NULL DEFAULT false,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_activity_log_user_date UNIQUE (user_id, activity_date)
        )
    """)

    # --- Referrals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS referrals (
            id BIGSERIAL PRIMARY KEY,
            referrer_id VARCHAR(64) NOT NULL,
            referee_id VARCHAR(64) NOT NULL UNIQUE,
            xp_awarded_to_referrer INTEGER NOT NULL DEFAULT 0,
            xp_awarded_to_referee INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CHECK (referrer_id <> referee_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_referrals_referrer_id
        ON referrals(referrer_id)
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            body TEXT,
            read BOOLEAN NOT NULL DEFAULT false,
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_notifications_user_id
        ON notifications(user_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS referrals CASCADE")
    op.execute("DROP TABLE IF EXISTS activity_log CASCADE")
    op.execute("DROP TABLE IF EXISTS challenge_instances CASCADE")
    op.execute("DROP TABLE IF EXISTS achievement_unlocks CASCADE")
    op.execute("DROP TABLE IF EXISTS focus_sessions CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS user_profiles CASCADE")
