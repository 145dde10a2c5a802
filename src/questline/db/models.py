"""ORM models for the progression engine.

Tables mirror alembic/versions/001_progression_tables.py. Uniqueness
constraints double as the engine's "already granted" guards, so their
names are referenced by the upsert helpers.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from questline.db.base import Base, BigIntPK, JSONDict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Lifetime counters maintained by the award path and reversed on undo.
LIFETIME_COUNTERS: tuple[str, ...] = (
    "lifetime_tasks_completed",
    "lifetime_high_priority_completed",
    "lifetime_habits_completed",
    "lifetime_focus_minutes",
    "lifetime_long_focus_sessions",
    "lifetime_early_bird_tasks",
    "lifetime_night_owl_tasks",
    "lifetime_streak_recoveries",
)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class UserProfile(Base):
    """Denormalized progression state — single row per user."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    xp_total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    title: Mapped[str] = mapped_column(String(32), nullable=False, default="Novice", server_default="Novice")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_active_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    permanent_xp_bonus: Mapped[float] = mapped_column(
        Numeric(4, 2, asdecimal=False), nullable=False, default=1.0, server_default="1.00"
    )

    lifetime_tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_high_priority_completed: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    lifetime_habits_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_focus_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_long_focus_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_early_bird_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_night_owl_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_streak_recoveries: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    achievements_unlocked: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    referral_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    referred_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# XP ledger
# ---------------------------------------------------------------------------


class XpLedgerEntry(Base):
    """One row per XP grant.

    Action grants keep the awarded amount and counter deltas so an undo can
    reverse exactly what was given. ``revoked_at`` is set once, by the undo.
    ``idempotency_key`` is built server-side and allows one live award per
    source entity. ``client_key`` is the caller's retry key, unique per user.
    """

    __tablename__ = "xp_ledger"
    __table_args__ = (
        Index("idx_xp_ledger_source", "user_id", "source", "source_id"),
        UniqueConstraint("user_id", "client_key", name="uq_xp_ledger_user_client_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    client_key: Mapped[str | None] = mapped_column(String(256), nullable=True)
    counter_deltas: Mapped[dict[str, Any]] = mapped_column(JSONDict, nullable=False, default=dict)
    activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class AchievementUnlock(Base):
    """Achievement tiers earned by users — UNIQUE(user_id, achievement_id) prevents duplicates."""

    __tablename__ = "achievement_unlocks"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_achievement_unlocks_user_achievement"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    achievement_id: Mapped[str] = mapped_column(String(64), nullable=False)
    family: Mapped[str] = mapped_column(String(32), nullable=False)
    tier: Mapped[str] = mapped_column(String(8), nullable=False)
    xp_awarded: Mapped[int] = mapped_column(Integer, nullable=False)
    progress_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unlocked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class ChallengeInstance(Base):
    """Per-user, per-period challenge row generated from a template."""

    __tablename__ = "challenge_instances"
    __table_args__ = (
        UniqueConstraint("user_id", "template_id", "period_start", name="uq_challenge_instances_user_template_period"),
        Index("idx_challenge_instances_user_period", "user_id", "periodicity", "period_start"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    periodicity: Mapped[str] = mapped_column(String(8), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    target_value: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    xp_awarded: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Focus sessions
# ---------------------------------------------------------------------------


class FocusSession(Base):
    """A focus session started on the server; at most one active per user.

    ``started_at`` is stamped at start and is the only basis for pro-rating
    the session's XP when it is completed.
    """

    __tablename__ = "focus_sessions"
    __table_args__ = (
        Index(
            "uq_focus_sessions_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    planned_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    xp_awarded: Mapped[int | None] = mapped_column(Integer, nullable=True)


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


class ActivityLog(Base):
    """Daily activity totals for heatmaps and same-day composite checks."""

    __tablename__ = "activity_log"
    __table_args__ = (
        UniqueConstraint("user_id", "activity_date", name="uq_activity_log_user_date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    focus_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    habits_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    streak_maintained: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Referrals & notifications
# ---------------------------------------------------------------------------


class Referral(Base):
    """A referee can be referred exactly once — UNIQUE(referee_id)."""

    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    referrer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    referee_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    xp_awarded_to_referrer: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    xp_awarded_to_referee: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )


class Notification(Base):
    """Persisted user notifications."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    notification_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONDict, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
