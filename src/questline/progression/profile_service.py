"""Profile lookup with lazy creation and self-healing level."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from questline.db.models import UserProfile
from questline.db.upsert import insert_for
from questline.progression.errors import ProfileNotFoundError
from questline.progression.level_curve import (
    level_from_xp,
    level_progress,
    perk_bonus_for_level,
    title_for_level,
)
from questline.progression.streak_tracker import StreakUpdate, effective_streak, next_milestone
from questline.progression.xp_calculator import streak_multiplier

logger = logging.getLogger(__name__)


async def _load(db: AsyncSession, user_id: str) -> UserProfile | None:
    result = await db.execute(
        select(UserProfile)
        .where(UserProfile.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _heal_level(db: AsyncSession, profile: UserProfile) -> UserProfile:
    """Bring a stored level in line with the current curve.

    The write is conditional on the XP total read, so a concurrent grant
    that moved XP in the meantime keeps its own level computation.
    """
    expected = level_from_xp(profile.xp_total)
    if profile.level == expected:
        return profile

    logger.info(
        "Healing level for %s: stored %d, curve says %d",
        profile.user_id, profile.level, expected,
    )
    await db.execute(
        update(UserProfile)
        .where(
            UserProfile.user_id == profile.user_id,
            UserProfile.xp_total == profile.xp_total,
        )
        .values(
            level=expected,
            title=title_for_level(expected),
            permanent_xp_bonus=max(profile.permanent_xp_bonus, perk_bonus_for_level(expected)),
        )
    )
    refreshed = await _load(db, profile.user_id)
    return refreshed if refreshed is not None else profile


async def get_or_create_profile(db: AsyncSession, user_id: str) -> UserProfile:
    """Get the user's profile, creating a fresh level-1 row on first touch."""
    profile = await _load(db, user_id)
    if profile is None:
        now = datetime.now(timezone.utc)
        await db.execute(
            insert_for(db, UserProfile)
            .values(user_id=user_id, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        profile = await _load(db, user_id)
        if profile is None:
            raise ProfileNotFoundError(user_id)
        return profile
    return await _heal_level(db, profile)


async def get_profile(db: AsyncSession, user_id: str) -> UserProfile:
    """Get an existing profile or raise ProfileNotFoundError."""
    profile = await _load(db, user_id)
    if profile is None:
        raise ProfileNotFoundError(user_id)
    return await _heal_level(db, profile)


async def advance_streak(db: AsyncSession, user_id: str, today: date, streak: StreakUpdate) -> bool:
    """Persist an advanced streak unless another award already counted ``today``.

    Returns True only for the call whose write landed.
    """
    result = await db.execute(
        update(UserProfile)
        .where(
            UserProfile.user_id == user_id,
            or_(UserProfile.last_active_date.is_(None), UserProfile.last_active_date != today),
        )
        .values(
            current_streak=streak.current_streak,
            longest_streak=streak.longest_streak,
            last_active_date=today,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def effective_xp_bonus(profile: UserProfile) -> float:
    """Permanent bonus in force: stored bonus or the level perk, whichever is higher."""
    return max(float(profile.permanent_xp_bonus), perk_bonus_for_level(profile.level))


def profile_summary(profile: UserProfile, today: date) -> dict:
    """Flatten a profile into the read model served by the API."""
    streak = effective_streak(profile.current_streak, profile.last_active_date, today)
    return {
        "user_id": profile.user_id,
        "xp_total": profile.xp_total,
        **level_progress(profile.xp_total),
        "permanent_xp_bonus": effective_xp_bonus(profile),
        "streak": {
            "current": streak,
            "longest": profile.longest_streak,
            "last_active_date": profile.last_active_date,
            "multiplier": streak_multiplier(streak),
            "next_milestone": next_milestone(streak),
        },
        "stats": {
            "tasks_completed": profile.lifetime_tasks_completed,
            "high_priority_completed": profile.lifetime_high_priority_completed,
            "habits_completed": profile.lifetime_habits_completed,
            "focus_minutes": profile.lifetime_focus_minutes,
            "long_focus_sessions": profile.lifetime_long_focus_sessions,
            "early_bird_tasks": profile.lifetime_early_bird_tasks,
            "night_owl_tasks": profile.lifetime_night_owl_tasks,
            "streak_recoveries": profile.lifetime_streak_recoveries,
        },
        "achievements_unlocked": profile.achievements_unlocked,
        "referral_count": profile.referral_count,
    }
