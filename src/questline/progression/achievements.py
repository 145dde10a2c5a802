"""Achievement catalog and evaluator.

Each family has bronze/silver/gold tiers over a single profile stat; every
tier is its own definition (``task_master.silver``). Unlocks are inserted
with ON CONFLICT DO NOTHING on (user_id, achievement_id), so running the
evaluator twice over the same profile grants nothing the second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from questline.db.models import AchievementUnlock, UserProfile
from questline.db.upsert import insert_ignore
from questline.progression.ledger import grant_xp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    family: str
    tier: str
    name: str
    description: str
    stat: str
    threshold: int
    xp_reward: int

    def progress(self, profile: UserProfile) -> int:
        return int(getattr(profile, self.stat))

    def is_met(self, profile: UserProfile) -> bool:
        return self.progress(profile) >= self.threshold


# family -> (name, stat, description template, [(tier, threshold, xp), ...])
_FAMILIES: dict[str, tuple[str, str, str, list[tuple[str, int, int]]]] = {
    "consistent": (
        "Consistent", "current_streak", "Keep a {n}-day streak",
        [("bronze", 7, 25), ("silver", 30, 100), ("gold", 100, 500)],
    ),
    "comeback": (
        "Comeback", "lifetime_streak_recoveries", "Restart a lost streak {n} times",
        [("bronze", 3, 15), ("silver", 10, 50), ("gold", 25, 150)],
    ),
    "task_master": (
        "Task Master", "lifetime_tasks_completed", "Complete {n} tasks",
        [("bronze", 25, 25), ("silver", 100, 100), ("gold", 500, 500)],
    ),
    "priority_handler": (
        "Priority Handler", "lifetime_high_priority_completed", "Complete {n} high-priority tasks",
        [("bronze", 10, 30), ("silver", 50, 120), ("gold", 200, 500)],
    ),
    "deep_worker": (
        "Deep Worker", "lifetime_focus_minutes", "Focus for {n} minutes",
        [("bronze", 300, 25), ("silver", 1500, 100), ("gold", 6000, 500)],
    ),
    "marathon": (
        "Marathon", "lifetime_long_focus_sessions", "Finish {n} focus sessions of an hour or more",
        [("bronze", 3, 30), ("silver", 10, 100), ("gold", 25, 400)],
    ),
    "habit_former": (
        "Habit Former", "lifetime_habits_completed", "Complete {n} habits",
        [("bronze", 21, 30), ("silver", 66, 100), ("gold", 200, 400)],
    ),
    "early_bird": (
        "Early Bird", "lifetime_early_bird_tasks", "Complete {n} tasks before 7am",
        [("bronze", 5, 25), ("silver", 25, 100), ("gold", 100, 400)],
    ),
    "night_owl": (
        "Night Owl", "lifetime_night_owl_tasks", "Complete {n} tasks after 10pm",
        [("bronze", 5, 25), ("silver", 25, 100), ("gold", 100, 400)],
    ),
}

ACHIEVEMENTS: list[AchievementDefinition] = [
    AchievementDefinition(
        id=f"{family}.{tier}",
        family=family,
        tier=tier,
        name=f"{name} ({tier.title()})",
        description=template.format(n=threshold),
        stat=stat,
        threshold=threshold,
        xp_reward=xp,
    )
    for family, (name, stat, template, tiers) in _FAMILIES.items()
    for tier, threshold, xp in tiers
]

ACHIEVEMENTS_BY_ID: dict[str, AchievementDefinition] = {a.id: a for a in ACHIEVEMENTS}


async def unlocked_ids(db: AsyncSession, user_id: str) -> dict[str, datetime]:
    result = await db.execute(
        select(AchievementUnlock.achievement_id, AchievementUnlock.unlocked_at)
        .where(AchievementUnlock.user_id == user_id)
    )
    return {achievement_id: unlocked_at for achievement_id, unlocked_at in result.all()}


async def check_all_achievements(
    db: AsyncSession,
    user_id: str,
    profile: UserProfile,
) -> dict:
    """Unlock every achievement whose predicate holds for ``profile``.

    ``profile`` must reflect persisted state. Returns
    ``{"unlocked": [...], "total_xp_awarded": int}``; an achievement that was
    already unlocked (including by a concurrent call) is skipped silently.
    """
    already = await unlocked_ids(db, user_id)
    unlocked: list[dict] = []
    total_xp = 0

    for definition in ACHIEVEMENTS:
        if definition.id in already or not definition.is_met(profile):
            continue

        unlock_id = await insert_ignore(
            db,
            AchievementUnlock,
            {
                "user_id": user_id,
                "achievement_id": definition.id,
                "family": definition.family,
                "tier": definition.tier,
                "xp_awarded": definition.xp_reward,
                "progress_value": definition.progress(profile),
                "unlocked_at": datetime.now(timezone.utc),
            },
            ["user_id", "achievement_id"],
        )
        if unlock_id is None:
            logger.debug("Achievement %s already unlocked for %s", definition.id, user_id)
            continue

        granted = await grant_xp(
            db,
            user_id,
            definition.xp_reward,
            "achievement",
            definition.id,
            f"Unlocked achievement: {definition.name}",
            idempotency_key=f"achievement:{user_id}:{definition.id}",
            extra_values={"achievements_unlocked": UserProfile.achievements_unlocked + 1},
        )
        if granted is not None:
            total_xp += definition.xp_reward

        logger.info("User %s unlocked %s (+%d XP)", user_id, definition.id, definition.xp_reward)
        unlocked.append({
            "id": definition.id,
            "name": definition.name,
            "tier": definition.tier,
            "xp_reward": definition.xp_reward,
        })

    return {"unlocked": unlocked, "total_xp_awarded": total_xp}


async def list_achievements(db: AsyncSession, profile: UserProfile) -> list[dict]:
    """Full catalog with the user's progress and unlock state."""
    already = await unlocked_ids(db, profile.user_id)
    items = []
    for definition in ACHIEVEMENTS:
        progress = definition.progress(profile)
        items.append({
            "id": definition.id,
            "family": definition.family,
            "tier": definition.tier,
            "name": definition.name,
            "description": definition.description,
            "xp_reward": definition.xp_reward,
            "threshold": definition.threshold,
            "progress": min(progress, definition.threshold),
            "unlocked": definition.id in already,
            "unlocked_at": already.get(definition.id),
        })
    return items
