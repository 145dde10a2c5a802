"""Daily and weekly challenges.

Instances are generated lazily from the catalog the first time a period is
touched, keyed by (user_id, template_id, period_start). Progress only moves
through ``increment_challenge``: one conditional UPDATE that clamps at the
target and flips ``completed``, ``xp_awarded`` and ``completed_at`` together,
so exactly one caller ever sees the completion.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import DateTime, case, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from questline.db.models import ChallengeInstance
from questline.db.upsert import insert_ignore
from questline.progression.errors import TemplateNotFoundError
from questline.progression.ledger import grant_xp

logger = logging.getLogger(__name__)

DAILY = "daily"
WEEKLY = "weekly"
DIFFICULTIES = ("easy", "medium", "hard")


@dataclass(frozen=True)
class ChallengeTemplate:
    id: str
    title: str
    action_type: str
    target_value: int
    xp_reward: int
    periodicity: str
    difficulty: str
    # All-habits challenge: completion judged from today's habit count
    composite: bool = False


DAILY_TEMPLATES: list[ChallengeTemplate] = [
    ChallengeTemplate("complete_2_tasks", "Complete 2 tasks", "tasks", 2, 15, DAILY, "easy"),
    ChallengeTemplate("focus_15_min", "Focus for 15 minutes", "focus", 15, 15, DAILY, "easy"),
    ChallengeTemplate("complete_habit", "Complete a habit", "habits", 1, 20, DAILY, "easy"),
    ChallengeTemplate("complete_4_tasks", "Complete 4 tasks", "tasks", 4, 35, DAILY, "medium"),
    ChallengeTemplate("focus_45_min", "Focus for 45 minutes", "focus", 45, 40, DAILY, "medium"),
    ChallengeTemplate(
        "complete_all_habits", "Complete all of today's habits", "habits", 1, 50, DAILY, "medium",
        composite=True,
    ),
    ChallengeTemplate("high_priority_task", "Complete a high-priority task", "high_priority", 1, 30, DAILY, "medium"),
    ChallengeTemplate("complete_6_tasks", "Complete 6 tasks", "tasks", 6, 60, DAILY, "hard"),
    ChallengeTemplate("focus_90_min", "Focus for 90 minutes", "focus", 90, 75, DAILY, "hard"),
    ChallengeTemplate(
        "complete_2_high_priority", "Complete 2 high-priority tasks", "high_priority", 2, 65, DAILY, "hard",
    ),
]

WEEKLY_TEMPLATES: list[ChallengeTemplate] = [
    ChallengeTemplate("weekly_20_tasks", "Complete 20 tasks this week", "tasks", 20, 150, WEEKLY, "medium"),
    ChallengeTemplate("weekly_5_hours_focus", "Focus for 5 hours this week", "focus", 300, 200, WEEKLY, "hard"),
    ChallengeTemplate("weekly_streak", "Stay active every day this week", "streak", 7, 100, WEEKLY, "medium"),
    ChallengeTemplate(
        "weekly_daily_challenges", "Clear your daily challenges 5 times", "daily_challenges", 5, 250, WEEKLY, "hard",
    ),
]

TEMPLATES: dict[str, ChallengeTemplate] = {t.id: t for t in DAILY_TEMPLATES + WEEKLY_TEMPLATES}


def get_template(template_id: str) -> ChallengeTemplate:
    try:
        return TEMPLATES[template_id]
    except KeyError:
        raise TemplateNotFoundError(template_id) from None


def week_start_for(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def _seed(user_id: str, period_start: date) -> bytes:
    return hashlib.sha256(f"{user_id}:{period_start.isoformat()}".encode()).digest()


def select_daily_templates(user_id: str, day: date) -> list[ChallengeTemplate]:
    """One easy, one medium and one hard template, stable for a (user, day)."""
    digest = _seed(user_id, day)
    chosen = []
    for i, difficulty in enumerate(DIFFICULTIES):
        bucket = [t for t in DAILY_TEMPLATES if t.difficulty == difficulty]
        index = int.from_bytes(digest[i * 4:(i + 1) * 4], "big") % len(bucket)
        chosen.append(bucket[index])
    return chosen


def select_weekly_template(user_id: str, week_start: date) -> ChallengeTemplate:
    digest = _seed(user_id, week_start)
    return WEEKLY_TEMPLATES[int.from_bytes(digest[:4], "big") % len(WEEKLY_TEMPLATES)]


async def _ensure_instances(
    db: AsyncSession,
    user_id: str,
    templates: list[ChallengeTemplate],
    periodicity: str,
    period_start: date,
) -> list[ChallengeInstance]:
    for template in templates:
        await insert_ignore(
            db,
            ChallengeInstance,
            {
                "user_id": user_id,
                "template_id": template.id,
                "periodicity": periodicity,
                "period_start": period_start,
                "target_value": template.target_value,
            },
            ["user_id", "template_id", "period_start"],
        )

    result = await db.execute(
        select(ChallengeInstance)
        .where(
            ChallengeInstance.user_id == user_id,
            ChallengeInstance.periodicity == periodicity,
            ChallengeInstance.period_start == period_start,
        )
        .order_by(ChallengeInstance.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars())


async def ensure_daily_challenges(db: AsyncSession, user_id: str, today: date) -> list[ChallengeInstance]:
    """Today's daily instances, created on first access."""
    return await _ensure_instances(db, user_id, select_daily_templates(user_id, today), DAILY, today)


async def ensure_weekly_challenges(db: AsyncSession, user_id: str, today: date) -> list[ChallengeInstance]:
    """This week's weekly instance(s), created on first access."""
    week_start = week_start_for(today)
    return await _ensure_instances(db, user_id, [select_weekly_template(user_id, week_start)], WEEKLY, week_start)


async def increment_challenge(
    db: AsyncSession,
    instance_id: int,
    increment: int,
    now: datetime,
) -> bool:
    """Advance an open instance by ``increment``, clamped to its target.

    Returns True only for the call whose update completed the challenge.
    Completed instances are never touched again.
    """
    if increment <= 0:
        return False

    instance = await db.get(ChallengeInstance, instance_id)
    if instance is None:
        return False
    template = get_template(instance.template_id)

    reached = ChallengeInstance.progress + increment >= ChallengeInstance.target_value
    result = await db.execute(
        update(ChallengeInstance)
        .where(ChallengeInstance.id == instance_id, ChallengeInstance.completed.is_(False))
        .values(
            progress=case((reached, ChallengeInstance.target_value), else_=ChallengeInstance.progress + increment),
            completed=reached,
            xp_awarded=case((reached, template.xp_reward), else_=None),
            completed_at=case((reached, literal(now, DateTime(timezone=True))), else_=None),
        )
        .returning(ChallengeInstance.completed)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    return bool(row is not None and row[0])


async def _complete_and_grant(
    db: AsyncSession,
    instance: ChallengeInstance,
    increment: int,
    now: datetime,
) -> int | None:
    """Increment ``instance``; on completion grant its XP and return the amount."""
    if not await increment_challenge(db, instance.id, increment, now):
        return None
    template = get_template(instance.template_id)
    await grant_xp(
        db,
        instance.user_id,
        template.xp_reward,
        "challenge",
        template.id,
        f"Completed {instance.periodicity} challenge: {template.title}",
        idempotency_key=f"challenge:{instance.id}",
        activity_date=now.date(),
    )
    logger.info(
        "User %s completed %s challenge %s (+%d XP)",
        instance.user_id, instance.periodicity, template.id, template.xp_reward,
    )
    return template.xp_reward


@dataclass
class ChallengeProgress:
    daily: list[str] = field(default_factory=list)
    weekly: list[str] = field(default_factory=list)
    xp_awarded: int = 0


@dataclass
class ChallengeAction:
    """What one awarded action contributes to challenges."""

    kind: str  # tasks | high_priority | habits | focus
    increment: int = 1
    habits_completed_today: int = 0
    scheduled_habits_today: int | None = None
    streak_advanced: bool = False


def _daily_increment(template: ChallengeTemplate, action: ChallengeAction) -> int:
    if template.composite:
        scheduled = action.scheduled_habits_today
        if action.kind == "habits" and scheduled and action.habits_completed_today >= scheduled:
            return 1
        return 0
    if template.action_type == action.kind:
        return action.increment
    return 0


def _weekly_increment(template: ChallengeTemplate, action: ChallengeAction) -> int:
    if template.action_type == "streak":
        return 1 if action.streak_advanced else 0
    if template.action_type == "tasks":
        return 1 if action.kind in ("tasks", "high_priority") else 0
    if template.action_type == action.kind:
        return action.increment
    return 0


async def record_action_progress(
    db: AsyncSession,
    user_id: str,
    action: ChallengeAction,
    today: date,
    now: datetime,
    *,
    credit_actions: bool = True,
) -> ChallengeProgress:
    """Apply one action to today's daily and this week's weekly challenges.

    With ``credit_actions`` off only the streak-driven weekly template can
    move; used when the action's source entity was already credited.
    """
    progress = ChallengeProgress()

    dailies = await ensure_daily_challenges(db, user_id, today)
    if credit_actions:
        for instance in dailies:
            if instance.completed:
                continue
            xp = await _complete_and_grant(db, instance, _daily_increment(get_template(instance.template_id), action), now)
            if xp is not None:
                progress.daily.append(instance.template_id)
                progress.xp_awarded += xp

    swept_today = False
    if progress.daily:
        open_count = await db.scalar(
            select(func.count())
            .select_from(ChallengeInstance)
            .where(
                ChallengeInstance.user_id == user_id,
                ChallengeInstance.periodicity == DAILY,
                ChallengeInstance.period_start == today,
                ChallengeInstance.completed.is_(False),
            )
        )
        swept_today = open_count == 0

    for instance in await ensure_weekly_challenges(db, user_id, today):
        if instance.completed:
            continue
        template = get_template(instance.template_id)
        if template.action_type == "daily_challenges":
            increment = 1 if swept_today else 0
        elif template.action_type == "streak" or credit_actions:
            increment = _weekly_increment(template, action)
        else:
            increment = 0
        xp = await _complete_and_grant(db, instance, increment, now)
        if xp is not None:
            progress.weekly.append(instance.template_id)
            progress.xp_awarded += xp

    return progress


def _view(instance: ChallengeInstance) -> dict:
    template = get_template(instance.template_id)
    return {
        "id": instance.id,
        "template_id": template.id,
        "title": template.title,
        "action_type": template.action_type,
        "difficulty": template.difficulty,
        "periodicity": instance.periodicity,
        "period_start": instance.period_start,
        "progress": instance.progress,
        "target_value": instance.target_value,
        "xp_reward": template.xp_reward,
        "completed": instance.completed,
        "xp_awarded": instance.xp_awarded,
        "completed_at": instance.completed_at,
    }


async def get_daily_challenges(db: AsyncSession, user_id: str, today: date) -> list[dict]:
    return [_view(i) for i in await ensure_daily_challenges(db, user_id, today)]


async def get_weekly_challenges(db: AsyncSession, user_id: str, today: date) -> list[dict]:
    return [_view(i) for i in await ensure_weekly_challenges(db, user_id, today)]
