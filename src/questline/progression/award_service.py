"""Award orchestration: the single entry point that turns an action into XP.

Order within one transaction:
  profile -> XP -> ledger guard -> streak/profile/activity writes
  -> achievements -> challenges -> commit
Events go out after the commit. Any failure rolls the whole award back.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from questline.config import get_settings
from questline.db.models import UserProfile
from questline.progression.achievements import check_all_achievements
from questline.progression.actions import (
    ACTION_SOURCES,
    FocusAction,
    HabitAction,
    TaskAction,
)
from questline.progression.activity import record_activity, reverse_activity
from questline.progression.challenges import (
    ChallengeAction,
    record_action_progress,
    week_start_for,
)
from questline.progression.clock import Clock, get_clock
from questline.progression.errors import AwardNotFoundError, InvalidActionError
from questline.progression.events import publish_award_events
from questline.progression.focus_sessions import finish_focus_session, get_active_session
from questline.progression.ledger import (
    apply_xp_delta,
    count_revoked,
    credited_since,
    find_by_client_key,
    find_by_idempotency_key,
    find_live_award,
    mark_revoked,
    record_grant,
    set_counter_deltas,
)
from questline.progression.profile_service import (
    advance_streak,
    effective_xp_bonus,
    get_or_create_profile,
    get_profile,
)
from questline.progression.streak_tracker import update_streak
from questline.progression.xp_calculator import (
    FocusCredit,
    XpBreakdown,
    calculate_focus_credit,
    calculate_xp,
)

logger = logging.getLogger(__name__)


@dataclass
class AwardRequest:
    user_id: str
    source: str
    source_id: str
    base_xp: int
    description: str = ""
    # Lifetime profile counters to bump; stored on the ledger row for undo
    counter_deltas: dict[str, int] = field(default_factory=dict)
    challenge_kind: str | None = None
    challenge_increment: int = 1
    scheduled_habits_today: int | None = None
    idempotency_key: str | None = None


@dataclass
class AwardResult:
    action_total_xp: int
    xp_breakdown: XpBreakdown | None
    new_xp_total: int
    leveled_up: bool
    new_level: int
    new_streak: int
    bonus_xp: dict[str, int] = field(default_factory=lambda: {"achievement_xp": 0, "challenge_xp": 0})
    achievements_unlocked: list[dict] = field(default_factory=list)
    challenges_completed: dict[str, list[str]] = field(default_factory=lambda: {"daily": [], "weekly": []})
    streak_milestone: int | None = None
    replayed: bool = False
    below_threshold: bool = False
    focus_credit: FocusCredit | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _snapshot(profile: UserProfile, **kwargs: Any) -> AwardResult:
    """Result reflecting a profile as-is, for awards that changed nothing."""
    return AwardResult(
        action_total_xp=kwargs.pop("action_total_xp", 0),
        xp_breakdown=None,
        new_xp_total=profile.xp_total,
        leveled_up=False,
        new_level=profile.level,
        new_streak=profile.current_streak,
        **kwargs,
    )


async def _guard_key(db: AsyncSession, request: AwardRequest) -> str:
    """One live award per source entity; each undo opens the next slot."""
    generation = await count_revoked(db, request.user_id, request.source, request.source_id)
    return f"{request.source}:{request.user_id}:{request.source_id}:{generation}"


async def _client_replay(db: AsyncSession, user_id: str, client_key: str) -> AwardResult | None:
    """Result for a retried request whose client key already produced a grant."""
    existing = await find_by_client_key(db, user_id, client_key)
    if existing is None:
        return None
    profile = await get_or_create_profile(db, user_id)
    logger.info("Replayed award for client key %s of %s", client_key, user_id)
    return _snapshot(profile, action_total_xp=existing.amount, replayed=True)


def _activity_deltas(counter_deltas: dict[str, int]) -> dict[str, int]:
    return {
        "tasks_completed": counter_deltas.get("lifetime_tasks_completed", 0),
        "focus_minutes": counter_deltas.get("lifetime_focus_minutes", 0),
        "habits_completed": counter_deltas.get("lifetime_habits_completed", 0),
    }


async def _award(db: AsyncSession, request: AwardRequest, clock: Clock) -> AwardResult:
    settings = get_settings()
    today = clock.today()
    now = clock.now()
    user_id = request.user_id

    if request.base_xp < 0:
        msg = "base_xp must be non-negative"
        raise InvalidActionError(msg)

    if request.idempotency_key:
        replay = await _client_replay(db, user_id, request.idempotency_key)
        if replay is not None:
            return replay

    profile = await get_or_create_profile(db, user_id)
    old_level = profile.level

    guard_key = await _guard_key(db, request)
    streak = update_streak(profile.current_streak, profile.longest_streak, profile.last_active_date, today)
    breakdown = calculate_xp(
        request.base_xp,
        streak.current_streak,
        effective_xp_bonus(profile),
        settings.max_xp_multiplier,
    )

    entry_id = await record_grant(
        db,
        user_id,
        breakdown.total_xp,
        request.source,
        request.source_id,
        request.description or f"Completed {request.source}",
        idempotency_key=guard_key,
        counter_deltas=request.counter_deltas,
        activity_date=today,
        client_key=request.idempotency_key,
    )
    if entry_id is None:
        existing = None
        if request.idempotency_key:
            existing = await find_by_client_key(db, user_id, request.idempotency_key)
        if existing is None:
            existing = await find_by_idempotency_key(db, user_id, guard_key)
        logger.info("Replayed award %s for %s", guard_key, user_id)
        return _snapshot(
            profile,
            action_total_xp=existing.amount if existing else 0,
            replayed=True,
        )

    # Only the award whose streak write lands counts a recovery, and the
    # ledger row records it so an undo takes it back.
    counters = dict(request.counter_deltas)
    streak_written = streak.advanced and await advance_streak(db, user_id, today, streak)
    if streak_written and streak.broken:
        counters["lifetime_streak_recoveries"] = 1
        await set_counter_deltas(db, entry_id, counters)

    delta = await apply_xp_delta(db, user_id, breakdown.total_xp, counters)
    habits_today = await record_activity(
        db, user_id, today, xp_earned=breakdown.total_xp, **_activity_deltas(request.counter_deltas),
    )

    refreshed = await get_profile(db, user_id)
    achievements = await check_all_achievements(db, user_id, refreshed)

    credit_actions = request.challenge_kind is not None and not await credited_since(
        db, user_id, request.source, request.source_id, week_start_for(today), exclude_id=entry_id,
    )
    if request.challenge_kind is not None and not credit_actions:
        logger.info("Skipping challenge credit for re-completed %s %s", request.source, request.source_id)
    challenges = await record_action_progress(
        db,
        user_id,
        ChallengeAction(
            kind=request.challenge_kind or "",
            increment=request.challenge_increment,
            habits_completed_today=habits_today,
            scheduled_habits_today=request.scheduled_habits_today,
            streak_advanced=streak_written,
        ),
        today,
        now,
        credit_actions=credit_actions,
    )

    bonus = achievements["total_xp_awarded"] + challenges.xp_awarded
    if bonus:
        await record_activity(db, user_id, today, xp_earned=bonus)

    final = await get_profile(db, user_id)
    logger.info(
        "Awarded %d XP to %s for %s %s (bonus %d, total %d)",
        breakdown.total_xp, user_id, request.source, request.source_id, bonus, final.xp_total,
    )
    return AwardResult(
        action_total_xp=breakdown.total_xp,
        xp_breakdown=breakdown,
        new_xp_total=final.xp_total,
        leveled_up=final.level > old_level,
        new_level=final.level,
        new_streak=delta.current_streak,
        bonus_xp={
            "achievement_xp": achievements["total_xp_awarded"],
            "challenge_xp": challenges.xp_awarded,
        },
        achievements_unlocked=achievements["unlocked"],
        challenges_completed={"daily": challenges.daily, "weekly": challenges.weekly},
        streak_milestone=streak.milestone if streak_written else None,
    )


async def award_xp(
    db: AsyncSession,
    request: AwardRequest,
    clock: Clock | None = None,
    redis: object = None,
) -> AwardResult:
    """Award XP for one action, atomically.

    A repeated idempotency key returns ``replayed=True`` without touching
    any state. Errors roll back the whole award and propagate.
    """
    clock = clock or get_clock()
    try:
        result = await _award(db, request, clock)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if not result.replayed:
        await publish_award_events(redis, request.user_id, result.to_dict())
    return result


async def complete_action(
    db: AsyncSession,
    user_id: str,
    action: TaskAction | HabitAction | FocusAction,
    clock: Clock | None = None,
    redis: object = None,
    idempotency_key: str | None = None,
) -> AwardResult:
    """Resolve a typed action into an award request and run it."""
    settings = get_settings()
    clock = clock or get_clock()

    if isinstance(action, TaskAction):
        hour = action.completion_hour if action.completion_hour is not None else clock.now().hour
        counters = {"lifetime_tasks_completed": 1}
        if action.is_high_priority:
            counters["lifetime_high_priority_completed"] = 1
        if hour < settings.early_bird_before_hour:
            counters["lifetime_early_bird_tasks"] = 1
        elif hour >= settings.night_owl_from_hour:
            counters["lifetime_night_owl_tasks"] = 1
        request = AwardRequest(
            user_id=user_id,
            source="task",
            source_id=action.task_id,
            base_xp=settings.flat_task_xp,
            description="Completed task",
            counter_deltas=counters,
            challenge_kind="high_priority" if action.is_high_priority else "tasks",
            idempotency_key=idempotency_key,
        )

    elif isinstance(action, HabitAction):
        request = AwardRequest(
            user_id=user_id,
            source="habit",
            source_id=action.habit_id,
            base_xp=settings.flat_habit_xp,
            description="Completed habit",
            counter_deltas={"lifetime_habits_completed": 1},
            challenge_kind="habits",
            scheduled_habits_today=action.scheduled_habits_today,
            idempotency_key=idempotency_key,
        )

    elif isinstance(action, FocusAction):
        now = clock.now()
        try:
            if idempotency_key:
                replay = await _client_replay(db, user_id, idempotency_key)
                if replay is not None:
                    await db.commit()
                    return replay
            session = await get_active_session(db, user_id, action.session_id)
            credit = calculate_focus_credit(
                session.planned_minutes,
                clock.localize(session.started_at),
                now,
                xp_per_minute=settings.focus_xp_per_minute,
                min_ratio=settings.min_focus_completion_ratio,
                max_minutes=settings.max_focus_session_minutes,
            )
            # Closed in the award's transaction; a failed award reopens it
            await finish_focus_session(db, session.id, credit, now)
        except Exception:
            await db.rollback()
            raise
        if credit.below_threshold:
            return await _below_threshold(db, user_id, credit)

        counters = {"lifetime_focus_minutes": credit.actual_minutes}
        if credit.actual_minutes >= settings.long_focus_session_minutes:
            counters["lifetime_long_focus_sessions"] = 1
        request = AwardRequest(
            user_id=user_id,
            source="focus",
            source_id=action.session_id,
            base_xp=credit.xp,
            description=f"Focus session ({credit.actual_minutes}/{credit.planned_minutes} min)",
            counter_deltas=counters,
            challenge_kind="focus",
            challenge_increment=credit.actual_minutes,
            idempotency_key=idempotency_key,
        )
        result = await award_xp(db, request, clock, redis)
        result.focus_credit = credit
        return result

    else:
        msg = f"Unsupported action: {type(action).__name__}"
        raise InvalidActionError(msg)

    return await award_xp(db, request, clock, redis)


async def _below_threshold(db: AsyncSession, user_id: str, credit: FocusCredit) -> AwardResult:
    """A focus session too short to count: no XP, no streak, no counters."""
    logger.info(
        "Focus session below threshold for %s: %d/%d min",
        user_id, credit.actual_minutes, credit.planned_minutes,
    )
    try:
        profile = await get_or_create_profile(db, user_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return _snapshot(profile, below_threshold=True, focus_credit=credit)


async def revoke_award(
    db: AsyncSession,
    user_id: str,
    source: str,
    source_id: str,
    clock: Clock | None = None,
) -> dict:
    """Undo the latest live award for a source entity.

    Deducts exactly the XP and counters the ledger recorded for it (floored
    at zero). Achievements and challenge progress earned along the way stay.
    """
    if source not in ACTION_SOURCES:
        msg = f"Cannot undo awards from source {source!r}"
        raise InvalidActionError(msg)
    clock = clock or get_clock()

    try:
        entry = await find_live_award(db, user_id, source, source_id)
        if entry is None or not await mark_revoked(db, entry.id, clock.now()):
            raise AwardNotFoundError(source, source_id)

        counters = {name: -amount for name, amount in (entry.counter_deltas or {}).items()}
        delta = await apply_xp_delta(db, user_id, -entry.amount, counters)
        if entry.activity_date is not None:
            await reverse_activity(
                db, user_id, entry.activity_date, entry.amount, **_activity_deltas(entry.counter_deltas or {}),
            )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Revoked %d XP from %s for %s %s", entry.amount, user_id, source, source_id)
    return {
        "revoked_xp": entry.amount,
        "new_xp_total": delta.xp_total,
        "new_level": delta.new_level,
        "leveled_down": delta.new_level < delta.old_level,
    }
