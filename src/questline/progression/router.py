"""Progression API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from questline.dependencies import get_current_user_id, get_db, get_redis_dep
from questline.progression.achievements import check_all_achievements, list_achievements
from questline.progression.activity import get_activity_history
from questline.progression.award_service import complete_action, revoke_award
from questline.progression.challenges import (
    get_daily_challenges,
    get_weekly_challenges,
    week_start_for,
)
from questline.progression.clock import Clock, get_clock
from questline.progression.focus_sessions import abandon_focus_session, start_focus_session
from questline.progression.profile_service import get_or_create_profile, profile_summary
from questline.progression.referral_service import process_referral
from questline.progression.schemas import (
    AchievementCheckResponse,
    AchievementListResponse,
    ActivityResponse,
    AwardResponse,
    ChallengeListResponse,
    CompleteActionRequest,
    FocusSessionResponse,
    FocusStartRequest,
    ProfileResponse,
    ReferralRequest,
    ReferralResponse,
    UndoActionRequest,
    UndoResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Progression"])


# ── Actions ──


@router.post("/actions/complete", response_model=AwardResponse)
async def complete(
    body: CompleteActionRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    redis: object = Depends(get_redis_dep),
    clock: Clock = Depends(get_clock),
):
    """Award XP for a completed task, habit or focus session."""
    result = await complete_action(
        db, user_id, body.action, clock=clock, redis=redis, idempotency_key=body.idempotency_key,
    )
    return result.to_dict()


@router.post("/actions/undo", response_model=UndoResponse)
async def undo(
    body: UndoActionRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Take back the XP granted for an action that was un-completed."""
    return await revoke_award(db, user_id, body.source, body.source_id, clock=clock)


# ── Focus sessions ──


@router.post("/focus/sessions", response_model=FocusSessionResponse, status_code=201)
async def start_focus(
    body: FocusStartRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Start a focus session; complete it later with a focus action."""
    return await start_focus_session(db, user_id, body.planned_minutes, clock=clock)


@router.post("/focus/sessions/{session_id}/abandon", response_model=FocusSessionResponse)
async def abandon_focus(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Stop the caller's active focus session without XP."""
    return await abandon_focus_session(db, user_id, session_id, clock=clock)


# ── Profile ──


@router.get("/progression/profile", response_model=ProfileResponse)
async def get_progression_profile(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Get the caller's XP, level, streak and lifetime stats."""
    profile = await get_or_create_profile(db, user_id)
    await db.commit()
    return profile_summary(profile, clock.today())


@router.get("/progression/activity", response_model=ActivityResponse)
async def get_activity(
    days: int = Query(default=30, ge=1, le=365),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Daily activity totals for the heatmap."""
    return {"days": await get_activity_history(db, user_id, clock.today(), days)}


# ── Achievements ──


@router.get("/achievements", response_model=AchievementListResponse)
async def get_achievements(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Achievement catalog with the caller's progress."""
    profile = await get_or_create_profile(db, user_id)
    await db.commit()
    items = await list_achievements(db, profile)
    return {"achievements": items, "total_unlocked": sum(1 for a in items if a["unlocked"])}


@router.post("/achievements/check", response_model=AchievementCheckResponse)
async def check_achievements(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Re-evaluate achievements against the caller's current profile."""
    try:
        profile = await get_or_create_profile(db, user_id)
        result = await check_all_achievements(db, user_id, profile)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return result


# ── Challenges ──


@router.get("/challenges/daily", response_model=ChallengeListResponse)
async def daily_challenges(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Today's three daily challenges."""
    today = clock.today()
    challenges = await get_daily_challenges(db, user_id, today)
    await db.commit()
    return {"period_start": today, "challenges": challenges}


@router.get("/challenges/weekly", response_model=ChallengeListResponse)
async def weekly_challenges(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """This week's challenge."""
    today = clock.today()
    challenges = await get_weekly_challenges(db, user_id, today)
    await db.commit()
    return {"period_start": week_start_for(today), "challenges": challenges}


# ── Referrals ──


@router.post("/referrals", response_model=ReferralResponse)
async def redeem_referral(
    body: ReferralRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Credit the inviter after the caller joined through their invite."""
    return await process_referral(db, body.referrer_id, user_id)
