"""Pydantic request/response models for progression endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from questline.progression.actions import Action


# --- Actions ---


class CompleteActionRequest(BaseModel):
    action: Action
    idempotency_key: str | None = Field(default=None, max_length=256)


class FocusStartRequest(BaseModel):
    planned_minutes: int = 25


class FocusSessionResponse(BaseModel):
    session_id: str
    planned_minutes: int
    status: str
    started_at: datetime
    ended_at: datetime | None = None
    actual_minutes: int | None = None
    xp_awarded: int | None = None


class UndoActionRequest(BaseModel):
    source: str
    source_id: str = Field(min_length=1, max_length=128)


class XpBreakdownResponse(BaseModel):
    base_xp: int
    streak_multiplier: float
    streak_bonus: int
    permanent_bonus: float
    total_xp: int
    capped: bool = False


class FocusCreditResponse(BaseModel):
    planned_minutes: int
    actual_minutes: int
    completion_ratio: float
    base_xp: int
    xp: int
    below_threshold: bool


class UnlockedAchievement(BaseModel):
    id: str
    name: str
    tier: str
    xp_reward: int


class BonusXp(BaseModel):
    achievement_xp: int = 0
    challenge_xp: int = 0


class CompletedChallenges(BaseModel):
    daily: list[str] = []
    weekly: list[str] = []


class AwardResponse(BaseModel):
    action_total_xp: int
    xp_breakdown: XpBreakdownResponse | None = None
    new_xp_total: int
    leveled_up: bool
    new_level: int
    new_streak: int
    bonus_xp: BonusXp
    achievements_unlocked: list[UnlockedAchievement] = []
    challenges_completed: CompletedChallenges
    streak_milestone: int | None = None
    replayed: bool = False
    below_threshold: bool = False
    focus_credit: FocusCreditResponse | None = None


class UndoResponse(BaseModel):
    revoked_xp: int
    new_xp_total: int
    new_level: int
    leveled_down: bool


# --- Profile ---


class StreakInfo(BaseModel):
    current: int
    longest: int
    last_active_date: date | None = None
    multiplier: float
    next_milestone: int | None = None


class ProfileStats(BaseModel):
    tasks_completed: int
    high_priority_completed: int
    habits_completed: int
    focus_minutes: int
    long_focus_sessions: int
    early_bird_tasks: int
    night_owl_tasks: int
    streak_recoveries: int


class ProfileResponse(BaseModel):
    user_id: str
    xp_total: int
    level: int
    title: str
    xp_into_level: int
    xp_for_next_level: int
    progress_percent: float
    next_level: int | None = None
    next_title: str | None = None
    curve_version: int
    permanent_xp_bonus: float
    streak: StreakInfo
    stats: ProfileStats
    achievements_unlocked: int
    referral_count: int


class ActivityDay(BaseModel):
    activity_date: date
    xp_earned: int
    tasks_completed: int
    focus_minutes: int
    habits_completed: int
    streak_maintained: bool


class ActivityResponse(BaseModel):
    days: list[ActivityDay]


# --- Achievements ---


class AchievementResponse(BaseModel):
    id: str
    family: str
    tier: str
    name: str
    description: str
    xp_reward: int
    threshold: int
    progress: int
    unlocked: bool
    unlocked_at: datetime | None = None


class AchievementListResponse(BaseModel):
    achievements: list[AchievementResponse]
    total_unlocked: int


class AchievementCheckResponse(BaseModel):
    unlocked: list[UnlockedAchievement]
    total_xp_awarded: int


# --- Challenges ---


class ChallengeResponse(BaseModel):
    id: int
    template_id: str
    title: str
    action_type: str
    difficulty: str
    periodicity: str
    period_start: date
    progress: int
    target_value: int
    xp_reward: int
    completed: bool
    xp_awarded: int | None = None
    completed_at: datetime | None = None


class ChallengeListResponse(BaseModel):
    period_start: date
    challenges: list[ChallengeResponse]


# --- Referrals ---


class ReferralRequest(BaseModel):
    referrer_id: str = Field(min_length=1, max_length=64)


class ReferralResponse(BaseModel):
    already_processed: bool
    referrer_xp: int
    referee_xp: int
    is_first_referral: bool
