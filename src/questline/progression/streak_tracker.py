"""Daily streak state machine.

Pure functions over (current, longest, last_active_date, today). The caller
guards the persisted advance with ``last_active_date`` so two actions on the
same day cannot both move the streak.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

STREAK_MILESTONES: tuple[int, ...] = (7, 14, 21, 30, 60, 90, 100, 180, 365)


@dataclass
class StreakUpdate:
    current_streak: int
    longest_streak: int
    last_active_date: date | None
    advanced: bool
    broken: bool = False
    milestone: int | None = None


def update_streak(
    current: int,
    longest: int,
    last_active_date: date | None,
    today: date,
) -> StreakUpdate:
    """Advance the streak for activity on ``today``.

    Same day: unchanged. Day after the last active day: +1. Anything else
    (first activity, or a gap): restart at 1. ``broken`` is set only when a
    running streak was lost.
    """
    if last_active_date is not None and last_active_date >= today:
        return StreakUpdate(current, max(longest, current), last_active_date, advanced=False)

    broken = False
    if last_active_date is not None and last_active_date == today - timedelta(days=1):
        new_current = current + 1
    else:
        broken = current > 0
        new_current = 1

    return StreakUpdate(
        current_streak=new_current,
        longest_streak=max(longest, new_current),
        last_active_date=today,
        advanced=True,
        broken=broken,
        milestone=new_current if new_current in STREAK_MILESTONES else None,
    )


def effective_streak(current: int, last_active_date: date | None, today: date) -> int:
    """Streak as it stands today: a streak whose last day is before yesterday has lapsed."""
    if last_active_date is None:
        return 0
    if last_active_date >= today - timedelta(days=1):
        return current
    return 0


def next_milestone(current: int) -> int | None:
    for milestone in STREAK_MILESTONES:
        if milestone > current:
            return milestone
    return None
