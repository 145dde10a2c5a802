"""XP value of a single action.

All arithmetic is integer-exact at each stage: multiplications are done on
Decimal and rounded half-up, so 15 * 1.2 is 18 and 15 * 1.05 is 16.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from questline.progression.errors import InvalidActionError

# (minimum streak days, multiplier), highest first
STREAK_MULTIPLIER_TIERS: list[tuple[int, float]] = [
    (100, 1.50),
    (60, 1.40),
    (30, 1.30),
    (21, 1.20),
    (14, 1.15),
    (7, 1.10),
    (3, 1.05),
]

# (planned minutes, bonus XP), highest first; only the top matching milestone applies
FOCUS_MILESTONE_BONUSES: list[tuple[int, int]] = [
    (90, 15),
    (60, 10),
    (30, 5),
]


def round_half_up(value: Decimal | float | int) -> int:
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def streak_multiplier(streak_days: int) -> float:
    """Multiplier for the tier ``streak_days`` falls in (1.0 below three days)."""
    for min_days, multiplier in STREAK_MULTIPLIER_TIERS:
        if streak_days >= min_days:
            return multiplier
    return 1.0


@dataclass
class XpBreakdown:
    base_xp: int
    streak_multiplier: float
    streak_bonus: int
    permanent_bonus: float
    total_xp: int
    capped: bool = False


def calculate_xp(
    base_xp: int,
    streak_days: int,
    permanent_bonus: float = 1.0,
    max_multiplier: float = 2.0,
) -> XpBreakdown:
    """Apply streak multiplier, permanent bonus and the overall cap to ``base_xp``."""
    if base_xp < 0:
        msg = f"base_xp must be non-negative, got {base_xp}"
        raise InvalidActionError(msg)
    if permanent_bonus < 1.0:
        permanent_bonus = 1.0

    mult = streak_multiplier(streak_days)
    after_streak = round_half_up(Decimal(base_xp) * Decimal(str(mult)))
    total = round_half_up(Decimal(after_streak) * Decimal(str(permanent_bonus)))

    cap = round_half_up(Decimal(base_xp) * Decimal(str(max_multiplier)))
    capped = total > cap
    if capped:
        total = cap

    return XpBreakdown(
        base_xp=base_xp,
        streak_multiplier=mult,
        streak_bonus=after_streak - base_xp,
        permanent_bonus=permanent_bonus,
        total_xp=total,
        capped=capped,
    )


# ---------------------------------------------------------------------------
# Focus sessions
# ---------------------------------------------------------------------------


@dataclass
class FocusCredit:
    planned_minutes: int
    actual_minutes: int
    completion_ratio: float
    base_xp: int
    xp: int
    below_threshold: bool


def focus_base_xp(planned_minutes: int, xp_per_minute: float = 0.6) -> int:
    """Full-completion XP for a planned session, milestone bonus included."""
    base = round_half_up(Decimal(str(xp_per_minute)) * planned_minutes)
    for minutes, bonus in FOCUS_MILESTONE_BONUSES:
        if planned_minutes >= minutes:
            return base + bonus
    return base


def calculate_focus_credit(
    planned_minutes: int,
    started_at: datetime,
    now: datetime,
    *,
    xp_per_minute: float = 0.6,
    min_ratio: float = 0.5,
    max_minutes: int = 480,
) -> FocusCredit:
    """Pro-rate a focus session's XP by how much of the plan was actually done.

    Elapsed time is measured from ``started_at`` to ``now``; time beyond the
    plan earns nothing extra. Sessions under ``min_ratio`` earn no XP at all.
    """
    if planned_minutes <= 0:
        msg = "planned_minutes must be positive"
        raise InvalidActionError(msg)
    if planned_minutes > max_minutes:
        msg = f"planned_minutes cannot exceed {max_minutes}"
        raise InvalidActionError(msg)
    if started_at > now:
        msg = "started_at is in the future"
        raise InvalidActionError(msg)

    elapsed = int((now - started_at).total_seconds() // 60)
    actual = min(elapsed, planned_minutes)
    ratio = actual / planned_minutes
    base = focus_base_xp(planned_minutes, xp_per_minute)

    if ratio < min_ratio:
        return FocusCredit(planned_minutes, actual, ratio, base, 0, True)

    xp = round_half_up(Decimal(base) * Decimal(actual) / Decimal(planned_minutes))
    return FocusCredit(planned_minutes, actual, ratio, base, xp, False)
