"""Leveling curve: XP <-> level mapping, titles and level perks.

Curve version 2. Reaching level L takes sum(floor(50 * i**1.5) for i in 2..L)
cumulative XP; the floor is computed as isqrt(2500 * i**3) so the table is
exact integer arithmetic. Changing the curve means bumping CURVE_VERSION and
letting the self-healing profile read recompute stored levels.
"""

from __future__ import annotations

import math
from bisect import bisect_right

CURVE_VERSION = 2
MAX_LEVEL = 50


def _level_cost(level: int) -> int:
    """XP needed to go from ``level - 1`` to ``level``."""
    return math.isqrt(2500 * level**3)


# CUMULATIVE_XP[L - 1] is the total XP at which level L starts.
CUMULATIVE_XP: list[int] = [0]
for _lvl in range(2, MAX_LEVEL + 1):
    CUMULATIVE_XP.append(CUMULATIVE_XP[-1] + _level_cost(_lvl))
del _lvl


# (first level, title), ascending
LEVEL_TITLES: list[tuple[int, str]] = [
    (1, "Novice"),
    (5, "Apprentice"),
    (10, "Scholar"),
    (15, "Adept"),
    (20, "Expert"),
    (25, "Master"),
    (30, "Grandmaster"),
    (35, "Legend"),
    (40, "Mythic"),
    (45, "Transcendent"),
    (50, "Ascended"),
]

# Permanent XP multiplier granted once a level is reached.
LEVEL_PERKS: dict[int, float] = {
    30: 1.05,
    40: 1.10,
}


def xp_for_level(level: int) -> int:
    """Cumulative XP required to reach ``level``."""
    if level < 1 or level > MAX_LEVEL:
        msg = f"level must be between 1 and {MAX_LEVEL}, got {level}"
        raise ValueError(msg)
    return CUMULATIVE_XP[level - 1]


def level_from_xp(xp: int) -> int:
    """Highest level whose cumulative threshold is <= ``xp``."""
    if xp <= 0:
        return 1
    return bisect_right(CUMULATIVE_XP, xp)


def title_for_level(level: int) -> str:
    title = LEVEL_TITLES[0][1]
    for first_level, name in LEVEL_TITLES:
        if level >= first_level:
            title = name
    return title


def perk_bonus_for_level(level: int) -> float:
    """Permanent XP bonus unlocked by level perks (1.0 when none apply)."""
    bonus = 1.0
    for perk_level, multiplier in LEVEL_PERKS.items():
        if level >= perk_level:
            bonus = max(bonus, multiplier)
    return bonus


def level_progress(xp: int) -> dict:
    """Level info for display: position within the current level and what comes next."""
    level = level_from_xp(xp)
    floor_xp = xp_for_level(level)

    if level >= MAX_LEVEL:
        return {
            "level": level,
            "title": title_for_level(level),
            "xp_into_level": xp - floor_xp,
            "xp_for_next_level": 0,
            "progress_percent": 100.0,
            "next_level": None,
            "next_title": None,
            "curve_version": CURVE_VERSION,
        }

    span = xp_for_level(level + 1) - floor_xp
    into = max(0, xp - floor_xp)
    return {
        "level": level,
        "title": title_for_level(level),
        "xp_into_level": into,
        "xp_for_next_level": span - into,
        "progress_percent": round(into / span * 100, 1),
        "next_level": level + 1,
        "next_title": title_for_level(level + 1),
        "curve_version": CURVE_VERSION,
    }
