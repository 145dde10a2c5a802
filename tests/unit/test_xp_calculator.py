"""XP calculator tests: multipliers, rounding, cap and focus pro-rating."""

from datetime import datetime, timedelta, timezone

import pytest

from questline.progression.errors import InvalidActionError
from questline.progression.xp_calculator import (
    calculate_focus_credit,
    calculate_xp,
    focus_base_xp,
    round_half_up,
    streak_multiplier,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestStreakMultiplier:
    @pytest.mark.parametrize(
        "days,multiplier",
        [
            (0, 1.0),
            (1, 1.0),
            (2, 1.0),
            (3, 1.05),
            (6, 1.05),
            (7, 1.10),
            (14, 1.15),
            (21, 1.20),
            (29, 1.20),
            (30, 1.30),
            (60, 1.40),
            (99, 1.40),
            (100, 1.50),
            (365, 1.50),
        ],
    )
    def test_tiers(self, days, multiplier):
        assert streak_multiplier(days) == multiplier


class TestRounding:
    def test_half_rounds_up(self):
        assert round_half_up(10.5) == 11
        assert round_half_up(0.5) == 1
        assert round_half_up(2.4999) == 2

    def test_fifteen_times_one_point_two_is_eighteen(self):
        result = calculate_xp(15, 21)
        assert result.total_xp == 18
        assert result.streak_bonus == 3

    def test_fifteen_times_one_point_zero_five_is_sixteen(self):
        assert calculate_xp(15, 3).total_xp == 16

    def test_ten_times_one_point_zero_five_rounds_half_up(self):
        """10.5 must become 11, not the banker's 10."""
        assert calculate_xp(10, 3).total_xp == 11


class TestPipeline:
    def test_no_streak_no_bonus(self):
        result = calculate_xp(15, 1)
        assert result.total_xp == 15
        assert result.streak_multiplier == 1.0
        assert result.streak_bonus == 0
        assert result.capped is False

    def test_permanent_bonus_applies_after_streak(self):
        # 15 * 1.5 = 22.5 -> 23; 23 * 1.10 = 25.3 -> 25
        result = calculate_xp(15, 100, permanent_bonus=1.10)
        assert result.streak_bonus == 8
        assert result.total_xp == 25

    def test_total_capped_at_max_multiplier(self):
        # 23 * 1.5 = 34.5 -> 35, capped at 15 * 2.0 = 30
        result = calculate_xp(15, 100, permanent_bonus=1.5)
        assert result.total_xp == 30
        assert result.capped is True

    def test_permanent_bonus_below_one_is_ignored(self):
        assert calculate_xp(15, 1, permanent_bonus=0.5).total_xp == 15

    def test_zero_base(self):
        assert calculate_xp(0, 50).total_xp == 0

    def test_negative_base_rejected(self):
        with pytest.raises(InvalidActionError):
            calculate_xp(-1, 1)


class TestFocusBase:
    @pytest.mark.parametrize(
        "planned,expected",
        [
            (10, 6),
            (25, 15),
            (30, 23),   # 18 + 5
            (45, 32),   # 27 + 5
            (60, 46),   # 36 + 10
            (90, 69),   # 54 + 15
            (120, 87),  # 72 + 15, only the highest milestone applies
        ],
    )
    def test_base_with_milestones(self, planned, expected):
        assert focus_base_xp(planned) == expected


class TestFocusCredit:
    def test_full_session(self):
        credit = calculate_focus_credit(60, NOW - timedelta(minutes=60), NOW)
        assert credit.xp == 46
        assert credit.completion_ratio == 1.0
        assert credit.below_threshold is False

    def test_overrun_earns_no_extra(self):
        credit = calculate_focus_credit(60, NOW - timedelta(minutes=200), NOW)
        assert credit.actual_minutes == 60
        assert credit.xp == 46

    def test_partial_session_pro_rated(self):
        # 46 * 45 / 60 = 34.5 -> 35
        credit = calculate_focus_credit(60, NOW - timedelta(minutes=45), NOW)
        assert credit.actual_minutes == 45
        assert credit.xp == 35

    def test_exactly_half_counts(self):
        credit = calculate_focus_credit(60, NOW - timedelta(minutes=30), NOW)
        assert credit.below_threshold is False
        assert credit.xp == 23

    def test_below_half_earns_nothing(self):
        credit = calculate_focus_credit(60, NOW - timedelta(minutes=29), NOW)
        assert credit.below_threshold is True
        assert credit.xp == 0

    @pytest.mark.parametrize("planned", [0, -5, 481])
    def test_invalid_planned_minutes(self, planned):
        with pytest.raises(InvalidActionError):
            calculate_focus_credit(planned, NOW - timedelta(minutes=10), NOW)

    def test_future_start_rejected(self):
        with pytest.raises(InvalidActionError):
            calculate_focus_credit(30, NOW + timedelta(minutes=1), NOW)
