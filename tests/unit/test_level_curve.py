"""Leveling curve tests: thresholds, inverses and titles."""

import pytest

from questline.progression.level_curve import (
    CUMULATIVE_XP,
    MAX_LEVEL,
    level_from_xp,
    level_progress,
    perk_bonus_for_level,
    title_for_level,
    xp_for_level,
)


class TestThresholds:
    """Cumulative XP per level follows sum(floor(50 * i**1.5))."""

    def test_level_1_at_zero_xp(self):
        assert xp_for_level(1) == 0
        assert level_from_xp(0) == 1

    @pytest.mark.parametrize(
        "level,expected_xp",
        [
            (2, 141),
            (3, 400),
            (4, 800),
            (5, 1359),
        ],
    )
    def test_early_thresholds(self, level, expected_xp):
        assert xp_for_level(level) == expected_xp

    def test_one_below_threshold_stays_on_previous_level(self):
        assert level_from_xp(140) == 1
        assert level_from_xp(1358) == 4

    def test_negative_xp_is_level_1(self):
        assert level_from_xp(-50) == 1

    def test_xp_beyond_max_stays_at_max(self):
        assert level_from_xp(xp_for_level(MAX_LEVEL) * 10) == MAX_LEVEL

    @pytest.mark.parametrize("level", [0, MAX_LEVEL + 1])
    def test_out_of_range_level_rejected(self, level):
        with pytest.raises(ValueError):
            xp_for_level(level)


class TestCurveProperties:
    """Monotonic and exactly inverse at every boundary."""

    def test_strictly_increasing(self):
        assert all(a < b for a, b in zip(CUMULATIVE_XP, CUMULATIVE_XP[1:]))

    @pytest.mark.parametrize("level", range(1, MAX_LEVEL + 1))
    def test_level_from_xp_inverts_xp_for_level(self, level):
        assert level_from_xp(xp_for_level(level)) == level

    def test_level_never_decreases_with_xp(self):
        previous = 1
        for xp in range(0, 20_000, 37):
            current = level_from_xp(xp)
            assert current >= previous
            previous = current


class TestTitlesAndPerks:
    @pytest.mark.parametrize(
        "level,title",
        [
            (1, "Novice"),
            (4, "Novice"),
            (5, "Apprentice"),
            (10, "Scholar"),
            (30, "Grandmaster"),
            (49, "Transcendent"),
            (50, "Ascended"),
        ],
    )
    def test_titles(self, level, title):
        assert title_for_level(level) == title

    @pytest.mark.parametrize(
        "level,bonus",
        [(1, 1.0), (29, 1.0), (30, 1.05), (39, 1.05), (40, 1.10), (50, 1.10)],
    )
    def test_perk_bonus(self, level, bonus):
        assert perk_bonus_for_level(level) == bonus


class TestLevelProgress:
    def test_progress_into_level_2(self):
        info = level_progress(200)
        assert info["level"] == 2
        assert info["xp_into_level"] == 59
        assert info["xp_for_next_level"] == 400 - 200
        assert info["next_level"] == 3
        assert info["next_title"] == "Novice"

    def test_progress_at_max_level(self):
        info = level_progress(xp_for_level(MAX_LEVEL))
        assert info["level"] == MAX_LEVEL
        assert info["next_level"] is None
        assert info["progress_percent"] == 100.0
