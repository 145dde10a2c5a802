"""Challenge instance tests: lazy creation, clamping and single-shot completion."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from questline.db.models import ChallengeInstance
from questline.db.upsert import insert_ignore
from questline.progression.actions import HabitAction, TaskAction
from questline.progression.award_service import complete_action
from questline.progression.challenges import (
    ensure_daily_challenges,
    ensure_weekly_challenges,
    get_daily_challenges,
    get_template,
    increment_challenge,
    week_start_for,
)

USER = "user-1"


async def _add_instance(db: AsyncSession, template_id: str, period_start: date, progress: int = 0) -> int:
    """Make sure an open instance of ``template_id`` exists for the period."""
    template = get_template(template_id)
    await insert_ignore(
        db,
        ChallengeInstance,
        {
            "user_id": USER,
            "template_id": template_id,
            "periodicity": template.periodicity,
            "period_start": period_start,
            "target_value": template.target_value,
        },
        ["user_id", "template_id", "period_start"],
    )
    await db.execute(
        update(ChallengeInstance)
        .where(
            ChallengeInstance.user_id == USER,
            ChallengeInstance.template_id == template_id,
            ChallengeInstance.period_start == period_start,
        )
        .values(progress=progress, completed=False, xp_awarded=None, completed_at=None)
    )
    instance_id = await db.scalar(
        select(ChallengeInstance.id).where(
            ChallengeInstance.user_id == USER,
            ChallengeInstance.template_id == template_id,
            ChallengeInstance.period_start == period_start,
        )
    )
    await db.commit()
    return instance_id


async def _load(db: AsyncSession, instance_id: int) -> ChallengeInstance:
    return await db.scalar(
        select(ChallengeInstance)
        .where(ChallengeInstance.id == instance_id)
        .execution_options(populate_existing=True)
    )


class TestLazyCreation:
    @pytest.mark.asyncio
    async def test_daily_instances_created_once(self, db_session, clock):
        first = await ensure_daily_challenges(db_session, USER, clock.today())
        second = await ensure_daily_challenges(db_session, USER, clock.today())
        assert len(first) == 3
        assert [c.id for c in first] == [c.id for c in second]
        assert all(c.progress == 0 and not c.completed for c in first)

    @pytest.mark.asyncio
    async def test_target_copied_from_template(self, db_session, clock):
        for instance in await ensure_daily_challenges(db_session, USER, clock.today()):
            assert instance.target_value == get_template(instance.template_id).target_value

    @pytest.mark.asyncio
    async def test_weekly_instance_anchored_on_monday(self, db_session, clock):
        weekly = await ensure_weekly_challenges(db_session, USER, clock.today())
        assert len(weekly) == 1
        assert weekly[0].period_start == week_start_for(clock.today())
        assert weekly[0].periodicity == "weekly"

    @pytest.mark.asyncio
    async def test_new_day_new_instances(self, db_session, clock):
        today = await get_daily_challenges(db_session, USER, clock.today())
        clock.advance(days=1)
        tomorrow = await get_daily_challenges(db_session, USER, clock.today())
        assert {c["id"] for c in today}.isdisjoint({c["id"] for c in tomorrow})


class TestIncrement:
    @pytest.mark.asyncio
    async def test_progress_clamped_and_completed_once(self, db_session, clock):
        instance_id = await _add_instance(db_session, "complete_2_tasks", clock.today())

        assert await increment_challenge(db_session, instance_id, 5, clock.now()) is True
        instance = await _load(db_session, instance_id)
        assert instance.progress == 2
        assert instance.completed is True
        assert instance.xp_awarded == 15
        assert instance.completed_at is not None

        assert await increment_challenge(db_session, instance_id, 1, clock.now()) is False
        instance = await _load(db_session, instance_id)
        assert instance.progress == 2
        assert instance.xp_awarded == 15

    @pytest.mark.asyncio
    async def test_partial_progress(self, db_session, clock):
        instance_id = await _add_instance(db_session, "complete_4_tasks", clock.today())
        assert await increment_challenge(db_session, instance_id, 1, clock.now()) is False
        assert await increment_challenge(db_session, instance_id, 2, clock.now()) is False
        instance = await _load(db_session, instance_id)
        assert instance.progress == 3
        assert instance.completed is False
        assert instance.xp_awarded is None

        assert await increment_challenge(db_session, instance_id, 1, clock.now()) is True

    @pytest.mark.asyncio
    async def test_zero_increment_is_ignored(self, db_session, clock):
        instance_id = await _add_instance(db_session, "complete_2_tasks", clock.today())
        assert await increment_challenge(db_session, instance_id, 0, clock.now()) is False
        assert (await _load(db_session, instance_id)).progress == 0


class TestActionProgress:
    @pytest.mark.asyncio
    async def test_high_priority_task_completes_priority_challenge(self, db_session, clock):
        await _add_instance(db_session, "high_priority_task", clock.today())
        result = await complete_action(
            db_session, USER, TaskAction(task_id="t1", is_high_priority=True), clock=clock,
        )
        assert "high_priority_task" in result.challenges_completed["daily"]
        assert result.bonus_xp["challenge_xp"] >= 30

    @pytest.mark.asyncio
    async def test_normal_task_does_not_count_as_priority(self, db_session, clock):
        instance_id = await _add_instance(db_session, "high_priority_task", clock.today())
        await complete_action(db_session, USER, TaskAction(task_id="t1"), clock=clock)
        assert (await _load(db_session, instance_id)).progress == 0

    @pytest.mark.asyncio
    async def test_all_habits_needs_every_scheduled_habit(self, db_session, clock):
        await _add_instance(db_session, "complete_all_habits", clock.today())

        first = await complete_action(
            db_session, USER, HabitAction(habit_id="h1", scheduled_habits_today=2), clock=clock,
        )
        assert "complete_all_habits" not in first.challenges_completed["daily"]

        second = await complete_action(
            db_session, USER, HabitAction(habit_id="h2", scheduled_habits_today=2), clock=clock,
        )
        assert "complete_all_habits" in second.challenges_completed["daily"]

    @pytest.mark.asyncio
    async def test_clearing_the_day_advances_weekly_daily_challenges(self, db_session, clock):
        today = clock.today()
        await ensure_daily_challenges(db_session, USER, today)
        await db_session.execute(
            update(ChallengeInstance)
            .where(ChallengeInstance.user_id == USER, ChallengeInstance.period_start == today)
            .values(completed=True)
        )
        await db_session.commit()
        await _add_instance(db_session, "high_priority_task", today)
        await _add_instance(db_session, "weekly_daily_challenges", week_start_for(today), progress=4)

        result = await complete_action(
            db_session, USER, TaskAction(task_id="t1", is_high_priority=True), clock=clock,
        )
        assert result.challenges_completed["daily"] == ["high_priority_task"]
        assert "weekly_daily_challenges" in result.challenges_completed["weekly"]

    @pytest.mark.asyncio
    async def test_weekly_streak_moves_once_per_day(self, db_session, clock):
        instance_id = await _add_instance(db_session, "weekly_streak", week_start_for(clock.today()))
        await complete_action(db_session, USER, TaskAction(task_id="t1"), clock=clock)
        await complete_action(db_session, USER, TaskAction(task_id="t2"), clock=clock)
        clock.advance(days=1)
        await complete_action(db_session, USER, TaskAction(task_id="t3"), clock=clock)
        assert (await _load(db_session, instance_id)).progress == 2
