"""Per-day activity totals."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from questline.db.models import ActivityLog
from questline.db.upsert import insert_for
from questline.progression.ledger import floored_add


async def record_activity(
    db: AsyncSession,
    user_id: str,
    activity_date: date,
    xp_earned: int = 0,
    tasks_completed: int = 0,
    focus_minutes: int = 0,
    habits_completed: int = 0,
) -> int:
    """Add to the day's totals, creating the row if needed.

    Returns the day's ``habits_completed`` after the write.
    """
    stmt = insert_for(db, ActivityLog).values(
        user_id=user_id,
        activity_date=activity_date,
        xp_earned=xp_earned,
        tasks_completed=tasks_completed,
        focus_minutes=focus_minutes,
        habits_completed=habits_completed,
        streak_maintained=True,
        updated_at=datetime.now(timezone.utc),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "activity_date"],
        set_={
            "xp_earned": ActivityLog.xp_earned + stmt.excluded.xp_earned,
            "tasks_completed": ActivityLog.tasks_completed + stmt.excluded.tasks_completed,
            "focus_minutes": ActivityLog.focus_minutes + stmt.excluded.focus_minutes,
            "habits_completed": ActivityLog.habits_completed + stmt.excluded.habits_completed,
            "streak_maintained": True,
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(ActivityLog.habits_completed)
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def reverse_activity(
    db: AsyncSession,
    user_id: str,
    activity_date: date,
    xp_earned: int,
    tasks_completed: int = 0,
    focus_minutes: int = 0,
    habits_completed: int = 0,
) -> None:
    """Subtract an undone award from the day it was earned on, never below zero."""
    await db.execute(
        update(ActivityLog)
        .where(ActivityLog.user_id == user_id, ActivityLog.activity_date == activity_date)
        .values(
            xp_earned=floored_add(ActivityLog.xp_earned, -xp_earned),
            tasks_completed=floored_add(ActivityLog.tasks_completed, -tasks_completed),
            focus_minutes=floored_add(ActivityLog.focus_minutes, -focus_minutes),
            habits_completed=floored_add(ActivityLog.habits_completed, -habits_completed),
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )


async def get_activity_history(db: AsyncSession, user_id: str, today: date, days: int = 30) -> list[dict]:
    """Activity rows for the last ``days`` days, oldest first. Days with no activity are omitted."""
    start = today - timedelta(days=days - 1)
    result = await db.execute(
        select(ActivityLog)
        .where(
            ActivityLog.user_id == user_id,
            ActivityLog.activity_date >= start,
            ActivityLog.activity_date <= today,
        )
        .order_by(ActivityLog.activity_date)
        .execution_options(populate_existing=True)
    )
    return [
        {
            "activity_date": row.activity_date,
            "xp_earned": row.xp_earned,
            "tasks_completed": row.tasks_completed,
            "focus_minutes": row.focus_minutes,
            "habits_completed": row.habits_completed,
            "streak_maintained": row.streak_maintained,
        }
        for row in result.scalars()
    ]
