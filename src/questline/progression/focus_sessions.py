"""Server-side focus sessions.

The start time is stamped here when a session begins and read back when it
is completed, so XP pro-rating never depends on a time the client reports.
A user has at most one active session (partial unique index on user_id).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from questline.config import get_settings
from questline.db.models import FocusSession
from questline.db.upsert import insert_for
from questline.progression.clock import Clock, get_clock
from questline.progression.errors import FocusSessionNotFoundError, InvalidActionError
from questline.progression.xp_calculator import FocusCredit

logger = logging.getLogger(__name__)

ACTIVE = "active"
COMPLETED = "completed"
ABANDONED = "abandoned"


def session_view(session: FocusSession) -> dict:
    return {
        "session_id": session.id,
        "planned_minutes": session.planned_minutes,
        "status": session.status,
        "started_at": session.started_at,
        "ended_at": session.ended_at,
        "actual_minutes": session.actual_minutes,
        "xp_awarded": session.xp_awarded,
    }


async def _load(db: AsyncSession, user_id: str, session_id: str) -> FocusSession | None:
    result = await db.execute(
        select(FocusSession)
        .where(FocusSession.id == session_id, FocusSession.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def start_focus_session(
    db: AsyncSession,
    user_id: str,
    planned_minutes: int,
    clock: Clock | None = None,
) -> dict:
    """Open a session for ``user_id`` starting now.

    Raises InvalidActionError for an out-of-range plan or when the user
    already has an active session.
    """
    settings = get_settings()
    clock = clock or get_clock()
    if planned_minutes <= 0 or planned_minutes > settings.max_focus_session_minutes:
        msg = f"planned_minutes must be between 1 and {settings.max_focus_session_minutes}"
        raise InvalidActionError(msg)

    session_id = uuid4().hex
    try:
        result = await db.execute(
            insert_for(db, FocusSession)
            .values(
                id=session_id,
                user_id=user_id,
                planned_minutes=planned_minutes,
                status=ACTIVE,
                started_at=clock.now().astimezone(timezone.utc),
            )
            .on_conflict_do_nothing()
            .returning(FocusSession.id)
        )
        if result.scalar_one_or_none() is None:
            msg = "A focus session is already active"
            raise InvalidActionError(msg)
        session = await _load(db, user_id, session_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Started focus session %s for %s (%d min)", session_id, user_id, planned_minutes)
    return session_view(session)


async def get_active_session(db: AsyncSession, user_id: str, session_id: str) -> FocusSession:
    """The user's session ``session_id``, which must still be active."""
    session = await _load(db, user_id, session_id)
    if session is None:
        raise FocusSessionNotFoundError(session_id)
    if session.status != ACTIVE:
        msg = "Focus session is not active"
        raise InvalidActionError(msg)
    return session


async def _close(
    db: AsyncSession,
    session_id: str,
    status: str,
    ended_at: datetime,
    actual_minutes: int | None = None,
    xp_awarded: int | None = None,
) -> None:
    result = await db.execute(
        update(FocusSession)
        .where(FocusSession.id == session_id, FocusSession.status == ACTIVE)
        .values(
            status=status,
            ended_at=ended_at.astimezone(timezone.utc),
            actual_minutes=actual_minutes,
            xp_awarded=xp_awarded,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        msg = "Focus session is not active"
        raise InvalidActionError(msg)


async def finish_focus_session(db: AsyncSession, session_id: str, credit: FocusCredit, now: datetime) -> None:
    """Mark a session completed inside the caller's award transaction."""
    await _close(db, session_id, COMPLETED, now, credit.actual_minutes, credit.xp)


async def abandon_focus_session(
    db: AsyncSession,
    user_id: str,
    session_id: str,
    clock: Clock | None = None,
) -> dict:
    """Stop an active session without any award."""
    clock = clock or get_clock()
    try:
        await get_active_session(db, user_id, session_id)
        await _close(db, session_id, ABANDONED, clock.now())
        session = await _load(db, user_id, session_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Abandoned focus session %s for %s", session_id, user_id)
    return session_view(session)
