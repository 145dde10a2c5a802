"""XP ledger and atomic profile deltas.

Every XP change goes through ``apply_xp_delta``: a single
``UPDATE ... SET xp_total = xp_total + :delta RETURNING`` followed by a level
write that only lands if the XP total is still the one observed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from questline.db.models import LIFETIME_COUNTERS, UserProfile, XpLedgerEntry
from questline.db.upsert import insert_for
from questline.progression.errors import ProfileNotFoundError
from questline.progression.level_curve import (
    level_from_xp,
    perk_bonus_for_level,
    title_for_level,
)

logger = logging.getLogger(__name__)


@dataclass
class XpDelta:
    """Profile state right after an XP change."""

    xp_total: int
    old_level: int
    new_level: int
    current_streak: int

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


def floored_add(column: Any, delta: int) -> Any:
    if delta >= 0:
        return column + delta
    return case((column + delta < 0, 0), else_=column + delta)


async def apply_xp_delta(
    db: AsyncSession,
    user_id: str,
    delta: int,
    counter_deltas: dict[str, int] | None = None,
    extra_values: dict[str, Any] | None = None,
) -> XpDelta:
    """Add ``delta`` XP (and counter deltas) to a profile in one statement.

    Negative deltas are floored at zero. ``extra_values`` are merged into the
    same UPDATE so callers can move other columns atomically with the XP.
    """
    now = datetime.now(timezone.utc)
    values: dict[str, Any] = {
        "xp_total": floored_add(UserProfile.xp_total, delta),
        "updated_at": now,
    }
    for name, amount in (counter_deltas or {}).items():
        if name not in LIFETIME_COUNTERS:
            msg = f"Unknown profile counter: {name}"
            raise ValueError(msg)
        if amount:
            values[name] = floored_add(getattr(UserProfile, name), amount)
    if extra_values:
        values.update(extra_values)

    result = await db.execute(
        update(UserProfile)
        .where(UserProfile.user_id == user_id)
        .values(**values)
        .returning(UserProfile.xp_total, UserProfile.level, UserProfile.current_streak)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        raise ProfileNotFoundError(user_id)

    xp_total, stored_level, current_streak = row
    new_level = level_from_xp(xp_total)
    if new_level != stored_level:
        perk = perk_bonus_for_level(new_level)
        await db.execute(
            update(UserProfile)
            .where(UserProfile.user_id == user_id, UserProfile.xp_total == xp_total)
            .values(
                level=new_level,
                title=title_for_level(new_level),
                permanent_xp_bonus=case(
                    (UserProfile.permanent_xp_bonus < perk, perk),
                    else_=UserProfile.permanent_xp_bonus,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if new_level > stored_level:
            logger.info("User %s leveled up: %d -> %d", user_id, stored_level, new_level)

    return XpDelta(
        xp_total=xp_total,
        old_level=stored_level,
        new_level=new_level,
        current_streak=current_streak,
    )


async def record_grant(
    db: AsyncSession,
    user_id: str,
    amount: int,
    source: str,
    source_id: str | None,
    description: str,
    idempotency_key: str | None = None,
    counter_deltas: dict[str, int] | None = None,
    activity_date: date | None = None,
    client_key: str | None = None,
) -> int | None:
    """Insert a ledger row.

    Returns its id, or None if either the idempotency key or the user's
    client key was already used.
    """
    stmt = (
        insert_for(db, XpLedgerEntry)
        .values(
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            description=description,
            idempotency_key=idempotency_key,
            client_key=client_key,
            counter_deltas=counter_deltas or {},
            activity_date=activity_date,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing()
        .returning(XpLedgerEntry.id)
    )
    result = await db.execute(stmt)
    entry_id = result.scalar_one_or_none()
    if entry_id is None:
        logger.debug("Duplicate XP grant ignored: %s (client key %s)", idempotency_key, client_key)
    return entry_id


async def grant_xp(
    db: AsyncSession,
    user_id: str,
    amount: int,
    source: str,
    source_id: str | None,
    description: str,
    idempotency_key: str | None = None,
    activity_date: date | None = None,
    extra_values: dict[str, Any] | None = None,
) -> XpDelta | None:
    """Grant XP to a user. Returns the new profile state, or None if duplicate."""
    entry_id = await record_grant(
        db, user_id, amount, source, source_id, description,
        idempotency_key=idempotency_key, activity_date=activity_date,
    )
    if entry_id is None:
        return None
    return await apply_xp_delta(db, user_id, amount, extra_values=extra_values)


async def find_by_idempotency_key(db: AsyncSession, user_id: str, idempotency_key: str) -> XpLedgerEntry | None:
    result = await db.execute(
        select(XpLedgerEntry).where(
            XpLedgerEntry.user_id == user_id,
            XpLedgerEntry.idempotency_key == idempotency_key,
        )
    )
    return result.scalar_one_or_none()


async def find_by_client_key(db: AsyncSession, user_id: str, client_key: str) -> XpLedgerEntry | None:
    """The grant a user's earlier request with the same retry key produced."""
    result = await db.execute(
        select(XpLedgerEntry).where(
            XpLedgerEntry.user_id == user_id,
            XpLedgerEntry.client_key == client_key,
        )
    )
    return result.scalar_one_or_none()


async def set_counter_deltas(db: AsyncSession, entry_id: int, counter_deltas: dict[str, int]) -> None:
    """Replace the counters recorded on a grant, before the profile is updated."""
    await db.execute(
        update(XpLedgerEntry)
        .where(XpLedgerEntry.id == entry_id)
        .values(counter_deltas=counter_deltas)
        .execution_options(synchronize_session=False)
    )


async def find_live_award(
    db: AsyncSession,
    user_id: str,
    source: str,
    source_id: str,
) -> XpLedgerEntry | None:
    """Most recent un-revoked grant for a source entity."""
    result = await db.execute(
        select(XpLedgerEntry)
        .where(
            XpLedgerEntry.user_id == user_id,
            XpLedgerEntry.source == source,
            XpLedgerEntry.source_id == source_id,
            XpLedgerEntry.revoked_at.is_(None),
        )
        .order_by(XpLedgerEntry.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_revoked(db: AsyncSession, user_id: str, source: str, source_id: str) -> int:
    """How many times a source entity's award has been undone."""
    result = await db.execute(
        select(XpLedgerEntry.id).where(
            XpLedgerEntry.user_id == user_id,
            XpLedgerEntry.source == source,
            XpLedgerEntry.source_id == source_id,
            XpLedgerEntry.revoked_at.is_not(None),
        )
    )
    return len(result.all())


async def credited_since(
    db: AsyncSession,
    user_id: str,
    source: str,
    source_id: str,
    since: date,
    exclude_id: int,
) -> bool:
    """True if the source entity already earned an award dated ``since`` or later."""
    result = await db.execute(
        select(XpLedgerEntry.id)
        .where(
            XpLedgerEntry.user_id == user_id,
            XpLedgerEntry.source == source,
            XpLedgerEntry.source_id == source_id,
            XpLedgerEntry.activity_date >= since,
            XpLedgerEntry.id != exclude_id,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def mark_revoked(db: AsyncSession, entry_id: int, now: datetime) -> bool:
    """Stamp ``revoked_at`` once. False if another undo got there first."""
    result = await db.execute(
        update(XpLedgerEntry)
        .where(XpLedgerEntry.id == entry_id, XpLedgerEntry.revoked_at.is_(None))
        .values(revoked_at=now)
    )
    return result.rowcount == 1
