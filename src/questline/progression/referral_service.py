"""Referral XP: credit the inviter (and the new user) exactly once per referee."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from questline.config import get_settings
from questline.db.models import Notification, Referral, UserProfile
from questline.db.upsert import insert_ignore
from questline.progression.errors import InvalidActionError, ProfileNotFoundError
from questline.progression.ledger import grant_xp
from questline.progression.profile_service import get_or_create_profile

logger = logging.getLogger(__name__)


async def process_referral(db: AsyncSession, referrer_id: str, referee_id: str) -> dict:
    """Award referral XP for ``referee_id`` joining through ``referrer_id``.

    Idempotent on the referee: a second call for the same referee (from any
    referrer) returns ``already_processed`` and grants nothing.
    """
    if referrer_id == referee_id:
        msg = "You cannot refer yourself"
        raise InvalidActionError(msg)

    settings = get_settings()
    try:
        referrer = await db.scalar(select(UserProfile.user_id).where(UserProfile.user_id == referrer_id))
        if referrer is None:
            raise ProfileNotFoundError(referrer_id)
        await get_or_create_profile(db, referee_id)

        referral_id = await insert_ignore(
            db,
            Referral,
            {
                "referrer_id": referrer_id,
                "referee_id": referee_id,
                "created_at": datetime.now(timezone.utc),
            },
            ["referee_id"],
        )
        if referral_id is None:
            await db.commit()
            logger.info("Referral for %s already processed", referee_id)
            return {
                "already_processed": True,
                "referrer_xp": 0,
                "referee_xp": 0,
                "is_first_referral": False,
            }

        result = await db.execute(
            update(UserProfile)
            .where(UserProfile.user_id == referrer_id)
            .values(referral_count=UserProfile.referral_count + 1)
            .returning(UserProfile.referral_count)
            .execution_options(synchronize_session=False)
        )
        is_first = result.scalar_one() == 1

        referrer_xp = settings.referral_xp + (settings.first_referral_bonus_xp if is_first else 0)
        referee_xp = settings.referee_bonus_xp

        await grant_xp(
            db, referrer_id, referrer_xp, "referral", referee_id,
            "Referral bonus" + (" (first referral)" if is_first else ""),
            idempotency_key=f"referral:{referee_id}:referrer",
        )
        await grant_xp(
            db, referee_id, referee_xp, "referral", referrer_id,
            "Joined through an invite",
            idempotency_key=f"referral:{referee_id}:referee",
            extra_values={"referred_by": referrer_id},
        )
        await db.execute(
            update(Referral)
            .where(Referral.id == referral_id)
            .values(xp_awarded_to_referrer=referrer_xp, xp_awarded_to_referee=referee_xp)
            .execution_options(synchronize_session=False)
        )

        await _notify_referrer(db, referrer_id, referee_id, referrer_xp, is_first)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Referral %s -> %s: +%d / +%d XP", referrer_id, referee_id, referrer_xp, referee_xp)
    return {
        "already_processed": False,
        "referrer_xp": referrer_xp,
        "referee_xp": referee_xp,
        "is_first_referral": is_first,
    }


async def _notify_referrer(
    db: AsyncSession,
    referrer_id: str,
    referee_id: str,
    xp_earned: int,
    is_first: bool,
) -> None:
    """Write the inviter's notification in a savepoint; failure never blocks the XP."""
    try:
        async with db.begin_nested():
            db.add(Notification(
                user_id=referrer_id,
                type="referral",
                title="Someone joined via your invite!",
                body=f"+{xp_earned} XP earned for your referral",
                notification_metadata={
                    "referee_id": referee_id,
                    "xp_earned": xp_earned,
                    "is_first_referral": is_first,
                },
            ))
    except SQLAlchemyError:
        logger.warning("Failed to write referral notification for %s", referrer_id, exc_info=True)
