"""Profile self-healing and referral tests."""

from __future__ import annotations

import pytest
from sqlalchemy import select, update

from questline.db.models import Notification, Referral, UserProfile
from questline.progression.errors import InvalidActionError, ProfileNotFoundError
from questline.progression.profile_service import (
    effective_xp_bonus,
    get_or_create_profile,
    get_profile,
    profile_summary,
)
from questline.progression.referral_service import process_referral


class TestProfile:
    @pytest.mark.asyncio
    async def test_lazy_creation_defaults(self, db_session):
        profile = await get_or_create_profile(db_session, "new-user")
        assert profile.xp_total == 0
        assert profile.level == 1
        assert profile.current_streak == 0
        assert profile.title == "Novice"
        assert profile.permanent_xp_bonus == 1.0

    @pytest.mark.asyncio
    async def test_get_profile_missing(self, db_session):
        with pytest.raises(ProfileNotFoundError):
            await get_profile(db_session, "nobody")

    @pytest.mark.asyncio
    async def test_stale_level_is_healed_on_read(self, db_session):
        await get_or_create_profile(db_session, "u1")
        await db_session.execute(
            update(UserProfile).where(UserProfile.user_id == "u1").values(level=7, title="Apprentice", xp_total=500)
        )
        await db_session.commit()

        profile = await get_profile(db_session, "u1")
        assert profile.level == 3
        assert profile.title == "Novice"

    @pytest.mark.asyncio
    async def test_perk_bonus_applied_when_healing_to_level_30(self, db_session):
        from questline.progression.level_curve import xp_for_level

        await get_or_create_profile(db_session, "u1")
        await db_session.execute(
            update(UserProfile).where(UserProfile.user_id == "u1").values(xp_total=xp_for_level(30))
        )
        await db_session.commit()

        profile = await get_profile(db_session, "u1")
        assert profile.level == 30
        assert profile.permanent_xp_bonus == 1.05
        assert effective_xp_bonus(profile) == 1.05

    @pytest.mark.asyncio
    async def test_summary(self, db_session, clock):
        profile = await get_or_create_profile(db_session, "u1")
        summary = profile_summary(profile, clock.today())
        assert summary["level"] == 1
        assert summary["streak"]["current"] == 0
        assert summary["streak"]["next_milestone"] == 7
        assert summary["xp_for_next_level"] == 141


class TestReferrals:
    @pytest.mark.asyncio
    async def test_first_referral_gets_bonus(self, db_session):
        await get_or_create_profile(db_session, "inviter")
        await db_session.commit()

        result = await process_referral(db_session, "inviter", "friend-1")
        assert result == {
            "already_processed": False,
            "referrer_xp": 75,
            "referee_xp": 10,
            "is_first_referral": True,
        }

        inviter = await get_profile(db_session, "inviter")
        friend = await get_profile(db_session, "friend-1")
        assert inviter.xp_total == 75
        assert inviter.referral_count == 1
        assert friend.xp_total == 10
        assert friend.referred_by == "inviter"

    @pytest.mark.asyncio
    async def test_second_referral_no_bonus(self, db_session):
        await get_or_create_profile(db_session, "inviter")
        await db_session.commit()

        await process_referral(db_session, "inviter", "friend-1")
        result = await process_referral(db_session, "inviter", "friend-2")
        assert result["referrer_xp"] == 50
        assert result["is_first_referral"] is False
        assert (await get_profile(db_session, "inviter")).xp_total == 125

    @pytest.mark.asyncio
    async def test_idempotent_per_referee(self, db_session):
        await get_or_create_profile(db_session, "inviter")
        await get_or_create_profile(db_session, "other")
        await db_session.commit()

        await process_referral(db_session, "inviter", "friend-1")
        again = await process_referral(db_session, "inviter", "friend-1")
        elsewhere = await process_referral(db_session, "other", "friend-1")

        assert again["already_processed"] is True
        assert elsewhere["already_processed"] is True
        assert (await get_profile(db_session, "inviter")).xp_total == 75
        assert (await get_profile(db_session, "other")).xp_total == 0
        assert (await get_profile(db_session, "friend-1")).xp_total == 10

        rows = (await db_session.execute(select(Referral))).scalars().all()
        assert len(rows) == 1
        assert rows[0].xp_awarded_to_referrer == 75

    @pytest.mark.asyncio
    async def test_notification_written(self, db_session):
        await get_or_create_profile(db_session, "inviter")
        await db_session.commit()
        await process_referral(db_session, "inviter", "friend-1")

        notification = await db_session.scalar(select(Notification).where(Notification.user_id == "inviter"))
        assert notification is not None
        assert notification.type == "referral"
        assert notification.notification_metadata["is_first_referral"] is True

    @pytest.mark.asyncio
    async def test_self_referral_rejected(self, db_session):
        with pytest.raises(InvalidActionError):
            await process_referral(db_session, "me", "me")

    @pytest.mark.asyncio
    async def test_unknown_referrer(self, db_session):
        with pytest.raises(ProfileNotFoundError):
            await process_referral(db_session, "ghost", "friend-1")
