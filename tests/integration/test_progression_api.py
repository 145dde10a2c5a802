"""Progression API tests over the ASGI app."""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient

COMPLETE = "/api/v1/actions/complete"
FOCUS = "/api/v1/focus/sessions"


def _task(task_id: str = "t1", **extra) -> dict:
    return {"action": {"action_type": "task", "task_id": task_id, **extra}}


class TestActions:
    @pytest.mark.asyncio
    async def test_complete_task(self, client: AsyncClient, user_headers):
        response = await client.post(COMPLETE, json=_task(), headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["action_total_xp"] == 15
        assert data["new_streak"] == 1
        assert data["xp_breakdown"]["base_xp"] == 15
        assert data["replayed"] is False

    @pytest.mark.asyncio
    async def test_replay_with_idempotency_key(self, client: AsyncClient, user_headers):
        body = {**_task(), "idempotency_key": "req-1"}
        await client.post(COMPLETE, json=body, headers=user_headers)
        response = await client.post(COMPLETE, json=body, headers=user_headers)
        assert response.status_code == 200
        assert response.json()["replayed"] is True
        assert response.json()["new_xp_total"] == 15

    @pytest.mark.asyncio
    async def test_focus_session(self, client: AsyncClient, user_headers, clock):
        started = await client.post(FOCUS, json={"planned_minutes": 60}, headers=user_headers)
        assert started.status_code == 201
        session = started.json()
        assert session["status"] == "active"

        clock.advance(minutes=45)
        response = await client.post(
            COMPLETE,
            json={"action": {"action_type": "focus", "session_id": session["session_id"]}},
            headers=user_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["action_total_xp"] == 35
        assert data["focus_credit"]["actual_minutes"] == 45

    @pytest.mark.asyncio
    async def test_client_start_time_is_ignored(self, client: AsyncClient, user_headers, clock):
        started = await client.post(FOCUS, json={"planned_minutes": 60}, headers=user_headers)
        backdated = (clock.now() - timedelta(hours=2)).isoformat()
        response = await client.post(
            COMPLETE,
            json={
                "action": {
                    "action_type": "focus",
                    "session_id": started.json()["session_id"],
                    "started_at": backdated,
                    "planned_minutes": 60,
                }
            },
            headers=user_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["below_threshold"] is True
        assert data["action_total_xp"] == 0
        assert data["new_xp_total"] == 0

    @pytest.mark.asyncio
    async def test_focus_without_started_session_is_404(self, client: AsyncClient, user_headers, clock):
        backdated = (clock.now() - timedelta(hours=1)).isoformat()
        response = await client.post(
            COMPLETE,
            json={"action": {"action_type": "focus", "session_id": "fake", "started_at": backdated}},
            headers=user_headers,
        )
        assert response.status_code == 404

        profile = await client.get("/api/v1/progression/profile", headers=user_headers)
        assert profile.json()["xp_total"] == 0

    @pytest.mark.asyncio
    async def test_invalid_focus_plan_is_400(self, client: AsyncClient, user_headers):
        response = await client.post(FOCUS, json={"planned_minutes": 0}, headers=user_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_second_active_focus_session_is_400(self, client: AsyncClient, user_headers):
        await client.post(FOCUS, json={"planned_minutes": 25}, headers=user_headers)
        response = await client.post(FOCUS, json={"planned_minutes": 25}, headers=user_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_abandon_focus_session(self, client: AsyncClient, user_headers):
        started = await client.post(FOCUS, json={"planned_minutes": 25}, headers=user_headers)
        session_id = started.json()["session_id"]

        response = await client.post(f"{FOCUS}/{session_id}/abandon", headers=user_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "abandoned"

        again = await client.post(f"{FOCUS}/{session_id}/abandon", headers=user_headers)
        assert again.status_code == 400
        missing = await client.post(f"{FOCUS}/nope/abandon", headers=user_headers)
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_action_type_is_422(self, client: AsyncClient, user_headers):
        response = await client.post(COMPLETE, json={"action": {"action_type": "sleep"}}, headers=user_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_undo(self, client: AsyncClient, user_headers):
        await client.post(COMPLETE, json=_task(), headers=user_headers)
        response = await client.post(
            "/api/v1/actions/undo", json={"source": "task", "source_id": "t1"}, headers=user_headers,
        )
        assert response.status_code == 200
        assert response.json() == {"revoked_xp": 15, "new_xp_total": 0, "new_level": 1, "leveled_down": False}

        again = await client.post(
            "/api/v1/actions/undo", json={"source": "task", "source_id": "t1"}, headers=user_headers,
        )
        assert again.status_code == 404


class TestReads:
    @pytest.mark.asyncio
    async def test_profile(self, client: AsyncClient, user_headers):
        await client.post(COMPLETE, json=_task(), headers=user_headers)
        response = await client.get("/api/v1/progression/profile", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == "user-1"
        assert data["xp_total"] == 15
        assert data["level"] == 1
        assert data["title"] == "Novice"
        assert data["streak"]["current"] == 1
        assert data["stats"]["tasks_completed"] == 1

    @pytest.mark.asyncio
    async def test_activity(self, client: AsyncClient, user_headers):
        await client.post(COMPLETE, json=_task(), headers=user_headers)
        response = await client.get("/api/v1/progression/activity?days=7", headers=user_headers)
        assert response.status_code == 200
        days = response.json()["days"]
        assert len(days) == 1
        assert days[0]["activity_date"] == "2026-03-10"
        assert days[0]["tasks_completed"] == 1

    @pytest.mark.asyncio
    async def test_daily_challenges(self, client: AsyncClient, user_headers):
        response = await client.get("/api/v1/challenges/daily", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["period_start"] == "2026-03-10"
        assert [c["difficulty"] for c in data["challenges"]] == ["easy", "medium", "hard"]

    @pytest.mark.asyncio
    async def test_weekly_challenges(self, client: AsyncClient, user_headers):
        response = await client.get("/api/v1/challenges/weekly", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["period_start"] == "2026-03-09"
        assert len(data["challenges"]) == 1

    @pytest.mark.asyncio
    async def test_achievements(self, client: AsyncClient, user_headers):
        response = await client.get("/api/v1/achievements", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert len(data["achievements"]) == 27
        assert data["total_unlocked"] == 0

    @pytest.mark.asyncio
    async def test_check_achievements(self, client: AsyncClient, user_headers):
        response = await client.post("/api/v1/achievements/check", headers=user_headers)
        assert response.status_code == 200
        assert response.json() == {"unlocked": [], "total_xp_awarded": 0}


class TestReferrals:
    @pytest.mark.asyncio
    async def test_referral_flow(self, client: AsyncClient):
        await client.get("/api/v1/progression/profile", headers={"X-User-Id": "inviter"})

        response = await client.post(
            "/api/v1/referrals", json={"referrer_id": "inviter"}, headers={"X-User-Id": "friend"},
        )
        assert response.status_code == 200
        assert response.json()["referrer_xp"] == 75

        again = await client.post(
            "/api/v1/referrals", json={"referrer_id": "inviter"}, headers={"X-User-Id": "friend"},
        )
        assert again.json()["already_processed"] is True

    @pytest.mark.asyncio
    async def test_self_referral_is_400(self, client: AsyncClient, user_headers):
        response = await client.post("/api/v1/referrals", json={"referrer_id": "user-1"}, headers=user_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_referrer_is_404(self, client: AsyncClient, user_headers):
        response = await client.post("/api/v1/referrals", json={"referrer_id": "ghost"}, headers=user_headers)
        assert response.status_code == 404
