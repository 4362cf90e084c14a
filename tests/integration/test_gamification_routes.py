"""HTTP routes over the gamification engine, including error mapping."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient

from vpay.db.models import RewardRecommendation, Transaction


@pytest_asyncio.fixture
async def user_id(make_user) -> int:
    user = await make_user("api-user")
    return user.id


@pytest_asyncio.fixture
async def recommendation_id(db_session, user_id) -> int:
    rec = RewardRecommendation(
        user_id=user_id,
        reward_type="BONUS_TOKENS",
        title="25 Bonus VPay Tokens",
        description="",
        value=25.0,
        confidence=0.9,
        reasoning="frequent usage",
        rec_metadata={"tokenAmount": 25, "tokenType": "VPAY"},
        status="PENDING",
        created_at=datetime.now(timezone.utc),
    )
    db_session.add(rec)
    await db_session.commit()
    return rec.id


class TestActivityRoutes:
    @pytest.mark.asyncio
    async def test_record_activity(self, client: AsyncClient, user_id):
        response = await client.post(
            f"/api/v1/users/{user_id}/activities",
            json={"activity_type": "LOGIN", "metadata": {"device": "web"}},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["failed_steps"] == []
        assert data["activity_id"] is not None

    @pytest.mark.asyncio
    async def test_unknown_user_reports_failure(self, client: AsyncClient):
        response = await client.post("/api/v1/users/999/activities", json={"activity_type": "LOGIN"})
        assert response.status_code == 200
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_missing_activity_type(self, client: AsyncClient, user_id):
        response = await client.post(f"/api/v1/users/{user_id}/activities", json={})
        assert response.status_code == 422


class TestStreakRoutes:
    @pytest.mark.asyncio
    async def test_update_and_list(self, client: AsyncClient, user_id):
        response = await client.post(f"/api/v1/users/{user_id}/streaks", json={"streak_type": "PAYMENT"})
        assert response.status_code == 200
        assert response.json()["current_count"] == 1

        response = await client.get(f"/api/v1/users/{user_id}/streaks")
        data = response.json()
        assert [s["streak_type"] for s in data["streaks"]] == ["PAYMENT"]
        assert data["stats"]["total_active_streaks"] == 1

    @pytest.mark.asyncio
    async def test_unknown_type_is_422(self, client: AsyncClient, user_id):
        response = await client.post(f"/api/v1/users/{user_id}/streaks", json={"streak_type": "NAPPING"})
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_history(self, client: AsyncClient, user_id):
        await client.post(f"/api/v1/users/{user_id}/activities", json={"activity_type": "LOGIN"})
        response = await client.get(f"/api/v1/users/{user_id}/streaks/history", params={"days": 7})
        history = response.json()
        assert len(history) == 7
        assert history[-1]["has_activity"] is True


class TestQuestRoutes:
    @pytest.mark.asyncio
    async def test_daily_quests_and_progress(self, client: AsyncClient, user_id):
        response = await client.get(f"/api/v1/users/{user_id}/quests")
        assert response.status_code == 200
        quests = {q["code"]: q for q in response.json()}
        assert set(quests) == {"DAILY_LOGIN", "DAILY_PAYMENT", "DAILY_TASK"}
        assert all(q["percentage"] == 0.0 for q in quests.values())

        quest_id = quests["DAILY_TASK"]["quest_id"]
        response = await client.post(
            f"/api/v1/users/{user_id}/quests/{quest_id}/progress",
            json={"activity_type": "TASK_COMPLETED"},
        )
        assert response.json() == {
            "progress": {"TASK_COMPLETED": 1},
            "is_completed": True,
            "status": "COMPLETED",
        }

        response = await client.get(f"/api/v1/users/{user_id}/quests/{quest_id}/progress")
        assert response.json()["percentage"] == 100.0

        response = await client.get(f"/api/v1/users/{user_id}/quests/completed")
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_progress_on_unassigned_quest_is_404(self, client: AsyncClient, user_id):
        response = await client.post(
            f"/api/v1/users/{user_id}/quests/777/progress", json={"activity_type": "LOGIN"}
        )
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    @pytest.mark.asyncio
    async def test_zero_increment_is_422(self, client: AsyncClient, user_id):
        response = await client.post(
            f"/api/v1/users/{user_id}/quests/1/progress",
            json={"activity_type": "LOGIN", "increment": 0},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_weekly(self, client: AsyncClient, user_id):
        response = await client.post(f"/api/v1/users/{user_id}/quests/weekly")
        assert len(response.json()) == 3


class TestLevelAndBadgeRoutes:
    @pytest.mark.asyncio
    async def test_award_xp(self, client: AsyncClient, user_id):
        response = await client.post(f"/api/v1/users/{user_id}/xp", json={"amount": 250})
        assert response.json() == {
            "new_level": 3,
            "leveled_up": True,
            "levels_reached": [2, 3],
            "bonus_points": 500,
        }
        level = (await client.get(f"/api/v1/users/{user_id}/level")).json()
        assert level == {"level": 3, "xp": 0, "xp_to_next": 225, "total_xp": 250}

    @pytest.mark.asyncio
    async def test_award_badge_and_list(self, client: AsyncClient, user_id):
        response = await client.post(f"/api/v1/users/{user_id}/badges", json={"badge_type": "MENTOR"})
        assert response.status_code == 200
        assert response.json()["rarity"] == "EPIC"

        badges = (await client.get(f"/api/v1/users/{user_id}/badges")).json()
        assert [b["code"] for b in badges] == ["MENTOR"]

    @pytest.mark.asyncio
    async def test_summary(self, client: AsyncClient, user_id):
        await client.post(f"/api/v1/users/{user_id}/xp", json={"amount": 100})
        summary = (await client.get(f"/api/v1/users/{user_id}/summary")).json()
        assert summary["level"] == 2
        assert summary["points"] == 200
        assert summary["badges"] == 1

    @pytest.mark.asyncio
    async def test_summary_unknown_user_is_404(self, client: AsyncClient):
        response = await client.get("/api/v1/users/999/summary")
        assert response.status_code == 404
        assert response.json() == {"error": "NotFoundError", "detail": "User 999 not found"}


class TestRecommendationRoutes:
    @pytest.mark.asyncio
    async def test_spending_and_generate(self, client: AsyncClient, db_session, user_id):
        now = datetime.now(timezone.utc)
        for day in range(3):
            db_session.add(
                Transaction(
                    user_id=user_id,
                    type="PAYMENT",
                    amount=300.0,
                    status="COMPLETED",
                    created_at=now - timedelta(days=day + 1),
                )
            )
        await db_session.commit()

        analysis = (await client.get(f"/api/v1/users/{user_id}/spending")).json()
        assert analysis["total_spent"] == 900.0
        assert analysis["risk_profile"] == "MEDIUM"

        recs = (await client.post(f"/api/v1/users/{user_id}/recommendations")).json()
        assert [r["reward_type"] for r in recs] == ["CASHBACK"]

        listing = (await client.get(f"/api/v1/users/{user_id}/recommendations")).json()
        assert listing["total"] == 1
        assert listing["stats"]["PENDING"] == 1

    @pytest.mark.asyncio
    async def test_claim_then_conflict(self, client: AsyncClient, user_id, recommendation_id):
        url = f"/api/v1/users/{user_id}/recommendations/{recommendation_id}/claim"
        response = await client.post(url)
        assert response.status_code == 200
        assert response.json()["result"] == {"type": "BONUS_TOKENS", "amount": 25}

        response = await client.post(url)
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidStateError"

    @pytest.mark.asyncio
    async def test_claim_missing_is_404(self, client: AsyncClient, user_id):
        response = await client.post(f"/api/v1/users/{user_id}/recommendations/12345/claim")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_status_filter_is_422(self, client: AsyncClient, user_id):
        response = await client.get(f"/api/v1/users/{user_id}/recommendations", params={"status": "LOST"})
        assert response.status_code == 422


class TestLeaderboardRoutes:
    @pytest.mark.asyncio
    async def test_leaderboard_after_activity(self, client: AsyncClient, user_id):
        await client.post(f"/api/v1/users/{user_id}/activities", json={"activity_type": "LOGIN"})
        data = (await client.get("/api/v1/leaderboards/streak_length")).json()
        assert data["category"] == "STREAK_LENGTH"
        assert data["entries"] == [{"rank": None, "user_id": user_id, "score": 1.0}]

    @pytest.mark.asyncio
    async def test_unknown_category_is_422(self, client: AsyncClient):
        response = await client.get("/api/v1/leaderboards/karma")
        assert response.status_code == 422
