"""Redis pub/sub emission and leaderboard mirroring."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from vpay.gamification.engine import GamificationEngine
from vpay.gamification.notifications import publish_event


class TestPublishEvent:
    @pytest.mark.asyncio
    async def test_no_redis_is_noop(self):
        assert await publish_event(None, "level_up", {"user_id": 1}) is False

    @pytest.mark.asyncio
    async def test_publishes_json_on_channel(self):
        redis = AsyncMock()
        assert await publish_event(redis, "badge_earned", {"user_id": 7}) is True
        redis.publish.assert_awaited_once_with("pubsub:badge_earned", json.dumps({"user_id": 7}))

    @pytest.mark.asyncio
    async def test_redis_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")
        assert await publish_event(redis, "level_up", {"user_id": 1}) is False


class TestEngineEvents:
    @pytest.mark.asyncio
    async def test_level_up_and_badge_events(self, db_session, settings, user, now):
        redis = AsyncMock()
        engine = GamificationEngine(db_session, redis, settings)

        await engine.award_xp(user.id, 100, now=now)

        channels = [call.args[0] for call in redis.publish.await_args_list]
        assert channels == ["pubsub:badge_earned", "pubsub:level_up"]
        payload = json.loads(redis.publish.await_args_list[1].args[1])
        assert payload == {"user_id": user.id, "old_level": 1, "new_level": 2}

    @pytest.mark.asyncio
    async def test_redis_outage_does_not_fail_award(self, db_session, settings, user, now):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")
        engine = GamificationEngine(db_session, redis, settings)

        result = await engine.award_xp(user.id, 100, now=now)
        assert result.new_level == 2

    @pytest.mark.asyncio
    async def test_leaderboard_scores_mirrored(self, db_session, settings, user, now):
        redis = AsyncMock()
        engine = GamificationEngine(db_session, redis, settings)

        await engine.record_activity(user.id, "LOGIN", now=now)

        redis.zadd.assert_awaited_once_with("leaderboard:STREAK_LENGTH:ALL_TIME", {str(user.id): 1.0})
