"""Streak engine: day boundaries, milestones, multiplier and the stale sweep."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from vpay.exceptions import ValidationError
from vpay.gamification.streak_service import streak_multiplier, utc_today


class TestPureHelpers:
    def test_utc_today_converts_offsets(self):
        late_evening_west = datetime(2026, 3, 1, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert utc_today(late_evening_west).isoformat() == "2026-03-02"

    def test_utc_today_naive_is_utc(self):
        assert utc_today(datetime(2026, 3, 2, 23, 59)).isoformat() == "2026-03-02"

    @pytest.mark.parametrize(
        ("count", "expected"),
        [(0, 1.0), (1, 1.1), (5, 1.5), (20, 3.0), (100, 3.0)],
    )
    def test_multiplier_is_capped(self, count, expected):
        assert streak_multiplier(count) == pytest.approx(expected)


class TestUpdateStreak:
    @pytest.mark.asyncio
    async def test_first_activity_starts_at_one(self, engine, user, now):
        streak = await engine.update_streak(user.id, "LOGIN", now=now)
        assert streak.current_count == 1
        assert streak.max_count == 1
        assert streak.is_active is True
        assert streak.last_activity_date == now.date()

    @pytest.mark.asyncio
    async def test_same_day_is_idempotent(self, engine, user, now):
        await engine.update_streak(user.id, "LOGIN", now=now)
        streak = await engine.update_streak(user.id, "LOGIN", now=now + timedelta(hours=6))
        assert streak.current_count == 1

    @pytest.mark.asyncio
    async def test_consecutive_day_increments(self, engine, user, now):
        await engine.update_streak(user.id, "PAYMENT", now=now)
        streak = await engine.update_streak(user.id, "PAYMENT", now=now + timedelta(days=1))
        assert streak.current_count == 2
        assert streak.multiplier == pytest.approx(1.2)

    @pytest.mark.asyncio
    async def test_midnight_boundary_counts_as_next_day(self, engine, user):
        before = datetime(2026, 3, 2, 23, 59, 59, tzinfo=timezone.utc)
        after = datetime(2026, 3, 3, 0, 0, 0, tzinfo=timezone.utc)
        await engine.update_streak(user.id, "LOGIN", now=before)
        streak = await engine.update_streak(user.id, "LOGIN", now=after)
        assert streak.current_count == 2

    @pytest.mark.asyncio
    async def test_gap_resets_to_one_and_keeps_max(self, engine, user, now):
        for day in range(3):
            await engine.update_streak(user.id, "LOGIN", now=now + timedelta(days=day))
        streak = await engine.update_streak(user.id, "LOGIN", now=now + timedelta(days=5))
        assert streak.current_count == 1
        assert streak.max_count == 3
        assert streak.multiplier == pytest.approx(1.1)

    @pytest.mark.asyncio
    async def test_earlier_date_is_ignored(self, engine, user, now):
        await engine.update_streak(user.id, "LOGIN", now=now)
        streak = await engine.update_streak(user.id, "LOGIN", now=now - timedelta(days=1))
        assert streak.current_count == 1
        assert streak.last_activity_date == now.date()

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, engine, user, now):
        with pytest.raises(ValidationError):
            await engine.update_streak(user.id, "SLEEPING", now=now)

    @pytest.mark.asyncio
    async def test_seven_day_login_milestone(self, engine, user, now, db_session):
        """Day 7 awards STREAK_LOGIN_7 once and 70 streak points."""
        for day in range(7):
            result = await engine.record_activity(user.id, "LOGIN", now=now + timedelta(days=day))
            assert result.success

        streak = (await engine.list_streaks(user.id))[0]
        assert streak.current_count == 7
        assert streak.multiplier == pytest.approx(1.7)

        codes = [b.badge.code for b in await engine.list_badges(user.id)]
        assert codes.count("STREAK_LOGIN_7") == 1
        assert await engine.ledger.points_by_source(user.id, "streak") == 70

        await db_session.refresh(user)
        assert user.reward_points == 70


class TestStaleStreaks:
    @pytest.mark.asyncio
    async def test_yesterday_is_not_stale(self, engine, user, now):
        await engine.update_streak(user.id, "LOGIN", now=now)
        broken = await engine.check_and_break_stale(user.id, now=now + timedelta(days=1))
        assert broken == []

    @pytest.mark.asyncio
    async def test_two_days_without_activity_breaks(self, engine, user, now):
        for day in range(3):
            await engine.update_streak(user.id, "LOGIN", now=now + timedelta(days=day))
        broken = await engine.check_and_break_stale(user.id, now=now + timedelta(days=5))

        assert len(broken) == 1
        streak = broken[0]
        assert streak.is_active is False
        assert streak.current_count == 0
        assert streak.multiplier == 1.0
        assert streak.max_count == 3
        assert await engine.get_multiplier(user.id, "LOGIN") == 1.0

    @pytest.mark.asyncio
    async def test_activity_after_break_restarts(self, engine, user, now):
        await engine.update_streak(user.id, "LOGIN", now=now)
        await engine.check_and_break_stale(user.id, now=now + timedelta(days=3))
        streak = await engine.update_streak(user.id, "LOGIN", now=now + timedelta(days=3))
        assert streak.current_count == 1
        assert streak.is_active is True

    @pytest.mark.asyncio
    async def test_batch_sweep_across_users(self, engine, make_user, now):
        fresh = await make_user("fresh")
        stale = await make_user("stale")
        await engine.update_streak(stale.id, "LOGIN", now=now)
        await engine.update_streak(fresh.id, "LOGIN", now=now + timedelta(days=3))

        assert await engine.break_stale_streaks(now=now + timedelta(days=3)) == 1
        stats = await engine.streak_stats(fresh.id)
        assert stats["total_active_streaks"] == 1


class TestStreakQueries:
    @pytest.mark.asyncio
    async def test_stats(self, engine, user, now):
        for day in range(4):
            await engine.update_streak(user.id, "LOGIN", now=now + timedelta(days=day))
        await engine.update_streak(user.id, "PAYMENT", now=now + timedelta(days=3))

        stats = await engine.streak_stats(user.id)
        assert stats == {
            "total_active_streaks": 2,
            "longest_current_streak": 4,
            "longest_ever_streak": 4,
            "total_streak_days": 5,
        }

    @pytest.mark.asyncio
    async def test_multiplier_absent_streak(self, engine, user):
        assert await engine.get_multiplier(user.id, "TASK_COMPLETION") == 1.0

    @pytest.mark.asyncio
    async def test_streak_leaderboard_orders_by_count(self, engine, make_user, now):
        short = await make_user("short")
        long = await make_user("long")
        for day in range(3):
            await engine.update_streak(long.id, "LOGIN", now=now + timedelta(days=day))
        await engine.update_streak(short.id, "LOGIN", now=now + timedelta(days=2))

        board = await engine.streak_leaderboard("LOGIN")
        assert [(row["rank"], row["user_id"], row["current_count"]) for row in board] == [
            (1, long.id, 3),
            (2, short.id, 1),
        ]

    @pytest.mark.asyncio
    async def test_history_marks_active_days(self, engine, user, now):
        await engine.record_activity(user.id, "LOGIN", now=now - timedelta(days=1))
        await engine.record_activity(user.id, "LOGIN", now=now)
        await engine.record_activity(user.id, "LOGIN", now=now + timedelta(minutes=5))

        history = await engine.streak_history(user.id, "LOGIN", days=3, now=now)
        assert [(d["date"], d["activity_count"]) for d in history] == [
            ("2026-02-28", 0),
            ("2026-03-01", 1),
            ("2026-03-02", 2),
        ]
        assert history[0]["has_activity"] is False
