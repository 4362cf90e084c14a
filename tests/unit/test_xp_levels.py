"""Level curve and XP grants with cascading level-ups."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from vpay.db.models import PointsLedger, XPLedger
from vpay.exceptions import StorageError, ValidationError
from vpay.gamification.level_thresholds import level_rarity, settle_levels, xp_to_next


class TestLevelCurve:
    def test_default_thresholds(self):
        assert [xp_to_next(n) for n in range(1, 6)] == [100, 150, 225, 337, 506]

    def test_level_below_one_rejected(self):
        with pytest.raises(ValueError):
            xp_to_next(0)

    def test_custom_curve(self):
        assert xp_to_next(3, base=50, growth=2.0) == 200

    def test_settle_exact_threshold_levels_up(self):
        """Reaching the threshold exactly enters the next level with 0 XP."""
        assert settle_levels(1, 0, 100) == (2, 0, 150, [2])

    def test_settle_one_short_stays(self):
        assert settle_levels(1, 0, 99) == (1, 99, 100, [])

    def test_settle_cascades_multiple_levels(self):
        """250 XP from level 1: 100 to L2, 150 to L3, 0 left."""
        assert settle_levels(1, 0, 250) == (3, 0, 225, [2, 3])

    def test_settle_carries_existing_xp(self):
        assert settle_levels(2, 140, 20) == (3, 10, 225, [3])

    @pytest.mark.parametrize(
        ("level", "rarity"),
        [(2, "COMMON"), (9, "COMMON"), (10, "RARE"), (25, "EPIC"), (50, "LEGENDARY")],
    )
    def test_level_rarity(self, level, rarity):
        assert level_rarity(level) == rarity


class TestAwardXP:
    @pytest.mark.asyncio
    async def test_get_level_creates_level_one(self, engine, user):
        level = await engine.get_level(user.id)
        assert (level.level, level.xp, level.xp_to_next, level.total_xp) == (1, 0, 100, 0)

    @pytest.mark.asyncio
    async def test_cascade_awards_badges_and_bonus(self, engine, user, now, db_session):
        """250 XP from level 1 reaches level 3: two badges, 200 + 300 bonus points."""
        result = await engine.award_xp(user.id, 250, now=now)

        assert result.new_level == 3
        assert result.leveled_up is True
        assert result.levels_reached == [2, 3]
        assert result.bonus_points == 500

        level = await engine.get_level(user.id)
        assert (level.level, level.xp, level.xp_to_next, level.total_xp) == (3, 0, 225, 250)

        codes = sorted(b.badge.code for b in await engine.list_badges(user.id))
        assert codes == ["LEVEL_2", "LEVEL_3"]

        await db_session.refresh(user)
        assert user.reward_points == 500

    @pytest.mark.asyncio
    async def test_xp_below_threshold_does_not_level(self, engine, user, now):
        result = await engine.award_xp(user.id, 99, now=now)
        assert result.new_level == 1
        assert result.leveled_up is False
        assert result.bonus_points == 0
        assert await engine.list_badges(user.id) == []

    @pytest.mark.asyncio
    async def test_zero_xp_is_recorded_without_change(self, engine, user, now):
        result = await engine.award_xp(user.id, 0, now=now)
        assert result.new_level == 1
        assert result.leveled_up is False

    @pytest.mark.asyncio
    async def test_negative_xp_rejected(self, engine, user, now):
        with pytest.raises(ValidationError):
            await engine.award_xp(user.id, -5, now=now)

    @pytest.mark.asyncio
    async def test_duplicate_idempotency_key_is_noop(self, engine, user, now, db_session):
        first = await engine.award_xp(user.id, 120, idempotency_key="grant-1", now=now)
        second = await engine.award_xp(user.id, 120, idempotency_key="grant-1", now=now)

        assert first.leveled_up is True
        assert second.leveled_up is False
        assert second.new_level == 2

        level = await engine.get_level(user.id)
        assert level.total_xp == 120
        rows = (await db_session.execute(select(XPLedger).where(XPLedger.user_id == user.id))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_level_bonus_paid_once_per_level(self, engine, user, now, db_session):
        await engine.award_xp(user.id, 100, now=now)
        await engine.award_xp(user.id, 150, now=now)

        bonuses = (
            await db_session.execute(
                select(PointsLedger.idempotency_key).where(PointsLedger.source == "level_up")
            )
        ).scalars().all()
        assert sorted(bonuses) == [f"level:{user.id}:2", f"level:{user.id}:3"]

    @pytest.mark.asyncio
    async def test_unknown_user_not_found(self, engine, now):
        from vpay.exceptions import NotFoundError

        with pytest.raises(NotFoundError):
            await engine.award_xp(9999, 10, now=now)

    @pytest.mark.asyncio
    async def test_storage_failure_maps_to_storage_error(self, engine, user, now, monkeypatch):
        from sqlalchemy.exc import OperationalError

        async def _boom(*_args, **_kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(engine.ledger, "record_xp", _boom)
        with pytest.raises(StorageError):
            await engine.award_xp(user.id, 10, now=now)
