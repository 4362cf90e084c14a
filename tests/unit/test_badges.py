"""Badge awards, rarity tables and achievement rules."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from vpay.db.models import NFTBadge, Quest, Transaction, UserBadge, UserQuest
from vpay.exceptions import StorageError, ValidationError
from vpay.gamification.badge_service import badge_rarity, streak_rarity
from vpay.gamification.seed import BADGE_SEED_DATA, seed_badges
from vpay.gamification.stores import BadgeStore


class TestRarityTables:
    @pytest.mark.parametrize(
        ("badge_type", "rarity"),
        [
            ("FIRST_PAYMENT", "COMMON"),
            ("QUEST_MASTER", "EPIC"),
            ("BADGE_COLLECTOR", "RARE"),
            ("LEVEL_MASTER", "LEGENDARY"),
            ("TASK_MASTER", "LEGENDARY"),
            ("SOMETHING_NEW", "COMMON"),
        ],
    )
    def test_badge_rarity(self, badge_type, rarity):
        assert badge_rarity(badge_type) == rarity

    @pytest.mark.parametrize(
        ("count", "rarity"),
        [(7, "COMMON"), (29, "COMMON"), (30, "RARE"), (50, "EPIC"), (100, "LEGENDARY"), (365, "MYTHIC")],
    )
    def test_streak_rarity(self, count, rarity):
        assert streak_rarity(count) == rarity


class TestAwardBadge:
    @pytest.mark.asyncio
    async def test_award_creates_catalog_entry(self, engine, user, now):
        award = await engine.award_badge(user.id, "MENTOR", {"helped": 3}, now=now)
        assert award.badge.code == "MENTOR"
        assert award.badge.rarity == "EPIC"
        assert award.badge_metadata["helped"] == 3
        assert award.badge_metadata["earnedAt"] == now.isoformat()

    @pytest.mark.asyncio
    async def test_award_is_idempotent(self, engine, user, now, db_session):
        first = await engine.award_badge(user.id, "MENTOR", now=now)
        second = await engine.award_badge(user.id, "MENTOR", {"ignored": True}, now=now)

        assert first.id == second.id
        assert "ignored" not in second.badge_metadata
        count = await db_session.scalar(select(func.count(UserBadge.id)).where(UserBadge.user_id == user.id))
        assert count == 1

    @pytest.mark.asyncio
    async def test_empty_type_rejected(self, engine, user, now):
        with pytest.raises(ValidationError):
            await engine.award_badge(user.id, "", now=now)

    @pytest.mark.asyncio
    async def test_initialize_user_awards_welcome(self, engine, user, now):
        level = await engine.initialize_user(user.id, now=now)
        await engine.initialize_user(user.id, now=now)
        assert level.level == 1
        assert [b.badge.code for b in await engine.list_badges(user.id)] == ["WELCOME"]


class TestSeed:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, db_session):
        await seed_badges(db_session)
        await seed_badges(db_session)
        count = await db_session.scalar(select(func.count(NFTBadge.id)))
        assert count == len(BADGE_SEED_DATA)


class TestAchievements:
    @pytest.mark.asyncio
    async def test_first_payment(self, engine, user, now, db_session):
        db_session.add(
            Transaction(user_id=user.id, type="PAYMENT", amount=25.0, status="COMPLETED", created_at=now)
        )
        await db_session.commit()

        result = await engine.record_activity(user.id, "PAYMENT_SENT", {"amount": 25.0}, now=now)
        assert "FIRST_PAYMENT" in result.awarded_badges

        again = await engine.record_activity(user.id, "PAYMENT_SENT", {"amount": 25.0}, now=now)
        assert "FIRST_PAYMENT" not in again.awarded_badges

    @pytest.mark.asyncio
    async def test_badge_collector_at_five(self, engine, user, now):
        for code in ("A_ONE", "A_TWO", "A_THREE", "A_FOUR", "A_FIVE"):
            await engine.award_badge(user.id, code, now=now)

        awarded = await engine.badges.check_achievements(user.id, "TASK_CREATED", now=now)
        assert awarded == ["BADGE_COLLECTOR"]

    @pytest.mark.asyncio
    async def test_no_achievement_for_plain_activity(self, engine, user, now):
        assert await engine.badges.check_achievements(user.id, "TASK_CREATED", now=now) == []

    @pytest.mark.asyncio
    async def test_quest_master_on_fifth_completion_only(self, engine, user, now, db_session):
        async def complete_quest(n: int) -> None:
            quest = Quest(
                code=f"TEST_QUEST_{n}",
                title=f"Test quest {n}",
                type="DAILY",
                category="TASK",
                difficulty="EASY",
                requirements={"type": "TASK_COMPLETED", "count": 1},
                rewards={},
                created_at=now,
            )
            db_session.add(quest)
            await db_session.flush()
            db_session.add(
                UserQuest(
                    user_id=user.id,
                    quest_id=quest.id,
                    status="COMPLETED",
                    progress={"TASK_COMPLETED": 1},
                    started_at=now,
                    completed_at=now,
                )
            )
            await db_session.commit()

        for n in range(1, 5):
            await complete_quest(n)
        assert await engine.badges.check_achievements(user.id, "QUEST_COMPLETED", now=now) == []

        await complete_quest(5)
        assert await engine.badges.check_achievements(user.id, "QUEST_COMPLETED", now=now) == ["QUEST_MASTER"]
        assert await engine.badges.check_achievements(user.id, "QUEST_COMPLETED", now=now) == []

        await complete_quest(6)
        assert await engine.badges.check_achievements(user.id, "QUEST_COMPLETED", now=now) == []

        held = await db_session.scalar(
            select(func.count(UserBadge.id))
            .join(NFTBadge, UserBadge.badge_id == NFTBadge.id)
            .where(UserBadge.user_id == user.id, NFTBadge.code == "QUEST_MASTER")
        )
        assert held == 1


class TestInsertConflicts:
    @pytest.mark.asyncio
    async def test_badge_missing_after_conflict_raises_storage_error(self, db_session, now, monkeypatch):
        store = BadgeStore(db_session)

        async def conflicting_insert(row):
            return False

        monkeypatch.setattr(store, "_insert", conflicting_insert)
        with pytest.raises(StorageError, match="vanished after insert conflict"):
            await store.get_or_create("GHOST", {"name": "Ghost", "rarity": "COMMON", "category": "GHOST"}, now)
