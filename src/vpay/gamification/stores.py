"""Persistence stores for the gamification engines.

Each store wraps the caller's ``AsyncSession`` and never commits; the
operation boundary (engine facade or activity fan-out step) owns the
transaction. Read-modify-write paths load rows ``FOR UPDATE``. Inserts that
may race run inside a SAVEPOINT and treat ``IntegrityError`` as "row already
exists".
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vpay.db.models import (
    Leaderboard,
    LeaderboardEntry,
    NFTBadge,
    PointsLedger,
    Quest,
    RewardRecommendation,
    SpendingPattern,
    Streak,
    Transaction,
    User,
    UserActivity,
    UserBadge,
    UserLevel,
    UserPreference,
    UserQuest,
    XPLedger,
)
from vpay.exceptions import StorageError
from vpay.gamification.constants import QuestStatus, RecommendationStatus, TransactionStatus

logger = logging.getLogger(__name__)


class _Store:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _insert(self, row: Any) -> bool:
        """Insert inside a savepoint. Returns False on a unique-constraint conflict."""
        try:
            async with self.db.begin_nested():
                self.db.add(row)
        except IntegrityError:
            return False
        return True


# ---------------------------------------------------------------------------
# Users, transactions, preferences
# ---------------------------------------------------------------------------


class UserStore(_Store):
    async def get(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    async def list_ids(self) -> list[int]:
        result = await self.db.execute(select(User.id).order_by(User.id))
        return list(result.scalars())

    async def add_earnings(self, user_id: int, amount: float) -> None:
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(total_earnings=User.total_earnings + amount)
        )

    async def count_completed_transactions(self, user_id: int, tx_type: str) -> int:
        result = await self.db.execute(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == user_id,
                Transaction.type == tx_type,
                Transaction.status == TransactionStatus.COMPLETED,
            )
        )
        return result.scalar_one()

    async def completed_transactions(
        self, user_id: int, types: tuple[str, ...], since: datetime
    ) -> list[Transaction]:
        """Completed transactions of the given types since ``since``, newest first."""
        result = await self.db.execute(
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.type.in_(types),
                Transaction.status == TransactionStatus.COMPLETED,
                Transaction.created_at >= since,
            )
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        )
        return list(result.scalars())

    async def add_transaction(self, tx: Transaction) -> Transaction:
        self.db.add(tx)
        await self.db.flush()
        return tx

    async def set_preference(
        self, user_id: int, key: str, value: dict[str, Any], now: datetime
    ) -> UserPreference:
        result = await self.db.execute(
            select(UserPreference)
            .where(UserPreference.user_id == user_id, UserPreference.preference_key == key)
            .with_for_update().execution_options(populate_existing=True)
        )
        pref = result.scalar_one_or_none()
        if pref is None:
            pref = UserPreference(user_id=user_id, preference_key=key, preference_value=value, updated_at=now)
            if await self._insert(pref):
                return pref
            return await self.set_preference(user_id, key, value, now)
        pref.preference_value = value
        pref.updated_at = now
        await self.db.flush()
        return pref

    async def get_preference(self, user_id: int, key: str) -> UserPreference | None:
        result = await self.db.execute(
            select(UserPreference).where(
                UserPreference.user_id == user_id, UserPreference.preference_key == key
            )
        )
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


class ActivityStore(_Store):
    async def append(
        self,
        user_id: int,
        activity_type: str,
        metadata: dict[str, Any],
        amount: float | None,
        category: str | None,
        timestamp: datetime,
    ) -> UserActivity:
        activity = UserActivity(
            user_id=user_id,
            activity_type=activity_type,
            activity_metadata=metadata,
            amount=amount,
            category=category,
            timestamp=timestamp,
        )
        self.db.add(activity)
        await self.db.flush()
        return activity

    async def list_for_user(
        self,
        user_id: int,
        since: datetime | None = None,
        activity_type: str | None = None,
        limit: int | None = None,
    ) -> list[UserActivity]:
        stmt = select(UserActivity).where(UserActivity.user_id == user_id)
        if since is not None:
            stmt = stmt.where(UserActivity.timestamp >= since)
        if activity_type is not None:
            stmt = stmt.where(UserActivity.activity_type == activity_type)
        stmt = stmt.order_by(UserActivity.timestamp.desc(), UserActivity.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def categorized_since(self, user_id: int, since: datetime) -> list[UserActivity]:
        """Activities carrying both an amount and a category, newest first."""
        result = await self.db.execute(
            select(UserActivity)
            .where(
                UserActivity.user_id == user_id,
                UserActivity.timestamp >= since,
                UserActivity.amount.is_not(None),
                UserActivity.category.is_not(None),
            )
            .order_by(UserActivity.timestamp.desc())
        )
        return list(result.scalars())


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


class StreakStore(_Store):
    async def get(self, user_id: int, streak_type: str, for_update: bool = False) -> Streak | None:
        stmt = select(Streak).where(Streak.user_id == user_id, Streak.streak_type == streak_type)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, user_id: int, streak_type: str, today: date, now: datetime) -> Streak | None:
        """Create a fresh count-1 streak. Returns None if a concurrent call created it first."""
        streak = Streak(
            user_id=user_id,
            streak_type=streak_type,
            current_count=1,
            max_count=1,
            last_activity_date=today,
            last_activity_at=now,
            multiplier=1.0,
            is_active=True,
        )
        if await self._insert(streak):
            return streak
        return None

    async def list_for_user(self, user_id: int) -> list[Streak]:
        result = await self.db.execute(
            select(Streak).where(Streak.user_id == user_id).order_by(Streak.streak_type)
        )
        return list(result.scalars())

    async def active_for_user(self, user_id: int, for_update: bool = False) -> list[Streak]:
        stmt = select(Streak).where(Streak.user_id == user_id, Streak.is_active.is_(True))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def users_with_active_streaks(self) -> list[int]:
        result = await self.db.execute(
            select(Streak.user_id).where(Streak.is_active.is_(True)).distinct().order_by(Streak.user_id)
        )
        return list(result.scalars())

    async def top_active(self, streak_type: str, limit: int) -> list[Streak]:
        result = await self.db.execute(
            select(Streak)
            .where(
                Streak.streak_type == streak_type,
                Streak.is_active.is_(True),
                Streak.current_count > 0,
            )
            .order_by(Streak.current_count.desc(), Streak.last_activity_at.asc())
            .limit(limit)
        )
        return list(result.scalars())

    async def longest_current(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.max(Streak.current_count)).where(Streak.user_id == user_id)
        )
        return result.scalar_one() or 0


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class QuestStore(_Store):
    async def get_template(self, quest_id: int) -> Quest | None:
        return await self.db.get(Quest, quest_id)

    async def get_template_by_code(self, code: str) -> Quest | None:
        result = await self.db.execute(select(Quest).where(Quest.code == code))
        return result.scalar_one_or_none()

    async def get_or_create_template(self, definition: dict[str, Any], now: datetime) -> Quest:
        quest = await self.get_template_by_code(definition["code"])
        if quest is not None:
            return quest
        quest = Quest(
            code=definition["code"],
            title=definition["title"],
            description=definition.get("description", ""),
            type=definition["type"],
            category=definition["category"],
            difficulty=definition["difficulty"],
            requirements=dict(definition["requirements"]),
            rewards=dict(definition["rewards"]),
            points_reward=definition["rewards"].get("points", 0),
            xp_reward=definition["rewards"].get("xp", 0),
            created_at=now,
        )
        if await self._insert(quest):
            return quest
        existing = await self.get_template_by_code(definition["code"])
        if existing is None:
            raise StorageError(f"Quest template {definition['code']} vanished after insert conflict")
        return existing

    async def latest_instance(
        self, user_id: int, quest_id: int, for_update: bool = False
    ) -> UserQuest | None:
        """The ACTIVE instance if one exists, else the most recently started one."""
        stmt = (
            select(UserQuest)
            .where(UserQuest.user_id == user_id, UserQuest.quest_id == quest_id)
            .order_by(
                (UserQuest.status == QuestStatus.ACTIVE).desc(),
                UserQuest.started_at.desc(),
                UserQuest.id.desc(),
            )
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def active_by_requirement(
        self, user_id: int, requirement_type: str, now: datetime
    ) -> list[UserQuest]:
        """ACTIVE, unexpired instances whose template requires ``requirement_type``, locked."""
        stmt = (
            select(UserQuest)
            .where(
                UserQuest.user_id == user_id,
                UserQuest.status == QuestStatus.ACTIVE,
                (UserQuest.expires_at.is_(None)) | (UserQuest.expires_at > now),
            )
            .order_by(UserQuest.id)
            .with_for_update(of=UserQuest)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return [
            uq for uq in result.unique().scalars()
            if uq.quest.requirements.get("type") == requirement_type
        ]

    async def list_for_user(self, user_id: int, status: str | None = None) -> list[UserQuest]:
        stmt = select(UserQuest).where(UserQuest.user_id == user_id)
        if status is not None:
            stmt = stmt.where(UserQuest.status == status)
        stmt = stmt.order_by(UserQuest.started_at.desc(), UserQuest.id.desc())
        result = await self.db.execute(stmt)
        return list(result.unique().scalars())

    async def has_active_since(self, user_id: int, quest_type: str, since: datetime) -> bool:
        result = await self.db.execute(
            select(func.count(UserQuest.id))
            .join(Quest, UserQuest.quest_id == Quest.id)
            .where(
                UserQuest.user_id == user_id,
                Quest.type == quest_type,
                UserQuest.status == QuestStatus.ACTIVE,
                UserQuest.started_at >= since,
            )
        )
        return result.scalar_one() > 0

    async def has_active(self, user_id: int, quest_id: int) -> bool:
        result = await self.db.execute(
            select(func.count(UserQuest.id)).where(
                UserQuest.user_id == user_id,
                UserQuest.quest_id == quest_id,
                UserQuest.status == QuestStatus.ACTIVE,
            )
        )
        return result.scalar_one() > 0

    async def assign(
        self, user_id: int, quest: Quest, now: datetime, expires_at: datetime | None
    ) -> UserQuest | None:
        """Create an ACTIVE instance. Returns None if one is already ACTIVE."""
        user_quest = UserQuest(
            user_id=user_id,
            quest_id=quest.id,
            status=QuestStatus.ACTIVE,
            progress={},
            started_at=now,
            expires_at=expires_at,
        )
        user_quest.quest = quest
        if await self._insert(user_quest):
            return user_quest
        return None

    async def expire_overdue(self, now: datetime, user_id: int | None = None) -> int:
        stmt = (
            update(UserQuest)
            .where(
                UserQuest.status == QuestStatus.ACTIVE,
                UserQuest.expires_at.is_not(None),
                UserQuest.expires_at <= now,
            )
            .values(status=QuestStatus.EXPIRED)
            .execution_options(synchronize_session="fetch")
        )
        if user_id is not None:
            stmt = stmt.where(UserQuest.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.rowcount or 0

    async def count_completed(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count(UserQuest.id)).where(
                UserQuest.user_id == user_id,
                UserQuest.status == QuestStatus.COMPLETED,
            )
        )
        return result.scalar_one()

    async def list_completed(
        self, user_id: int, offset: int, limit: int
    ) -> tuple[list[UserQuest], int]:
        total = await self.count_completed(user_id)
        result = await self.db.execute(
            select(UserQuest)
            .where(UserQuest.user_id == user_id, UserQuest.status == QuestStatus.COMPLETED)
            .order_by(UserQuest.completed_at.desc(), UserQuest.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.unique().scalars()), total


# ---------------------------------------------------------------------------
# Levels and ledgers
# ---------------------------------------------------------------------------


class LevelStore(_Store):
    async def get(self, user_id: int, for_update: bool = False) -> UserLevel | None:
        stmt = select(UserLevel).where(UserLevel.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(
        self, user_id: int, xp_to_next: int, now: datetime, for_update: bool = False
    ) -> UserLevel:
        level = await self.get(user_id, for_update=for_update)
        if level is not None:
            return level
        level = UserLevel(
            user_id=user_id, level=1, xp=0, xp_to_next=xp_to_next, total_xp=0, updated_at=now
        )
        if await self._insert(level):
            return level
        existing = await self.get(user_id, for_update=for_update)
        if existing is None:
            raise StorageError(f"Level row for user {user_id} vanished after insert conflict", user_id=user_id)
        return existing


class LedgerStore(_Store):
    async def grant_points(
        self,
        user_id: int,
        amount: int,
        source: str,
        now: datetime,
        source_id: str | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> bool:
        """Record a points grant and credit the user. False if the key was already used."""
        entry = PointsLedger(
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            description=description,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        if not await self._insert(entry):
            return False
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(reward_points=User.reward_points + amount)
        )
        return True

    async def record_xp(
        self,
        user_id: int,
        amount: int,
        source: str,
        now: datetime,
        source_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> bool:
        entry = XPLedger(
            user_id=user_id,
            amount=amount,
            source=source,
            source_id=source_id,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        return await self._insert(entry)

    async def points_by_source(self, user_id: int, source: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(PointsLedger.amount), 0)).where(
                PointsLedger.user_id == user_id, PointsLedger.source == source
            )
        )
        return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeStore(_Store):
    async def get_by_code(self, code: str) -> NFTBadge | None:
        result = await self.db.execute(select(NFTBadge).where(NFTBadge.code == code))
        return result.scalar_one_or_none()

    async def get_or_create(self, code: str, defaults: dict[str, Any], now: datetime) -> NFTBadge:
        badge = await self.get_by_code(code)
        if badge is not None:
            return badge
        badge = NFTBadge(code=code, created_at=now, **defaults)
        if await self._insert(badge):
            return badge
        existing = await self.get_by_code(code)
        if existing is None:
            raise StorageError(f"Badge {code} vanished after insert conflict")
        return existing

    async def get_award(self, user_id: int, badge_id: int) -> UserBadge | None:
        result = await self.db.execute(
            select(UserBadge).where(UserBadge.user_id == user_id, UserBadge.badge_id == badge_id)
        )
        return result.unique().scalar_one_or_none()

    async def create_award(self, award: UserBadge) -> bool:
        return await self._insert(award)

    async def count_for_user(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count(UserBadge.id)).where(UserBadge.user_id == user_id)
        )
        return result.scalar_one()

    async def list_for_user(self, user_id: int) -> list[UserBadge]:
        result = await self.db.execute(
            select(UserBadge)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.earned_at.desc(), UserBadge.id.desc())
        )
        return list(result.unique().scalars())


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


class RecommendationStore(_Store):
    async def add_many(self, recs: list[RewardRecommendation]) -> list[RewardRecommendation]:
        self.db.add_all(recs)
        await self.db.flush()
        return recs

    async def get(self, rec_id: int, for_update: bool = False) -> RewardRecommendation | None:
        stmt = select(RewardRecommendation).where(RewardRecommendation.id == rec_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(
        self, user_id: int, status: str | None, offset: int, limit: int
    ) -> tuple[list[RewardRecommendation], int]:
        filters = [RewardRecommendation.user_id == user_id]
        if status is not None:
            filters.append(RewardRecommendation.status == status)
        total = (
            await self.db.execute(select(func.count(RewardRecommendation.id)).where(*filters))
        ).scalar_one()
        result = await self.db.execute(
            select(RewardRecommendation)
            .where(*filters)
            .order_by(RewardRecommendation.confidence.desc(), RewardRecommendation.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars()), total

    async def count_by_status(self, user_id: int) -> dict[str, int]:
        result = await self.db.execute(
            select(RewardRecommendation.status, func.count(RewardRecommendation.id))
            .where(RewardRecommendation.user_id == user_id)
            .group_by(RewardRecommendation.status)
        )
        counts = {status: 0 for status in sorted(RecommendationStatus.ALL)}
        for status, count in result.all():
            counts[status] = count
        return counts

    async def expire_overdue(self, now: datetime) -> int:
        result = await self.db.execute(
            update(RewardRecommendation)
            .where(
                RewardRecommendation.status == RecommendationStatus.PENDING,
                RewardRecommendation.expires_at.is_not(None),
                RewardRecommendation.expires_at <= now,
            )
            .values(status=RecommendationStatus.EXPIRED)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def upsert_pattern(
        self,
        user_id: int,
        category: str,
        period_start: date,
        period_end: date,
        values: dict[str, Any],
    ) -> SpendingPattern:
        result = await self.db.execute(
            select(SpendingPattern)
            .where(
                SpendingPattern.user_id == user_id,
                SpendingPattern.category == category,
                SpendingPattern.period_start == period_start,
            )
            .with_for_update().execution_options(populate_existing=True)
        )
        pattern = result.scalar_one_or_none()
        if pattern is None:
            pattern = SpendingPattern(
                user_id=user_id,
                category=category,
                period_start=period_start,
                period_end=period_end,
                **values,
            )
            if await self._insert(pattern):
                return pattern
            return await self.upsert_pattern(user_id, category, period_start, period_end, values)
        for key, value in values.items():
            setattr(pattern, key, value)
        await self.db.flush()
        return pattern

    async def list_patterns(self, user_id: int) -> list[SpendingPattern]:
        result = await self.db.execute(
            select(SpendingPattern)
            .where(SpendingPattern.user_id == user_id)
            .order_by(SpendingPattern.period_start.desc(), SpendingPattern.total_amount.desc())
        )
        return list(result.scalars())


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------


class LeaderboardStore(_Store):
    async def get_board(self, board_type: str, category: str, period: str) -> Leaderboard | None:
        result = await self.db.execute(
            select(Leaderboard).where(
                Leaderboard.type == board_type,
                Leaderboard.category == category,
                Leaderboard.period == period,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_board(self, board_type: str, category: str, period: str) -> Leaderboard:
        board = await self.get_board(board_type, category, period)
        if board is not None:
            return board
        board = Leaderboard(type=board_type, category=category, period=period)
        if await self._insert(board):
            return board
        existing = await self.get_board(board_type, category, period)
        if existing is None:
            raise StorageError(f"Leaderboard {category}/{period} vanished after insert conflict")
        return existing

    async def upsert_entry(
        self, board_id: int, user_id: int, score: float, now: datetime
    ) -> LeaderboardEntry:
        result = await self.db.execute(
            select(LeaderboardEntry)
            .where(LeaderboardEntry.leaderboard_id == board_id, LeaderboardEntry.user_id == user_id)
            .with_for_update().execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            entry = LeaderboardEntry(leaderboard_id=board_id, user_id=user_id, score=score, updated_at=now)
            if await self._insert(entry):
                return entry
            return await self.upsert_entry(board_id, user_id, score, now)
        if entry.score != score:
            entry.score = score
            entry.updated_at = now
            await self.db.flush()
        return entry

    async def entries_by_score(self, board_id: int, limit: int | None = None) -> list[LeaderboardEntry]:
        stmt = (
            select(LeaderboardEntry)
            .where(LeaderboardEntry.leaderboard_id == board_id)
            .order_by(
                LeaderboardEntry.score.desc(),
                LeaderboardEntry.updated_at.asc(),
                LeaderboardEntry.id.asc(),
            )
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars())
