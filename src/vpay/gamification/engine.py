"""GamificationEngine: one object per session wiring stores and services.

Request handlers and workers talk to this facade only. Each public method
is a unit of work: it commits on success, rolls back on failure, and maps
SQLAlchemy errors to ``StorageError``. The activity fan-out manages its own
per-step transactions.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vpay.config import Settings, get_settings
from vpay.db.models import (
    LeaderboardEntry,
    RewardRecommendation,
    SpendingPattern,
    Streak,
    User,
    UserActivity,
    UserBadge,
    UserLevel,
    UserQuest,
)
from vpay.exceptions import GamificationError, NotFoundError, StorageError
from vpay.gamification.activity_service import ActivityLog, ActivityResult
from vpay.gamification.badge_service import BadgeService
from vpay.gamification.constants import ALL_TIME, ActivityType, QuestStatus, StreakType
from vpay.gamification.leaderboard_service import LeaderboardService
from vpay.gamification.quest_service import ProgressUpdate, QuestCompletion, QuestService
from vpay.gamification.stores import (
    ActivityStore,
    BadgeStore,
    LeaderboardStore,
    LedgerStore,
    LevelStore,
    QuestStore,
    RecommendationStore,
    StreakStore,
    UserStore,
)
from vpay.gamification.streak_service import StreakService
from vpay.gamification.xp_service import LevelResult, XPService
from vpay.recommendations.analysis import SpendingAnalysis
from vpay.recommendations.service import RecommendationService

logger = logging.getLogger(__name__)


class GamificationEngine:
    def __init__(
        self,
        db: AsyncSession,
        redis: object = None,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.settings = settings or get_settings()

        self.users = UserStore(db)
        self.activity_store = ActivityStore(db)
        self.streak_store = StreakStore(db)
        self.quest_store = QuestStore(db)
        self.level_store = LevelStore(db)
        self.badge_store = BadgeStore(db)
        self.ledger = LedgerStore(db)
        self.recommendation_store = RecommendationStore(db)
        self.leaderboard_store = LeaderboardStore(db)

        self.badges = BadgeService(self.badge_store, self.quest_store, self.users, redis)
        self.xp = XPService(self.level_store, self.ledger, self.badges, self.settings, redis)
        self.streaks = StreakService(self.streak_store, self.ledger, self.badges, self.settings, redis)
        self.quests = QuestService(
            self.quest_store, self.level_store, self.ledger, self.xp, self.badges, self.settings, redis
        )
        self.leaderboards = LeaderboardService(
            self.leaderboard_store, self.users, self.level_store, self.quest_store, self.streak_store, redis
        )
        self.activity_log = ActivityLog(
            db, self.activity_store, self.streaks, self.quests, self.badges, self.leaderboards, self.settings
        )
        self.recommendations = RecommendationService(
            db,
            self.users,
            self.activity_store,
            self.recommendation_store,
            self.ledger,
            self.badges,
            self.activity_log,
            self.settings,
        )

    @asynccontextmanager
    async def _unit_of_work(self, user_id: int | None = None) -> AsyncIterator[None]:
        try:
            yield
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("Storage failure for user %s", user_id)
            raise StorageError("Storage failure, retry the operation", user_id=user_id) from exc
        except GamificationError:
            await self.db.rollback()
            raise

    async def _require_user(self, user_id: int) -> User:
        user = await self.users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        return user

    async def _log_completions(
        self, user_id: int, completions: list[QuestCompletion], now: datetime
    ) -> None:
        # Snapshot first: a failed fan-out step rolls back and expires loaded rows.
        payloads = [
            {
                "questId": c.user_quest.quest.id,
                "questCode": c.user_quest.quest.code,
                "questTitle": c.user_quest.quest.title,
                "userQuestId": c.user_quest.id,
                "points": c.points,
                "xp": c.xp,
            }
            for c in completions
        ]
        for payload in payloads:
            await self.activity_log.record(
                user_id, ActivityType.QUEST_COMPLETED, payload, now=now, depth=1
            )

    # --- Activity log ---

    async def record_activity(
        self,
        user_id: int,
        activity_type: str,
        metadata: dict[str, Any] | None = None,
        amount: float | None = None,
        category: str | None = None,
        now: datetime | None = None,
    ) -> ActivityResult:
        user = await self.users.get(user_id)
        if user is None:
            return ActivityResult(success=False, error=f"User {user_id} not found")
        return await self.activity_log.record(user_id, activity_type, metadata, amount, category, now)

    async def list_activities(
        self,
        user_id: int,
        since: datetime | None = None,
        activity_type: str | None = None,
        limit: int | None = None,
    ) -> list[UserActivity]:
        return await self.activity_log.list_activities(user_id, since, activity_type, limit)

    async def streak_history(
        self, user_id: int, activity_type: str, days: int = 30, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        return await self.activity_log.streak_history(user_id, activity_type, days, now)

    # --- Streaks ---

    async def update_streak(self, user_id: int, streak_type: str, now: datetime | None = None) -> Streak:
        if now is None:
            now = datetime.now(timezone.utc)
        completions: list[QuestCompletion] = []
        async with self._unit_of_work(user_id):
            await self._require_user(user_id)
            update = await self.streaks.update_streak(user_id, streak_type, now)
            if streak_type == StreakType.LOGIN and update.changed:
                completions = await self.quests.sync_streak_progress(
                    user_id, update.streak.current_count, now
                )
        await self._log_completions(user_id, completions, now)
        return update.streak

    async def list_streaks(self, user_id: int) -> list[Streak]:
        return await self.streaks.list_streaks(user_id)

    async def streak_stats(self, user_id: int) -> dict[str, int]:
        return await self.streaks.streak_stats(user_id)

    async def get_multiplier(self, user_id: int, streak_type: str) -> float:
        return await self.streaks.get_multiplier(user_id, streak_type)

    async def streak_leaderboard(self, streak_type: str, limit: int = 10) -> list[dict]:
        return await self.streaks.streak_leaderboard(streak_type, limit)

    async def check_and_break_stale(self, user_id: int, now: datetime | None = None) -> list[Streak]:
        async with self._unit_of_work(user_id):
            broken = await self.streaks.check_and_break_stale(user_id, now)
        return broken

    async def break_stale_streaks(self, now: datetime | None = None) -> int:
        async with self._unit_of_work():
            count = await self.streaks.break_stale_streaks(now)
        return count

    # --- Quests ---

    async def get_quests(self, user_id: int, now: datetime | None = None) -> list[UserQuest]:
        async with self._unit_of_work(user_id):
            await self._require_user(user_id)
            quests = await self.quests.get_quests(user_id, now)
        return quests

    async def generate_weekly_quests(self, user_id: int, now: datetime | None = None) -> list[UserQuest]:
        async with self._unit_of_work(user_id):
            await self._require_user(user_id)
            assigned = await self.quests.generate_weekly_quests(user_id, now)
        return assigned

    async def generate_weekly_quests_for_all(self, now: datetime | None = None) -> int:
        total = 0
        for user_id in await self.users.list_ids():
            total += len(await self.generate_weekly_quests(user_id, now))
        return total

    async def update_quest_progress(
        self,
        user_id: int,
        quest_id: int,
        activity_type: str,
        increment: int = 1,
        now: datetime | None = None,
    ) -> ProgressUpdate:
        if now is None:
            now = datetime.now(timezone.utc)
        async with self._unit_of_work(user_id):
            update = await self.quests.update_quest_progress(user_id, quest_id, activity_type, increment, now)
        if update.completion is not None:
            await self._log_completions(user_id, [update.completion], now)
        return update

    async def get_quest_progress(self, user_id: int, quest_id: int) -> dict[str, Any]:
        return await self.quests.get_progress(user_id, quest_id)

    async def fail_quest(self, user_id: int, quest_id: int) -> UserQuest:
        async with self._unit_of_work(user_id):
            user_quest = await self.quests.fail_quest(user_id, quest_id)
        return user_quest

    async def list_completed_quests(
        self, user_id: int, page: int = 1, per_page: int = 20
    ) -> tuple[list[UserQuest], int]:
        return await self.quests.list_completed(user_id, page, per_page)

    async def expire_quests(self, now: datetime | None = None) -> int:
        async with self._unit_of_work():
            expired = await self.quests.expire_overdue(now)
        return expired

    # --- Levels and badges ---

    async def award_xp(
        self,
        user_id: int,
        amount: int,
        source: str = "manual",
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> LevelResult:
        async with self._unit_of_work(user_id):
            await self._require_user(user_id)
            result = await self.xp.award_xp(
                user_id, amount, source=source, idempotency_key=idempotency_key, now=now
            )
        return result

    async def get_level(self, user_id: int) -> UserLevel:
        async with self._unit_of_work(user_id):
            await self._require_user(user_id)
            level = await self.xp.get_level(user_id)
        return level

    async def award_badge(
        self,
        user_id: int,
        badge_type: str,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> UserBadge:
        async with self._unit_of_work(user_id):
            await self._require_user(user_id)
            award, _ = await self.badges.award_badge(user_id, badge_type, metadata, now=now)
        return award

    async def list_badges(self, user_id: int) -> list[UserBadge]:
        return await self.badges.list_user_badges(user_id)

    async def initialize_user(self, user_id: int, now: datetime | None = None) -> UserLevel:
        """Create the level row and award WELCOME. Safe to call repeatedly."""
        async with self._unit_of_work(user_id):
            await self._require_user(user_id)
            level = await self.xp.get_level(user_id, now)
            await self.badges.award_badge(user_id, "WELCOME", {"reason": "registration"}, now=now)
        return level

    # --- Leaderboards ---

    async def leaderboard_top(
        self, category: str, limit: int = 10, period: str = ALL_TIME
    ) -> list[LeaderboardEntry]:
        return await self.leaderboards.top(category, limit, period)

    async def recompute_leaderboard(self, category: str, period: str = ALL_TIME) -> int:
        async with self._unit_of_work():
            ranked = await self.leaderboards.recompute_ranks(category, period)
        return ranked

    # --- Recommendations ---

    async def analyze_spending(
        self, user_id: int, days: int | None = None, now: datetime | None = None
    ) -> SpendingAnalysis:
        return await self.recommendations.analyze_spending(user_id, days, now)

    async def generate_recommendations(
        self, user_id: int, now: datetime | None = None
    ) -> list[RewardRecommendation]:
        return await self.recommendations.generate_recommendations(user_id, now)

    async def claim_recommendation(
        self, user_id: int, recommendation_id: int, now: datetime | None = None
    ) -> dict[str, Any]:
        return await self.recommendations.claim(user_id, recommendation_id, now)

    async def list_recommendations(
        self, user_id: int, status: str | None = None, page: int = 1, per_page: int = 20
    ) -> tuple[list[RewardRecommendation], int]:
        return await self.recommendations.list_recommendations(user_id, status, page, per_page)

    async def recommendation_stats(self, user_id: int) -> dict[str, int]:
        return await self.recommendations.recommendation_stats(user_id)

    async def spending_patterns(self, user_id: int) -> list[SpendingPattern]:
        return await self.recommendation_store.list_patterns(user_id)

    async def expire_recommendations(self, now: datetime | None = None) -> int:
        return await self.recommendations.expire_overdue(now)

    # --- Summary ---

    async def get_user_summary(self, user_id: int) -> dict[str, Any]:
        user = await self._require_user(user_id)
        level = await self.level_store.get(user_id)
        active_quests = await self.quest_store.list_for_user(user_id, status=QuestStatus.ACTIVE)
        stats = await self.streaks.streak_stats(user_id)
        return {
            "user_id": user_id,
            "level": level.level if level else 1,
            "xp": level.xp if level else 0,
            "xp_to_next": level.xp_to_next if level else self.xp.xp_to_next(1),
            "total_xp": level.total_xp if level else 0,
            "points": user.reward_points,
            "tier": user.tier,
            "active_quests": len(active_quests),
            "completed_quests": await self.quest_store.count_completed(user_id),
            "active_streaks": stats["total_active_streaks"],
            "longest_streak": stats["longest_ever_streak"],
            "badges": await self.badge_store.count_for_user(user_id),
        }
