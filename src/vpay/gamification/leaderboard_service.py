"""Leaderboard scores and rank assignment.

Scores are cached per (board, user) and mirrored into a Redis sorted set
``leaderboard:<category>:<period>``. Ranks are only assigned by the
recompute batch, never on the activity path.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from vpay.db.models import LeaderboardEntry
from vpay.exceptions import ValidationError
from vpay.gamification.constants import (
    ACTIVITY_STREAK_TYPES,
    ALL_TIME,
    GLOBAL_BOARD,
    ActivityType,
    LeaderboardCategory,
)
from vpay.gamification.stores import LeaderboardStore, LevelStore, QuestStore, StreakStore, UserStore

logger = logging.getLogger(__name__)


def categories_for_activity(activity_type: str) -> list[str]:
    """Leaderboard categories whose score can change after ``activity_type``."""
    categories: list[str] = []
    if activity_type == ActivityType.QUEST_COMPLETED:
        categories += [LeaderboardCategory.QUESTS_COMPLETED, LeaderboardCategory.XP]
    if activity_type == ActivityType.REWARD_CLAIMED:
        categories += [LeaderboardCategory.POINTS, LeaderboardCategory.EARNINGS]
    if activity_type in ACTIVITY_STREAK_TYPES:
        categories.append(LeaderboardCategory.STREAK_LENGTH)
    return categories


def redis_key(category: str, period: str) -> str:
    return f"leaderboard:{category}:{period}"


class LeaderboardService:
    def __init__(
        self,
        boards: LeaderboardStore,
        users: UserStore,
        levels: LevelStore,
        quests: QuestStore,
        streaks: StreakStore,
        redis: object = None,
    ) -> None:
        self.boards = boards
        self.users = users
        self.levels = levels
        self.quests = quests
        self.streaks = streaks
        self.redis = redis

    async def compute_score(self, user_id: int, category: str) -> float:
        if category == LeaderboardCategory.POINTS:
            user = await self.users.get(user_id)
            return float(user.reward_points) if user else 0.0
        if category == LeaderboardCategory.XP:
            level = await self.levels.get(user_id)
            return float(level.total_xp) if level else 0.0
        if category == LeaderboardCategory.QUESTS_COMPLETED:
            return float(await self.quests.count_completed(user_id))
        if category == LeaderboardCategory.STREAK_LENGTH:
            return float(await self.streaks.longest_current(user_id))
        if category == LeaderboardCategory.EARNINGS:
            user = await self.users.get(user_id)
            return float(user.total_earnings) if user else 0.0
        raise ValidationError(f"Unknown leaderboard category: {category}", user_id=user_id)

    async def update_entry(
        self,
        user_id: int,
        category: str,
        period: str = ALL_TIME,
        board_type: str = GLOBAL_BOARD,
        now: datetime | None = None,
    ) -> LeaderboardEntry:
        if now is None:
            now = datetime.now(timezone.utc)
        score = await self.compute_score(user_id, category)
        board = await self.boards.get_or_create_board(board_type, category, period)
        entry = await self.boards.upsert_entry(board.id, user_id, score, now)
        await self._mirror(category, period, user_id, score)
        return entry

    async def refresh_for_activity(
        self, user_id: int, activity_type: str, now: datetime | None = None
    ) -> list[str]:
        categories = categories_for_activity(activity_type)
        for category in categories:
            await self.update_entry(user_id, category, now=now)
        return categories

    async def recompute_ranks(
        self, category: str, period: str = ALL_TIME, board_type: str = GLOBAL_BOARD
    ) -> int:
        """Assign 1-based ranks by score desc, earliest update first on ties."""
        if category not in LeaderboardCategory.ALL:
            raise ValidationError(f"Unknown leaderboard category: {category}")
        board = await self.boards.get_board(board_type, category, period)
        if board is None:
            return 0
        entries = await self.boards.entries_by_score(board.id)
        for rank, entry in enumerate(entries, start=1):
            entry.rank = rank
        await self.boards.db.flush()
        logger.info("Ranked %d entries on %s/%s", len(entries), category, period)
        return len(entries)

    async def top(
        self, category: str, limit: int = 10, period: str = ALL_TIME, board_type: str = GLOBAL_BOARD
    ) -> list[LeaderboardEntry]:
        if category not in LeaderboardCategory.ALL:
            raise ValidationError(f"Unknown leaderboard category: {category}")
        board = await self.boards.get_board(board_type, category, period)
        if board is None:
            return []
        return await self.boards.entries_by_score(board.id, limit=limit)

    async def _mirror(self, category: str, period: str, user_id: int, score: float) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.zadd(redis_key(category, period), {str(user_id): score})  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Failed to mirror leaderboard score to Redis", exc_info=True)
