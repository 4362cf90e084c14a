"""Activity log and the fan-out it drives.

``ActivityLog.record`` appends the event, commits, then runs each fan-out
step (streak, quests, achievements, leaderboard) in its own transaction. A
failing step is rolled back, logged and reported; it never undoes the
activity row or the steps before it.

Synthetic events (QUEST_COMPLETED from a completion, REWARD_CLAIMED from a
claim) go through a FIFO queue rather than recursion. Each carries its
generation depth; events deeper than ``max_cascade_depth`` are persisted
but not fanned out.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vpay.config import Settings
from vpay.db.models import UserActivity
from vpay.exceptions import ValidationError
from vpay.gamification.badge_service import BadgeService
from vpay.gamification.constants import ACTIVITY_STREAK_TYPES, ActivityType, StreakType
from vpay.gamification.leaderboard_service import LeaderboardService
from vpay.gamification.quest_service import QuestCompletion, QuestService
from vpay.gamification.stores import ActivityStore
from vpay.gamification.streak_service import StreakService, utc_today

logger = logging.getLogger(__name__)


@dataclass
class ActivityEvent:
    user_id: int
    activity_type: str
    metadata: dict[str, Any]
    amount: float | None
    category: str | None
    timestamp: datetime
    depth: int = 0


@dataclass
class ActivityResult:
    success: bool
    activity_id: int | None = None
    error: str | None = None
    failed_steps: list[str] = field(default_factory=list)
    completed_quests: list[int] = field(default_factory=list)
    awarded_badges: list[str] = field(default_factory=list)
    activity_ids: list[int] = field(default_factory=list)


Step = Callable[[ActivityEvent, ActivityResult, list[ActivityEvent]], Awaitable[None]]


class ActivityLog:
    def __init__(
        self,
        db: AsyncSession,
        activities: ActivityStore,
        streaks: StreakService,
        quests: QuestService,
        badges: BadgeService,
        leaderboards: LeaderboardService,
        settings: Settings,
    ) -> None:
        self.db = db
        self.activities = activities
        self.streaks = streaks
        self.quests = quests
        self.badges = badges
        self.leaderboards = leaderboards
        self.settings = settings
        self._steps: list[tuple[str, Step]] = [
            ("streak", self._streak_step),
            ("quests", self._quest_step),
            ("achievements", self._achievement_step),
            ("leaderboard", self._leaderboard_step),
        ]

    async def record(
        self,
        user_id: int,
        activity_type: str,
        metadata: dict[str, Any] | None = None,
        amount: float | None = None,
        category: str | None = None,
        now: datetime | None = None,
        depth: int = 0,
    ) -> ActivityResult:
        """Append an activity and fan it out.

        Never raises for fan-out failures; ``success`` is False only when the
        activity itself could not be stored.
        """
        if not activity_type:
            raise ValidationError("activity_type is required", user_id=user_id)
        if now is None:
            now = datetime.now(timezone.utc)

        result = ActivityResult(success=True)
        queue: deque[ActivityEvent] = deque(
            [ActivityEvent(user_id, activity_type, metadata or {}, amount, category, now, depth)]
        )

        while queue:
            event = queue.popleft()
            try:
                activity = await self.activities.append(
                    event.user_id,
                    event.activity_type,
                    event.metadata,
                    event.amount,
                    event.category,
                    event.timestamp,
                )
                await self.db.commit()
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.exception(
                    "Failed to record %s activity for user %s", event.activity_type, event.user_id
                )
                if not result.activity_ids:
                    return ActivityResult(success=False, error=str(exc))
                result.failed_steps.append(f"log:{event.activity_type}")
                continue

            if result.activity_id is None:
                result.activity_id = activity.id
            result.activity_ids.append(activity.id)

            if event.depth > self.settings.max_cascade_depth:
                logger.debug("Cascade depth %d reached, not fanning out %s", event.depth, event.activity_type)
                continue

            spawned: list[ActivityEvent] = []
            await self._fan_out(event, result, spawned)
            queue.extend(spawned)

        return result

    async def _fan_out(
        self, event: ActivityEvent, result: ActivityResult, spawned: list[ActivityEvent]
    ) -> None:
        for name, step in self._steps:
            try:
                await step(event, result, spawned)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                logger.exception(
                    "Activity fan-out step %s failed for user %s (%s)",
                    name,
                    event.user_id,
                    event.activity_type,
                )
                result.failed_steps.append(name)

    async def _streak_step(
        self, event: ActivityEvent, result: ActivityResult, spawned: list[ActivityEvent]
    ) -> None:
        streak_type = ACTIVITY_STREAK_TYPES.get(event.activity_type)
        if streak_type is None:
            return
        update = await self.streaks.update_streak(event.user_id, streak_type, now=event.timestamp)
        if update.milestone is not None:
            result.awarded_badges.append(f"STREAK_{streak_type}_{update.milestone}")

    async def _quest_step(
        self, event: ActivityEvent, result: ActivityResult, spawned: list[ActivityEvent]
    ) -> None:
        completions = await self.quests.record_activity(
            event.user_id, event.activity_type, now=event.timestamp
        )
        if event.activity_type == ActivityType.LOGIN:
            streak = await self.streaks.streaks.get(event.user_id, StreakType.LOGIN)
            if streak is not None and streak.is_active:
                completions += await self.quests.sync_streak_progress(
                    event.user_id, streak.current_count, now=event.timestamp
                )
        for completion in completions:
            result.completed_quests.append(completion.user_quest.id)
            if completion.badge:
                result.awarded_badges.append(completion.badge)
            spawned.append(self._completion_event(event, completion))

    @staticmethod
    def _completion_event(parent: ActivityEvent, completion: QuestCompletion) -> ActivityEvent:
        quest = completion.user_quest.quest
        return ActivityEvent(
            user_id=parent.user_id,
            activity_type=ActivityType.QUEST_COMPLETED,
            metadata={
                "questId": quest.id,
                "questCode": quest.code,
                "questTitle": quest.title,
                "userQuestId": completion.user_quest.id,
                "points": completion.points,
                "xp": completion.xp,
            },
            amount=None,
            category=None,
            timestamp=parent.timestamp,
            depth=parent.depth + 1,
        )

    async def _achievement_step(
        self, event: ActivityEvent, result: ActivityResult, spawned: list[ActivityEvent]
    ) -> None:
        awarded = await self.badges.check_achievements(
            event.user_id, event.activity_type, event.metadata, now=event.timestamp
        )
        result.awarded_badges.extend(awarded)

    async def _leaderboard_step(
        self, event: ActivityEvent, result: ActivityResult, spawned: list[ActivityEvent]
    ) -> None:
        await self.leaderboards.refresh_for_activity(
            event.user_id, event.activity_type, now=event.timestamp
        )

    # --- History ---

    async def list_activities(
        self,
        user_id: int,
        since: datetime | None = None,
        activity_type: str | None = None,
        limit: int | None = None,
    ) -> list[UserActivity]:
        return await self.activities.list_for_user(user_id, since, activity_type, limit)

    async def streak_history(
        self,
        user_id: int,
        activity_type: str,
        days: int = 30,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Per-day activity counts for the last ``days`` UTC days, oldest first."""
        if days < 1:
            raise ValidationError("days must be positive", user_id=user_id)
        if now is None:
            now = datetime.now(timezone.utc)
        today = utc_today(now)
        first_day = today - timedelta(days=days - 1)
        since = datetime(first_day.year, first_day.month, first_day.day, tzinfo=timezone.utc)

        counts: dict[Any, int] = {}
        for activity in await self.activities.list_for_user(user_id, since, activity_type):
            day = utc_today(activity.timestamp)
            counts[day] = counts.get(day, 0) + 1

        history = []
        for offset in range(days):
            day = first_day + timedelta(days=offset)
            history.append(
                {
                    "date": day.isoformat(),
                    "has_activity": day in counts,
                    "activity_count": counts.get(day, 0),
                }
            )
        return history
