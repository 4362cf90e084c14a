"""Quest assignment, progress tracking and completion rewards."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any

from vpay.config import Settings
from vpay.db.models import UserQuest
from vpay.exceptions import InvalidStateError, NotFoundError, ValidationError
from vpay.gamification.badge_service import BadgeService
from vpay.gamification.constants import QuestStatus, QuestType
from vpay.gamification.notifications import publish_event
from vpay.gamification.quest_catalog import (
    LOGIN_STREAK,
    daily_templates,
    percent_progress,
    weekly_templates,
)
from vpay.gamification.stores import LedgerStore, LevelStore, QuestStore
from vpay.gamification.streak_service import utc_today
from vpay.gamification.xp_service import LevelResult, XPService

logger = logging.getLogger(__name__)


@dataclass
class QuestCompletion:
    user_quest: UserQuest
    points: int
    xp: int
    level: LevelResult
    badge: str | None = None


@dataclass
class ProgressUpdate:
    user_quest: UserQuest
    progress: dict[str, int]
    is_completed: bool
    completion: QuestCompletion | None = None


def requirement_of(user_quest: UserQuest) -> tuple[str, int]:
    req = user_quest.quest.requirements
    return req.get("type", ""), int(req.get("count", 1))


def is_threshold_met(user_quest: UserQuest) -> bool:
    req_type, req_count = requirement_of(user_quest)
    return user_quest.progress.get(req_type, 0) >= req_count


class QuestService:
    def __init__(
        self,
        quests: QuestStore,
        levels: LevelStore,
        ledger: LedgerStore,
        xp: XPService,
        badges: BadgeService,
        settings: Settings,
        redis: object = None,
    ) -> None:
        self.quests = quests
        self.levels = levels
        self.ledger = ledger
        self.xp = xp
        self.badges = badges
        self.settings = settings
        self.redis = redis

    # --- Generation ---

    async def generate_daily_quests(self, user_id: int, now: datetime | None = None) -> list[UserQuest]:
        """Assign the daily set unless an ACTIVE daily quest was started today.

        Instances expire at the next UTC midnight. Returns the new assignments.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        await self.quests.expire_overdue(now, user_id=user_id)

        day_start = datetime.combine(utc_today(now), time.min, tzinfo=timezone.utc)
        if await self.quests.has_active_since(user_id, QuestType.DAILY, day_start):
            return []

        level = await self.levels.get(user_id)
        current_level = level.level if level is not None else 1
        expires_at = day_start + timedelta(days=1)

        assigned: list[UserQuest] = []
        for definition in daily_templates(current_level, self.settings.bonus_quest_min_level):
            quest = await self.quests.get_or_create_template(definition, now)
            user_quest = await self.quests.assign(user_id, quest, now, expires_at)
            if user_quest is not None:
                assigned.append(user_quest)
        logger.debug("Assigned %d daily quests to user %s", len(assigned), user_id)
        return assigned

    async def generate_weekly_quests(self, user_id: int, now: datetime | None = None) -> list[UserQuest]:
        """Assign each weekly template the user does not already hold ACTIVE."""
        if now is None:
            now = datetime.now(timezone.utc)
        await self.quests.expire_overdue(now, user_id=user_id)
        expires_at = now + timedelta(days=self.settings.weekly_quest_days)

        assigned: list[UserQuest] = []
        for definition in weekly_templates():
            quest = await self.quests.get_or_create_template(definition, now)
            if await self.quests.has_active(user_id, quest.id):
                continue
            user_quest = await self.quests.assign(user_id, quest, now, expires_at)
            if user_quest is not None:
                assigned.append(user_quest)
        return assigned

    async def get_quests(self, user_id: int, now: datetime | None = None) -> list[UserQuest]:
        """Active quests, generating today's daily set first if needed."""
        if now is None:
            now = datetime.now(timezone.utc)
        await self.generate_daily_quests(user_id, now)
        return await self.quests.list_for_user(user_id, status=QuestStatus.ACTIVE)

    async def expire_overdue(self, now: datetime | None = None, user_id: int | None = None) -> int:
        if now is None:
            now = datetime.now(timezone.utc)
        expired = await self.quests.expire_overdue(now, user_id=user_id)
        if expired:
            logger.info("Expired %d overdue quest(s)", expired)
        return expired

    # --- Progress ---

    async def record_activity(
        self,
        user_id: int,
        activity_type: str,
        increment: int = 1,
        now: datetime | None = None,
    ) -> list[QuestCompletion]:
        """Bump every ACTIVE quest requiring ``activity_type``. Returns completions."""
        if now is None:
            now = datetime.now(timezone.utc)
        completions: list[QuestCompletion] = []
        for user_quest in await self.quests.active_by_requirement(user_id, activity_type, now):
            progress = dict(user_quest.progress)
            progress[activity_type] = progress.get(activity_type, 0) + increment
            user_quest.progress = progress
            if is_threshold_met(user_quest):
                completions.append(await self._complete(user_quest, now))
        await self.quests.db.flush()
        return completions

    async def sync_streak_progress(
        self, user_id: int, streak_count: int, now: datetime | None = None
    ) -> list[QuestCompletion]:
        """Raise LOGIN_STREAK quest progress to the current login streak length."""
        if now is None:
            now = datetime.now(timezone.utc)
        completions: list[QuestCompletion] = []
        for user_quest in await self.quests.active_by_requirement(user_id, LOGIN_STREAK, now):
            if streak_count <= user_quest.progress.get(LOGIN_STREAK, 0):
                continue
            user_quest.progress = {**user_quest.progress, LOGIN_STREAK: streak_count}
            if is_threshold_met(user_quest):
                completions.append(await self._complete(user_quest, now))
        await self.quests.db.flush()
        return completions

    async def update_quest_progress(
        self,
        user_id: int,
        quest_id: int,
        activity_type: str,
        increment: int = 1,
        now: datetime | None = None,
    ) -> ProgressUpdate:
        """Progress one quest instance. Non-ACTIVE instances are left untouched."""
        if increment < 1:
            raise ValidationError("increment must be a positive integer", user_id=user_id)
        if not activity_type:
            raise ValidationError("activity_type is required", user_id=user_id)
        if now is None:
            now = datetime.now(timezone.utc)

        user_quest = await self.quests.latest_instance(user_id, quest_id, for_update=True)
        if user_quest is None:
            raise NotFoundError(
                f"Quest {quest_id} is not assigned to user", user_id=user_id, context={"quest_id": quest_id}
            )

        if user_quest.status != QuestStatus.ACTIVE:
            return ProgressUpdate(user_quest, dict(user_quest.progress), is_completed=False)
        if user_quest.expires_at is not None and user_quest.expires_at <= now:
            user_quest.status = QuestStatus.EXPIRED
            await self.quests.db.flush()
            return ProgressUpdate(user_quest, dict(user_quest.progress), is_completed=False)

        progress = dict(user_quest.progress)
        progress[activity_type] = progress.get(activity_type, 0) + increment
        user_quest.progress = progress

        completion = None
        if is_threshold_met(user_quest):
            completion = await self._complete(user_quest, now)
        await self.quests.db.flush()
        return ProgressUpdate(user_quest, progress, completion is not None, completion)

    async def _complete(self, user_quest: UserQuest, now: datetime) -> QuestCompletion:
        quest = user_quest.quest
        user_id = user_quest.user_id
        user_quest.status = QuestStatus.COMPLETED
        user_quest.completed_at = now
        await self.quests.db.flush()

        await self.ledger.grant_points(
            user_id,
            quest.points_reward,
            "quest",
            now,
            source_id=str(user_quest.id),
            description=f'Completed quest "{quest.title}"',
            idempotency_key=f"quest:{user_quest.id}",
        )
        level = await self.xp.award_xp(
            user_id,
            quest.xp_reward,
            source="quest",
            source_id=str(user_quest.id),
            idempotency_key=f"quest-xp:{user_quest.id}",
            now=now,
        )

        badge_code = quest.rewards.get("badge")
        if badge_code:
            await self.badges.award_badge(
                user_id, badge_code, {"questId": quest.id, "questTitle": quest.title}, now=now
            )

        logger.info("User %s completed quest %s", user_id, quest.code)
        await publish_event(
            self.redis,
            "quest_completed",
            {
                "user_id": user_id,
                "quest_code": quest.code,
                "points": quest.points_reward,
                "xp": quest.xp_reward,
            },
        )
        return QuestCompletion(
            user_quest=user_quest,
            points=quest.points_reward,
            xp=quest.xp_reward,
            level=level,
            badge=badge_code,
        )

    # --- Status and queries ---

    async def fail_quest(self, user_id: int, quest_id: int) -> UserQuest:
        user_quest = await self.quests.latest_instance(user_id, quest_id, for_update=True)
        if user_quest is None:
            raise NotFoundError(f"Quest {quest_id} is not assigned to user", user_id=user_id)
        if user_quest.status != QuestStatus.ACTIVE:
            raise InvalidStateError(
                f"Quest {quest_id} is already {user_quest.status}",
                user_id=user_id,
                context={"status": user_quest.status},
            )
        user_quest.status = QuestStatus.FAILED
        await self.quests.db.flush()
        return user_quest

    async def get_progress(self, user_id: int, quest_id: int) -> dict[str, Any]:
        user_quest = await self.quests.latest_instance(user_id, quest_id)
        if user_quest is None:
            raise NotFoundError(f"Quest {quest_id} is not assigned to user", user_id=user_id)
        req_type, req_count = requirement_of(user_quest)
        current = user_quest.progress.get(req_type, 0)
        return {
            "quest_id": quest_id,
            "status": user_quest.status,
            "progress": dict(user_quest.progress),
            "current": current,
            "required": req_count,
            "percentage": percent_progress(current, req_count),
            "is_completed": user_quest.status == QuestStatus.COMPLETED,
        }

    async def list_completed(
        self, user_id: int, page: int = 1, per_page: int = 20
    ) -> tuple[list[UserQuest], int]:
        if page < 1 or per_page < 1:
            raise ValidationError("page and per_page must be positive", user_id=user_id)
        return await self.quests.list_completed(user_id, (page - 1) * per_page, per_page)
