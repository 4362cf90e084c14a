"""Badge awarding and achievement rules.

Catalog badges are found or created by ``code``. Awards are idempotent per
(user, badge): the UNIQUE constraint on user_badges decides the race and
the losing caller gets the existing award back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from vpay.db.models import NFTBadge, UserBadge
from vpay.exceptions import StorageError, ValidationError
from vpay.gamification.constants import ActivityType, Rarity, TransactionType
from vpay.gamification.level_thresholds import level_rarity
from vpay.gamification.notifications import publish_event
from vpay.gamification.stores import BadgeStore, QuestStore, UserStore

logger = logging.getLogger(__name__)

BADGE_RARITY: dict[str, str] = {
    "WELCOME": Rarity.COMMON,
    "FIRST_PAYMENT": Rarity.COMMON,
    "QUEST_MASTER": Rarity.EPIC,
    "BADGE_COLLECTOR": Rarity.RARE,
    "STREAK_MILESTONE": Rarity.RARE,
    "LEVEL_MASTER": Rarity.LEGENDARY,
    "MENTOR": Rarity.EPIC,
    "PAYMENT_MASTER": Rarity.RARE,
    "COMPLETIONIST": Rarity.EPIC,
    "STREAK_KEEPER": Rarity.RARE,
    "TASK_MASTER": Rarity.LEGENDARY,
}

QUEST_MASTER_COUNTS = frozenset({5, 10, 25, 50, 100})
BADGE_COLLECTOR_COUNTS = frozenset({5, 10, 25, 50})

RARITY_SCORES = {
    Rarity.COMMON: 1,
    Rarity.RARE: 2,
    Rarity.EPIC: 3,
    Rarity.LEGENDARY: 4,
    Rarity.MYTHIC: 5,
}


def badge_rarity(badge_type: str) -> str:
    return BADGE_RARITY.get(badge_type, Rarity.COMMON)


def streak_rarity(count: int) -> str:
    if count < 30:
        return Rarity.COMMON
    if count < 50:
        return Rarity.RARE
    if count < 100:
        return Rarity.EPIC
    if count < 365:
        return Rarity.LEGENDARY
    return Rarity.MYTHIC


def level_badge_code(level: int) -> str:
    return f"LEVEL_{level}"


def streak_badge_code(streak_type: str, count: int) -> str:
    return f"STREAK_{streak_type}_{count}"


class BadgeService:
    """Awards badges and evaluates achievement rules after each activity."""

    def __init__(
        self,
        badges: BadgeStore,
        quests: QuestStore,
        users: UserStore,
        redis: object = None,
    ) -> None:
        self.badges = badges
        self.quests = quests
        self.users = users
        self.redis = redis

    async def award_badge(
        self,
        user_id: int,
        badge_type: str,
        metadata: dict[str, Any] | None = None,
        *,
        name: str | None = None,
        description: str | None = None,
        category: str | None = None,
        rarity: str | None = None,
        now: datetime | None = None,
    ) -> tuple[UserBadge, bool]:
        """Award ``badge_type`` to a user.

        Returns (award, created). ``created`` is False when the user already
        held the badge, in which case the existing award is returned unchanged.
        The keyword arguments only apply when the catalog entry is created.
        """
        if not badge_type:
            raise ValidationError("badge_type is required", user_id=user_id)
        if now is None:
            now = datetime.now(timezone.utc)

        badge = await self.badges.get_or_create(
            badge_type,
            {
                "name": name or f"{badge_type.replace('_', ' ').title()} Badge",
                "description": description
                or f"Earned for {badge_type.lower().replace('_', ' ')} achievement",
                "image": f"/badges/{badge_type.lower()}.png",
                "rarity": rarity or badge_rarity(badge_type),
                "category": category or badge_type,
                "badge_metadata": {},
                "mint_condition": {"type": badge_type},
            },
            now,
        )

        existing = await self.badges.get_award(user_id, badge.id)
        if existing is not None:
            return existing, False

        award = UserBadge(
            user_id=user_id,
            badge_id=badge.id,
            earned_at=now,
            badge_metadata={"earnedAt": now.isoformat(), **(metadata or {})},
        )
        award.badge = badge
        if not await self.badges.create_award(award):
            # Race: a concurrent call inserted the same award first
            existing = await self.badges.get_award(user_id, badge.id)
            if existing is None:
                raise StorageError(f"Badge award {badge.code} vanished after insert conflict", user_id=user_id)
            return existing, False

        logger.info("Badge %s awarded to user %s", badge.code, user_id)
        await self._emit_badge_earned(user_id, badge)
        return award, True

    async def award_level_badge(self, user_id: int, level: int, now: datetime) -> tuple[UserBadge, bool]:
        return await self.award_badge(
            user_id,
            level_badge_code(level),
            {"level": level},
            name=f"Level {level}",
            description=f"Reached level {level}",
            category="MILESTONE",
            rarity=level_rarity(level),
            now=now,
        )

    async def award_streak_badge(
        self, user_id: int, streak_type: str, count: int, now: datetime
    ) -> tuple[UserBadge, bool]:
        return await self.award_badge(
            user_id,
            streak_badge_code(streak_type, count),
            {"streakType": streak_type, "streakCount": count},
            name=f"{count}-Day {streak_type.replace('_', ' ').title()} Streak",
            description=f"Kept a {streak_type.lower().replace('_', ' ')} streak for {count} days",
            category="STREAK",
            rarity=streak_rarity(count),
            now=now,
        )

    async def check_achievements(
        self,
        user_id: int,
        activity_type: str,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        """Evaluate the achievement rule table. Returns codes newly awarded."""
        awarded: list[str] = []

        if activity_type == ActivityType.PAYMENT_SENT:
            payments = await self.users.count_completed_transactions(user_id, TransactionType.PAYMENT)
            if payments == 1:
                _, created = await self.award_badge(
                    user_id, "FIRST_PAYMENT", {"amount": (metadata or {}).get("amount")}, now=now
                )
                if created:
                    awarded.append("FIRST_PAYMENT")

        quests_completed = await self.quests.count_completed(user_id)
        if quests_completed in QUEST_MASTER_COUNTS:
            _, created = await self.award_badge(
                user_id, "QUEST_MASTER", {"questsCompleted": quests_completed}, now=now
            )
            if created:
                awarded.append("QUEST_MASTER")

        badge_count = await self.badges.count_for_user(user_id)
        if badge_count in BADGE_COLLECTOR_COUNTS:
            _, created = await self.award_badge(
                user_id, "BADGE_COLLECTOR", {"badgesCollected": badge_count}, now=now
            )
            if created:
                awarded.append("BADGE_COLLECTOR")

        return awarded

    async def list_user_badges(self, user_id: int) -> list[UserBadge]:
        return await self.badges.list_for_user(user_id)

    async def _emit_badge_earned(self, user_id: int, badge: NFTBadge) -> None:
        await publish_event(
            self.redis,
            "badge_earned",
            {
                "user_id": user_id,
                "badge_code": badge.code,
                "badge_name": badge.name,
                "rarity": badge.rarity,
            },
        )
