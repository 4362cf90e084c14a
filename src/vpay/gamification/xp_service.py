"""XP grants with cascading level-ups.

Every grant is written to xp_ledger; a grant carrying an idempotency key
that was already used is a no-op. Level-up bonus points are keyed by
(user, level) so each level pays out at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from vpay.config import Settings
from vpay.db.models import UserLevel
from vpay.exceptions import ValidationError
from vpay.gamification.badge_service import BadgeService
from vpay.gamification.level_thresholds import settle_levels, xp_to_next
from vpay.gamification.notifications import publish_event
from vpay.gamification.stores import LedgerStore, LevelStore

logger = logging.getLogger(__name__)


@dataclass
class LevelResult:
    new_level: int
    leveled_up: bool
    levels_reached: list[int] = field(default_factory=list)
    bonus_points: int = 0


class XPService:
    def __init__(
        self,
        levels: LevelStore,
        ledger: LedgerStore,
        badges: BadgeService,
        settings: Settings,
        redis: object = None,
    ) -> None:
        self.levels = levels
        self.ledger = ledger
        self.badges = badges
        self.settings = settings
        self.redis = redis

    def xp_to_next(self, level: int) -> int:
        return xp_to_next(level, self.settings.level_base_xp, self.settings.level_growth)

    async def get_level(self, user_id: int, now: datetime | None = None) -> UserLevel:
        """Return the user's level row, creating level 1 on first access."""
        if now is None:
            now = datetime.now(timezone.utc)
        return await self.levels.get_or_create(user_id, self.xp_to_next(1), now)

    async def award_xp(
        self,
        user_id: int,
        amount: int,
        source: str = "manual",
        source_id: str | None = None,
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> LevelResult:
        """Grant ``amount`` XP and settle any level-ups.

        Each level entered awards a LEVEL_<n> badge and n * 100 bonus points.
        """
        if amount < 0:
            raise ValidationError(f"XP amount must be non-negative, got {amount}", user_id=user_id)
        if now is None:
            now = datetime.now(timezone.utc)

        level = await self.levels.get_or_create(user_id, self.xp_to_next(1), now, for_update=True)

        recorded = await self.ledger.record_xp(
            user_id, amount, source, now, source_id=source_id, idempotency_key=idempotency_key
        )
        if not recorded:
            logger.debug("Duplicate XP grant skipped: %s", idempotency_key)
            return LevelResult(new_level=level.level, leveled_up=False)

        old_level = level.level
        new_level, new_xp, next_threshold, reached = settle_levels(
            level.level,
            level.xp,
            amount,
            self.settings.level_base_xp,
            self.settings.level_growth,
        )
        level.level = new_level
        level.xp = new_xp
        level.xp_to_next = next_threshold
        level.total_xp += amount
        level.updated_at = now
        await self.levels.db.flush()

        bonus = 0
        for reached_level in reached:
            await self.badges.award_level_badge(user_id, reached_level, now)
            points = reached_level * self.settings.level_bonus_points_per_level
            granted = await self.ledger.grant_points(
                user_id,
                points,
                "level_up",
                now,
                source_id=str(reached_level),
                description=f"Reached level {reached_level}",
                idempotency_key=f"level:{user_id}:{reached_level}",
            )
            if granted:
                bonus += points

        if reached:
            logger.info("User %s leveled up %d -> %d", user_id, old_level, new_level)
            await publish_event(
                self.redis,
                "level_up",
                {"user_id": user_id, "old_level": old_level, "new_level": new_level},
            )

        return LevelResult(
            new_level=new_level,
            leveled_up=bool(reached),
            levels_reached=reached,
            bonus_points=bonus,
        )
