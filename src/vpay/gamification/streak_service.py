"""Daily streak tracking per (user, streak type).

A streak advances at most once per UTC calendar day. Activity on the day
after ``last_activity_date`` increments it; a longer gap resets it to 1.
Only the stale sweep deactivates a streak without a new activity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from vpay.config import Settings
from vpay.db.models import Streak
from vpay.exceptions import StorageError, ValidationError
from vpay.gamification.badge_service import BadgeService
from vpay.gamification.constants import StreakType
from vpay.gamification.notifications import publish_event
from vpay.gamification.stores import LedgerStore, StreakStore

logger = logging.getLogger(__name__)


def utc_today(now: datetime) -> date:
    """Calendar date of ``now`` in UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).date()


def streak_multiplier(count: int, step: float = 0.1, cap: float = 3.0) -> float:
    if count <= 0:
        return 1.0
    return min(1.0 + step * count, cap)


@dataclass
class StreakUpdate:
    streak: Streak
    changed: bool
    milestone: int | None = None
    bonus_points: int = 0


class StreakService:
    def __init__(
        self,
        streaks: StreakStore,
        ledger: LedgerStore,
        badges: BadgeService,
        settings: Settings,
        redis: object = None,
    ) -> None:
        self.streaks = streaks
        self.ledger = ledger
        self.badges = badges
        self.settings = settings
        self.redis = redis

    def _multiplier(self, count: int) -> float:
        return streak_multiplier(
            count, self.settings.streak_multiplier_step, self.settings.streak_multiplier_cap
        )

    async def update_streak(
        self, user_id: int, streak_type: str, now: datetime | None = None
    ) -> StreakUpdate:
        """Advance, reset or leave unchanged the user's streak for today."""
        if streak_type not in StreakType.ALL:
            raise ValidationError(
                f"Unknown streak type: {streak_type}",
                user_id=user_id,
                context={"valid_types": sorted(StreakType.ALL)},
            )
        if now is None:
            now = datetime.now(timezone.utc)
        today = utc_today(now)

        streak = await self.streaks.get(user_id, streak_type, for_update=True)
        if streak is None:
            created = await self.streaks.create(user_id, streak_type, today, now)
            if created is not None:
                logger.debug("Started %s streak for user %s", streak_type, user_id)
                return StreakUpdate(streak=created, changed=True)
            streak = await self.streaks.get(user_id, streak_type, for_update=True)
            if streak is None:
                raise StorageError(f"{streak_type} streak vanished after insert conflict", user_id=user_id)

        last = streak.last_activity_date
        if last is not None and last >= today:
            return StreakUpdate(streak=streak, changed=False)

        if last == today - timedelta(days=1):
            streak.current_count += 1
        else:
            streak.current_count = 1
        streak.max_count = max(streak.max_count, streak.current_count)
        streak.multiplier = self._multiplier(streak.current_count)
        streak.last_activity_date = today
        streak.last_activity_at = now
        streak.is_active = True
        await self.streaks.db.flush()

        result = StreakUpdate(streak=streak, changed=True)
        if streak.current_count in self.settings.streak_milestones:
            result.milestone = streak.current_count
            result.bonus_points = await self._award_milestone(user_id, streak, today, now)
        return result

    async def _award_milestone(self, user_id: int, streak: Streak, today: date, now: datetime) -> int:
        count = streak.current_count
        await self.badges.award_streak_badge(user_id, streak.streak_type, count, now)
        points = count * self.settings.streak_milestone_points_per_day
        granted = await self.ledger.grant_points(
            user_id,
            points,
            "streak",
            now,
            source_id=f"{streak.streak_type}:{count}",
            description=f"{count}-day {streak.streak_type.lower()} streak",
            idempotency_key=f"streak:{user_id}:{streak.streak_type}:{count}:{today.isoformat()}",
        )
        logger.info("User %s reached %d-day %s streak", user_id, count, streak.streak_type)
        await publish_event(
            self.redis,
            "streak_milestone",
            {"user_id": user_id, "streak_type": streak.streak_type, "count": count, "points": points},
        )
        return points if granted else 0

    async def check_and_break_stale(self, user_id: int, now: datetime | None = None) -> list[Streak]:
        """Deactivate every active streak with no activity since before yesterday."""
        if now is None:
            now = datetime.now(timezone.utc)
        yesterday = utc_today(now) - timedelta(days=1)

        broken: list[Streak] = []
        for streak in await self.streaks.active_for_user(user_id, for_update=True):
            if streak.last_activity_date is not None and streak.last_activity_date >= yesterday:
                continue
            streak.is_active = False
            streak.current_count = 0
            streak.multiplier = 1.0
            broken.append(streak)
        if broken:
            await self.streaks.db.flush()
            logger.info("Broke %d stale streak(s) for user %s", len(broken), user_id)
        return broken

    async def break_stale_streaks(self, now: datetime | None = None) -> int:
        """Batch sweep across every user holding an active streak."""
        if now is None:
            now = datetime.now(timezone.utc)
        total = 0
        for user_id in await self.streaks.users_with_active_streaks():
            total += len(await self.check_and_break_stale(user_id, now))
        return total

    async def get_multiplier(self, user_id: int, streak_type: str) -> float:
        streak = await self.streaks.get(user_id, streak_type)
        if streak is None or not streak.is_active:
            return 1.0
        return streak.multiplier

    async def list_streaks(self, user_id: int) -> list[Streak]:
        return await self.streaks.list_for_user(user_id)

    async def streak_stats(self, user_id: int) -> dict[str, int]:
        streaks = await self.streaks.list_for_user(user_id)
        active = [s for s in streaks if s.is_active and s.current_count > 0]
        return {
            "total_active_streaks": len(active),
            "longest_current_streak": max((s.current_count for s in streaks), default=0),
            "longest_ever_streak": max((s.max_count for s in streaks), default=0),
            "total_streak_days": sum(s.current_count for s in active),
        }

    async def streak_leaderboard(self, streak_type: str, limit: int = 10) -> list[dict]:
        if streak_type not in StreakType.ALL:
            raise ValidationError(f"Unknown streak type: {streak_type}")
        rows = await self.streaks.top_active(streak_type, limit)
        return [
            {
                "rank": idx + 1,
                "user_id": s.user_id,
                "current_count": s.current_count,
                "max_count": s.max_count,
                "multiplier": s.multiplier,
            }
            for idx, s in enumerate(rows)
        ]
