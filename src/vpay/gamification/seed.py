"""Badge catalog seed data, keyed by stable badge code."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from vpay.gamification.constants import Rarity
from vpay.gamification.stores import BadgeStore

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    {
        "code": "WELCOME",
        "name": "Welcome to VPay",
        "description": "Joined the VPay micro-economy",
        "category": "ONBOARDING",
        "rarity": Rarity.COMMON,
    },
    {
        "code": "FIRST_PAYMENT",
        "name": "First Payment",
        "description": "Sent your very first payment",
        "category": "PAYMENT",
        "rarity": Rarity.COMMON,
    },
    {
        "code": "PAYMENT_MASTER",
        "name": "Payment Master",
        "description": "Sent 10 payments in a single week",
        "category": "PAYMENT",
        "rarity": Rarity.RARE,
    },
    {
        "code": "QUEST_MASTER",
        "name": "Quest Master",
        "description": "Completed a milestone number of quests",
        "category": "QUEST",
        "rarity": Rarity.EPIC,
    },
    {
        "code": "COMPLETIONIST",
        "name": "Task Completionist",
        "description": "Completed 5 tasks in a single week",
        "category": "TASK",
        "rarity": Rarity.EPIC,
    },
    {
        "code": "TASK_MASTER",
        "name": "Task Master",
        "description": "A legend of the task marketplace",
        "category": "TASK",
        "rarity": Rarity.LEGENDARY,
    },
    {
        "code": "BADGE_COLLECTOR",
        "name": "Badge Collector",
        "description": "Collected a milestone number of badges",
        "category": "COLLECTION",
        "rarity": Rarity.RARE,
    },
    {
        "code": "MENTOR",
        "name": "Mentor",
        "description": "Helped a newcomer find their way",
        "category": "SOCIAL",
        "rarity": Rarity.EPIC,
    },
    {
        "code": "STREAK_KEEPER",
        "name": "Streak Keeper",
        "description": "Kept a 7-day login streak alive",
        "category": "STREAK",
        "rarity": Rarity.RARE,
    },
    {
        "code": "LEVEL_MASTER",
        "name": "Level Master",
        "description": "Reached the upper levels",
        "category": "MILESTONE",
        "rarity": Rarity.LEGENDARY,
    },
    {
        "code": "EXCLUSIVE_COLLECTION",
        "name": "Exclusive Collection",
        "description": "Claimed from a personalised reward recommendation",
        "category": "EXCLUSIVE",
        "rarity": Rarity.RARE,
    },
]


def _catalog_defaults(entry: dict) -> dict:
    return {
        "name": entry["name"],
        "description": entry["description"],
        "image": f"/badges/{entry['code'].lower()}.png",
        "rarity": entry["rarity"],
        "category": entry["category"],
        "badge_metadata": {},
        "mint_condition": {"type": entry["code"]},
    }


async def seed_badges(db: AsyncSession) -> int:
    """Insert any missing catalog badges. Returns the catalog size.

    Safe to run on every startup: existing codes are left untouched.
    """
    store = BadgeStore(db)
    now = datetime.now(timezone.utc)
    for entry in BADGE_SEED_DATA:
        await store.get_or_create(entry["code"], _catalog_defaults(entry), now)
    await db.commit()
    logger.info("Badge catalog seeded: %d entries", len(BADGE_SEED_DATA))
    return len(BADGE_SEED_DATA)
