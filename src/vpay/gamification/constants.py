"""String constants shared by the gamification engines.

Statuses and types are persisted as plain strings; these classes are
namespaces, not enums, so values compare equal to what is stored.
"""

from __future__ import annotations


class ActivityType:
    LOGIN = "LOGIN"
    PAYMENT_SENT = "PAYMENT_SENT"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_CREATED = "TASK_CREATED"
    QUEST_COMPLETED = "QUEST_COMPLETED"
    REWARD_CLAIMED = "REWARD_CLAIMED"
    MENTOR_HELP = "MENTOR_HELP"


class StreakType:
    LOGIN = "LOGIN"
    PAYMENT = "PAYMENT"
    TASK_COMPLETION = "TASK_COMPLETION"
    QUEST_COMPLETION = "QUEST_COMPLETION"

    ALL = frozenset({LOGIN, PAYMENT, TASK_COMPLETION, QUEST_COMPLETION})


# Activity types outside this table do not touch streaks.
ACTIVITY_STREAK_TYPES: dict[str, str] = {
    ActivityType.LOGIN: StreakType.LOGIN,
    ActivityType.PAYMENT_SENT: StreakType.PAYMENT,
    ActivityType.PAYMENT_RECEIVED: StreakType.PAYMENT,
    ActivityType.TASK_COMPLETED: StreakType.TASK_COMPLETION,
    ActivityType.QUEST_COMPLETED: StreakType.QUEST_COMPLETION,
}


class QuestType:
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    SPECIAL = "SPECIAL"
    ACHIEVEMENT = "ACHIEVEMENT"


class QuestStatus:
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class Rarity:
    COMMON = "COMMON"
    RARE = "RARE"
    EPIC = "EPIC"
    LEGENDARY = "LEGENDARY"
    MYTHIC = "MYTHIC"


class RecommendationStatus:
    PENDING = "PENDING"
    VIEWED = "VIEWED"
    CLAIMED = "CLAIMED"
    EXPIRED = "EXPIRED"

    ALL = frozenset({PENDING, VIEWED, CLAIMED, EXPIRED})


class RewardType:
    CASHBACK = "CASHBACK"
    NFT = "NFT"
    BONUS_TOKENS = "BONUS_TOKENS"
    DISCOUNT = "DISCOUNT"
    EXCLUSIVE_ACCESS = "EXCLUSIVE_ACCESS"


class TransactionType:
    PAYMENT = "PAYMENT"
    WITHDRAWAL = "WITHDRAWAL"
    DEPOSIT = "DEPOSIT"
    REWARD = "REWARD"


class TransactionStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class LeaderboardCategory:
    POINTS = "POINTS"
    XP = "XP"
    QUESTS_COMPLETED = "QUESTS_COMPLETED"
    STREAK_LENGTH = "STREAK_LENGTH"
    EARNINGS = "EARNINGS"

    ALL = (POINTS, XP, QUESTS_COMPLETED, STREAK_LENGTH, EARNINGS)


GLOBAL_BOARD = "GLOBAL"
ALL_TIME = "ALL_TIME"
