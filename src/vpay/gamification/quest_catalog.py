"""Quest templates keyed by stable code.

Templates are materialized into the quests table on first use; the code is
the identity, titles are display text only.
"""

from __future__ import annotations

from vpay.gamification.constants import ActivityType, QuestType

LOGIN_STREAK = "LOGIN_STREAK"

DAILY_QUESTS: list[dict] = [
    {
        "code": "DAILY_LOGIN",
        "title": "Daily Login Streak",
        "description": "Log in to VPay today to maintain your streak",
        "type": QuestType.DAILY,
        "category": "STREAK",
        "difficulty": "EASY",
        "requirements": {"type": ActivityType.LOGIN, "count": 1},
        "rewards": {"points": 10, "xp": 5},
    },
    {
        "code": "DAILY_PAYMENT",
        "title": "Make a Payment",
        "description": "Send a payment to another user",
        "type": QuestType.DAILY,
        "category": "PAYMENT",
        "difficulty": "EASY",
        "requirements": {"type": ActivityType.PAYMENT_SENT, "count": 1},
        "rewards": {"points": 25, "xp": 15},
    },
    {
        "code": "DAILY_TASK",
        "title": "Complete a Task",
        "description": "Successfully complete any task",
        "type": QuestType.DAILY,
        "category": "TASK",
        "difficulty": "MEDIUM",
        "requirements": {"type": ActivityType.TASK_COMPLETED, "count": 1},
        "rewards": {"points": 50, "xp": 30},
    },
]

# Unlocked at Settings.bonus_quest_min_level
DAILY_BONUS_QUEST: dict = {
    "code": "DAILY_MENTOR",
    "title": "Mentor a Newcomer",
    "description": "Help a new user by completing a task together",
    "type": QuestType.DAILY,
    "category": "SOCIAL",
    "difficulty": "HARD",
    "requirements": {"type": ActivityType.MENTOR_HELP, "count": 1},
    "rewards": {"points": 100, "xp": 75, "badge": "MENTOR"},
}

WEEKLY_QUESTS: list[dict] = [
    {
        "code": "WEEKLY_PAYMENT_MASTER",
        "title": "Payment Master",
        "description": "Send 10 payments this week",
        "type": QuestType.WEEKLY,
        "category": "PAYMENT",
        "difficulty": "MEDIUM",
        "requirements": {"type": ActivityType.PAYMENT_SENT, "count": 10},
        "rewards": {"points": 200, "xp": 150, "badge": "PAYMENT_MASTER"},
    },
    {
        "code": "WEEKLY_COMPLETIONIST",
        "title": "Task Completionist",
        "description": "Complete 5 tasks this week",
        "type": QuestType.WEEKLY,
        "category": "TASK",
        "difficulty": "HARD",
        "requirements": {"type": ActivityType.TASK_COMPLETED, "count": 5},
        "rewards": {"points": 500, "xp": 300, "badge": "COMPLETIONIST"},
    },
    {
        "code": "WEEKLY_STREAK_KEEPER",
        "title": "Streak Keeper",
        "description": "Maintain a 7-day login streak",
        "type": QuestType.WEEKLY,
        "category": "STREAK",
        "difficulty": "MEDIUM",
        "requirements": {"type": LOGIN_STREAK, "count": 7},
        "rewards": {"points": 300, "xp": 200, "badge": "STREAK_KEEPER"},
    },
]

QUEST_CATALOG: dict[str, dict] = {
    q["code"]: q for q in [*DAILY_QUESTS, DAILY_BONUS_QUEST, *WEEKLY_QUESTS]
}


def daily_templates(level: int, bonus_min_level: int = 5) -> list[dict]:
    """Daily set for a user at ``level``: the base three plus the bonus quest if unlocked."""
    templates = list(DAILY_QUESTS)
    if level >= bonus_min_level:
        templates.append(DAILY_BONUS_QUEST)
    return templates


def weekly_templates() -> list[dict]:
    return list(WEEKLY_QUESTS)


def percent_progress(current: int, required: int) -> float:
    """min(current / required, 1.0) * 100. A non-positive requirement counts as done."""
    if required <= 0:
        return 100.0
    return min(current / required, 1.0) * 100
