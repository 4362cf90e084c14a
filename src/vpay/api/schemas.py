"""Pydantic request and response models for the gamification API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- Activity ---


class ActivityRequest(BaseModel):
    activity_type: str = Field(min_length=1, max_length=64)
    metadata: dict[str, Any] = {}
    amount: float | None = None
    category: str | None = Field(default=None, max_length=64)


class ActivityResponse(BaseModel):
    success: bool
    activity_id: int | None = None
    error: str | None = None
    failed_steps: list[str] = []
    completed_quests: list[int] = []
    awarded_badges: list[str] = []


class ActivityHistoryDay(BaseModel):
    date: str
    has_activity: bool
    activity_count: int


# --- Streaks ---


class StreakRequest(BaseModel):
    streak_type: str


class StreakResponse(BaseModel):
    streak_type: str
    current_count: int
    max_count: int
    multiplier: float
    is_active: bool
    last_activity_date: str | None = None

    @classmethod
    def from_streak(cls, streak: Any) -> StreakResponse:
        return cls(
            streak_type=streak.streak_type,
            current_count=streak.current_count,
            max_count=streak.max_count,
            multiplier=streak.multiplier,
            is_active=streak.is_active,
            last_activity_date=streak.last_activity_date.isoformat() if streak.last_activity_date else None,
        )


class StreakStatsResponse(BaseModel):
    total_active_streaks: int
    longest_current_streak: int
    longest_ever_streak: int
    total_streak_days: int


class StreaksResponse(BaseModel):
    streaks: list[StreakResponse]
    stats: StreakStatsResponse


# --- Quests ---


class UserQuestResponse(BaseModel):
    quest_id: int
    code: str
    title: str
    description: str
    type: str
    category: str
    difficulty: str
    requirements: dict[str, Any]
    rewards: dict[str, Any]
    status: str
    progress: dict[str, int]
    percentage: float
    started_at: datetime
    completed_at: datetime | None = None
    expires_at: datetime | None = None


class QuestProgressRequest(BaseModel):
    activity_type: str = Field(min_length=1)
    increment: int = Field(default=1, ge=1)


class QuestProgressUpdateResponse(BaseModel):
    progress: dict[str, int]
    is_completed: bool
    status: str


class QuestProgressResponse(BaseModel):
    quest_id: int
    status: str
    progress: dict[str, int]
    current: int
    required: int
    percentage: float
    is_completed: bool


class CompletedQuestsResponse(BaseModel):
    quests: list[UserQuestResponse]
    total: int
    page: int
    per_page: int


# --- Levels and badges ---


class LevelResponse(_ORMModel):
    level: int
    xp: int
    xp_to_next: int
    total_xp: int


class XPRequest(BaseModel):
    amount: int = Field(ge=0)
    source: str = "manual"


class XPAwardResponse(BaseModel):
    new_level: int
    leveled_up: bool
    levels_reached: list[int] = []
    bonus_points: int = 0


class BadgeRequest(BaseModel):
    badge_type: str = Field(min_length=1, max_length=64)
    metadata: dict[str, Any] = {}


class UserBadgeResponse(BaseModel):
    id: int
    code: str
    name: str
    rarity: str
    category: str
    earned_at: datetime
    metadata: dict[str, Any] = {}


# --- Summary and leaderboards ---


class SummaryResponse(BaseModel):
    user_id: int
    level: int
    xp: int
    xp_to_next: int
    total_xp: int
    points: int
    tier: str
    active_quests: int
    completed_quests: int
    active_streaks: int
    longest_streak: int
    badges: int


class LeaderboardEntryResponse(BaseModel):
    rank: int | None
    user_id: int
    score: float


class LeaderboardResponse(BaseModel):
    category: str
    period: str
    entries: list[LeaderboardEntryResponse]


# --- Recommendations ---


class CategorySpendResponse(BaseModel):
    category: str
    amount: float
    frequency: int


class SpendingAnalysisResponse(BaseModel):
    total_spent: float
    avg_transaction_amount: float
    transaction_frequency: float
    top_categories: list[CategorySpendResponse]
    spending_trend: str
    risk_profile: str
    window_days: int


class RecommendationResponse(BaseModel):
    id: int
    reward_type: str
    title: str
    description: str
    value: float
    confidence: float
    reasoning: str
    metadata: dict[str, Any]
    status: str
    expires_at: datetime | None = None
    created_at: datetime


class RecommendationListResponse(BaseModel):
    recommendations: list[RecommendationResponse]
    total: int
    page: int
    per_page: int
    stats: dict[str, int]


class ClaimResponse(BaseModel):
    recommendation_id: int
    result: dict[str, Any]
