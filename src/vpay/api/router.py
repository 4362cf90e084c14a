"""Gamification HTTP routes.

A thin adapter over GamificationEngine. The caller identity arrives as a
path parameter from the upstream gateway; no authentication happens here.
Engine errors propagate to the handlers in vpay.middleware.error_handler.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vpay.config import get_settings
from vpay.db.models import RewardRecommendation, UserBadge, UserQuest
from vpay.dependencies import get_db, get_redis_dep
from vpay.gamification.constants import ALL_TIME
from vpay.gamification.engine import GamificationEngine
from vpay.gamification.quest_catalog import percent_progress
from vpay.gamification.quest_service import requirement_of
from vpay.api.schemas import (
    ActivityHistoryDay,
    ActivityRequest,
    ActivityResponse,
    BadgeRequest,
    ClaimResponse,
    CompletedQuestsResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    LevelResponse,
    QuestProgressRequest,
    QuestProgressResponse,
    QuestProgressUpdateResponse,
    RecommendationListResponse,
    RecommendationResponse,
    SpendingAnalysisResponse,
    StreakRequest,
    StreakResponse,
    StreaksResponse,
    StreakStatsResponse,
    SummaryResponse,
    UserBadgeResponse,
    UserQuestResponse,
    XPAwardResponse,
    XPRequest,
)

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


async def get_engine(
    db: AsyncSession = Depends(get_db),  # noqa: B008
    redis: object = Depends(get_redis_dep),  # noqa: B008
) -> GamificationEngine:
    return GamificationEngine(db, redis, get_settings())


def _quest_response(user_quest: UserQuest) -> UserQuestResponse:
    quest = user_quest.quest
    req_type, req_count = requirement_of(user_quest)
    return UserQuestResponse(
        quest_id=quest.id,
        code=quest.code,
        title=quest.title,
        description=quest.description,
        type=quest.type,
        category=quest.category,
        difficulty=quest.difficulty,
        requirements=quest.requirements,
        rewards=quest.rewards,
        status=user_quest.status,
        progress=user_quest.progress,
        percentage=percent_progress(user_quest.progress.get(req_type, 0), req_count),
        started_at=user_quest.started_at,
        completed_at=user_quest.completed_at,
        expires_at=user_quest.expires_at,
    )


def _badge_response(award: UserBadge) -> UserBadgeResponse:
    return UserBadgeResponse(
        id=award.id,
        code=award.badge.code,
        name=award.badge.name,
        rarity=award.badge.rarity,
        category=award.badge.category,
        earned_at=award.earned_at,
        metadata=award.badge_metadata,
    )


def _recommendation_response(rec: RewardRecommendation) -> RecommendationResponse:
    return RecommendationResponse(
        id=rec.id,
        reward_type=rec.reward_type,
        title=rec.title,
        description=rec.description,
        value=rec.value,
        confidence=rec.confidence,
        reasoning=rec.reasoning,
        metadata=rec.rec_metadata,
        status=rec.status,
        expires_at=rec.expires_at,
        created_at=rec.created_at,
    )


# ── Activity ──


@router.post("/users/{user_id}/activities", response_model=ActivityResponse)
async def record_activity(
    user_id: int,
    body: ActivityRequest,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> ActivityResponse:
    result = await engine.record_activity(
        user_id, body.activity_type, body.metadata, body.amount, body.category
    )
    return ActivityResponse(
        success=result.success,
        activity_id=result.activity_id,
        error=result.error,
        failed_steps=result.failed_steps,
        completed_quests=result.completed_quests,
        awarded_badges=result.awarded_badges,
    )


# ── Streaks ──


@router.get("/users/{user_id}/streaks", response_model=StreaksResponse)
async def get_streaks(
    user_id: int,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> StreaksResponse:
    streaks = await engine.list_streaks(user_id)
    stats = await engine.streak_stats(user_id)
    return StreaksResponse(
        streaks=[StreakResponse.from_streak(s) for s in streaks],
        stats=StreakStatsResponse(**stats),
    )


@router.post("/users/{user_id}/streaks", response_model=StreakResponse)
async def update_streak(
    user_id: int,
    body: StreakRequest,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> StreakResponse:
    streak = await engine.update_streak(user_id, body.streak_type)
    return StreakResponse.from_streak(streak)


@router.get("/users/{user_id}/streaks/history", response_model=list[ActivityHistoryDay])
async def streak_history(
    user_id: int,
    activity_type: str = Query("LOGIN"),
    days: int = Query(30, ge=1, le=365),
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> list[ActivityHistoryDay]:
    history = await engine.streak_history(user_id, activity_type, days)
    return [ActivityHistoryDay(**day) for day in history]


# ── Quests ──


@router.get("/users/{user_id}/quests", response_model=list[UserQuestResponse])
async def get_quests(
    user_id: int,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> list[UserQuestResponse]:
    return [_quest_response(uq) for uq in await engine.get_quests(user_id)]


@router.post("/users/{user_id}/quests/weekly", response_model=list[UserQuestResponse])
async def generate_weekly_quests(
    user_id: int,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> list[UserQuestResponse]:
    return [_quest_response(uq) for uq in await engine.generate_weekly_quests(user_id)]


@router.get("/users/{user_id}/quests/completed", response_model=CompletedQuestsResponse)
async def completed_quests(
    user_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> CompletedQuestsResponse:
    rows, total = await engine.list_completed_quests(user_id, page, per_page)
    return CompletedQuestsResponse(
        quests=[_quest_response(uq) for uq in rows], total=total, page=page, per_page=per_page
    )


@router.get("/users/{user_id}/quests/{quest_id}/progress", response_model=QuestProgressResponse)
async def get_quest_progress(
    user_id: int,
    quest_id: int,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> QuestProgressResponse:
    return QuestProgressResponse(**await engine.get_quest_progress(user_id, quest_id))


@router.post("/users/{user_id}/quests/{quest_id}/progress", response_model=QuestProgressUpdateResponse)
async def update_quest_progress(
    user_id: int,
    quest_id: int,
    body: QuestProgressRequest,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> QuestProgressUpdateResponse:
    update = await engine.update_quest_progress(user_id, quest_id, body.activity_type, body.increment)
    return QuestProgressUpdateResponse(
        progress=update.progress,
        is_completed=update.is_completed,
        status=update.user_quest.status,
    )


# ── Levels and badges ──


@router.get("/users/{user_id}/level", response_model=LevelResponse)
async def get_level(
    user_id: int,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> LevelResponse:
    return LevelResponse.model_validate(await engine.get_level(user_id))


@router.post("/users/{user_id}/xp", response_model=XPAwardResponse)
async def award_xp(
    user_id: int,
    body: XPRequest,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> XPAwardResponse:
    result = await engine.award_xp(user_id, body.amount, source=body.source)
    return XPAwardResponse(**asdict(result))


@router.get("/users/{user_id}/badges", response_model=list[UserBadgeResponse])
async def list_badges(
    user_id: int,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> list[UserBadgeResponse]:
    return [_badge_response(b) for b in await engine.list_badges(user_id)]


@router.post("/users/{user_id}/badges", response_model=UserBadgeResponse)
async def award_badge(
    user_id: int,
    body: BadgeRequest,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> UserBadgeResponse:
    return _badge_response(await engine.award_badge(user_id, body.badge_type, body.metadata))


@router.get("/users/{user_id}/summary", response_model=SummaryResponse)
async def get_summary(
    user_id: int,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> SummaryResponse:
    return SummaryResponse(**await engine.get_user_summary(user_id))


# ── Recommendations ──


@router.get("/users/{user_id}/spending", response_model=SpendingAnalysisResponse)
async def analyze_spending(
    user_id: int,
    days: int = Query(30, ge=1, le=365),
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> SpendingAnalysisResponse:
    analysis = await engine.analyze_spending(user_id, days)
    return SpendingAnalysisResponse(**asdict(analysis))


@router.post("/users/{user_id}/recommendations", response_model=list[RecommendationResponse])
async def generate_recommendations(
    user_id: int,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> list[RecommendationResponse]:
    return [_recommendation_response(r) for r in await engine.generate_recommendations(user_id)]


@router.get("/users/{user_id}/recommendations", response_model=RecommendationListResponse)
async def list_recommendations(
    user_id: int,
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> RecommendationListResponse:
    rows, total = await engine.list_recommendations(user_id, status, page, per_page)
    return RecommendationListResponse(
        recommendations=[_recommendation_response(r) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
        stats=await engine.recommendation_stats(user_id),
    )


@router.post("/users/{user_id}/recommendations/{recommendation_id}/claim", response_model=ClaimResponse)
async def claim_recommendation(
    user_id: int,
    recommendation_id: int,
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> ClaimResponse:
    result = await engine.claim_recommendation(user_id, recommendation_id)
    return ClaimResponse(recommendation_id=recommendation_id, result=result)


# ── Leaderboards ──


@router.get("/leaderboards/{category}", response_model=LeaderboardResponse)
async def leaderboard(
    category: str,
    limit: int = Query(10, ge=1, le=100),
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> LeaderboardResponse:
    entries = await engine.leaderboard_top(category.upper(), limit)
    return LeaderboardResponse(
        category=category.upper(),
        period=ALL_TIME,
        entries=[LeaderboardEntryResponse(rank=e.rank, user_id=e.user_id, score=e.score) for e in entries],
    )
