"""Recommendation generation, listing and claims.

Claims are the only money-adjacent mutation in the gamification core: the
recommendation row is locked, checked, the type-specific side effect runs,
and the status flips to CLAIMED in one transaction. The REWARD_CLAIMED
activity is logged afterwards, in its own transactions.
"""

from __future__ import annotations

import calendar
import logging
import secrets
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vpay.config import Settings
from vpay.db.models import RewardRecommendation, SpendingPattern, Transaction
from vpay.exceptions import InvalidStateError, NotFoundError, StorageError, ValidationError
from vpay.gamification.activity_service import ActivityLog
from vpay.gamification.badge_service import BadgeService
from vpay.gamification.constants import (
    ActivityType,
    RecommendationStatus,
    RewardType,
    TransactionStatus,
    TransactionType,
)
from vpay.gamification.stores import ActivityStore, LedgerStore, RecommendationStore, UserStore
from vpay.recommendations.analysis import SpendingAnalysis, analyze, build_recommendations

logger = logging.getLogger(__name__)

SPENDING_TYPES = (TransactionType.PAYMENT, TransactionType.WITHDRAWAL)
ACTIVE_DISCOUNTS = "ACTIVE_DISCOUNTS"
VIP_ACCESS = "VIP_ACCESS"

ClaimHandler = Callable[[RewardRecommendation, datetime], Awaitable[dict[str, Any]]]


def discount_code() -> str:
    return f"VPAY{secrets.randbelow(10**6):06d}"


class RecommendationService:
    def __init__(
        self,
        db: AsyncSession,
        users: UserStore,
        activities: ActivityStore,
        recommendations: RecommendationStore,
        ledger: LedgerStore,
        badges: BadgeService,
        activity_log: ActivityLog,
        settings: Settings,
    ) -> None:
        self.db = db
        self.users = users
        self.activities = activities
        self.recommendations = recommendations
        self.ledger = ledger
        self.badges = badges
        self.activity_log = activity_log
        self.settings = settings
        self._handlers: dict[str, ClaimHandler] = {
            RewardType.CASHBACK: self._claim_cashback,
            RewardType.BONUS_TOKENS: self._claim_bonus_tokens,
            RewardType.NFT: self._claim_nft,
            RewardType.DISCOUNT: self._claim_discount,
            RewardType.EXCLUSIVE_ACCESS: self._claim_exclusive_access,
        }

    # --- Analysis ---

    async def analyze_spending(
        self, user_id: int, days: int | None = None, now: datetime | None = None
    ) -> SpendingAnalysis:
        """Profile completed PAYMENT/WITHDRAWAL transactions over the last ``days`` days."""
        if days is None:
            days = self.settings.recommendation_window_days
        if days < 1:
            raise ValidationError("days must be positive", user_id=user_id)
        if now is None:
            now = datetime.now(timezone.utc)
        since = now - timedelta(days=days)

        transactions = await self.users.completed_transactions(user_id, SPENDING_TYPES, since)
        categorized = await self.activities.categorized_since(user_id, since)
        return analyze(
            [tx.amount for tx in transactions],
            [(a.category, a.amount) for a in categorized if a.category and a.amount is not None],
            days,
        )

    async def update_spending_patterns(
        self,
        user_id: int,
        now: datetime | None = None,
        analysis: SpendingAnalysis | None = None,
    ) -> list[SpendingPattern]:
        """Upsert this month's pattern row for each top category."""
        if now is None:
            now = datetime.now(timezone.utc)
        if analysis is None:
            analysis = await self.analyze_spending(user_id, now=now)

        today = now.astimezone(timezone.utc).date()
        period_start = today.replace(day=1)
        period_end = today.replace(day=calendar.monthrange(today.year, today.month)[1])

        patterns = []
        for top in analysis.top_categories:
            patterns.append(
                await self.recommendations.upsert_pattern(
                    user_id,
                    top.category,
                    period_start,
                    period_end,
                    {
                        "total_amount": top.amount,
                        "frequency": top.frequency,
                        "avg_amount": top.amount / top.frequency if top.frequency else 0.0,
                        "trend_direction": analysis.spending_trend,
                        "last_activity": now,
                    },
                )
            )
        return patterns

    # --- Generation ---

    async def generate_recommendations(
        self, user_id: int, now: datetime | None = None
    ) -> list[RewardRecommendation]:
        """Analyze, persist a PENDING batch and refresh spending patterns."""
        if now is None:
            now = datetime.now(timezone.utc)
        user = await self.users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)

        analysis = await self.analyze_spending(user_id, now=now)
        drafts = build_recommendations(
            analysis,
            user.tier,
            user.reward_points,
            now,
            cashback_expiry_days=self.settings.cashback_expiry_days,
            discount_expiry_days=self.settings.discount_expiry_days,
        )
        rows = [
            RewardRecommendation(
                user_id=user_id,
                reward_type=d.reward_type,
                title=d.title,
                description=d.description,
                value=d.value,
                confidence=d.confidence,
                reasoning=d.reasoning,
                rec_metadata=d.metadata,
                status=RecommendationStatus.PENDING,
                expires_at=d.expires_at,
                created_at=now,
            )
            for d in drafts
        ]
        try:
            await self.recommendations.add_many(rows)
            await self.update_spending_patterns(user_id, now, analysis)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StorageError("Failed to store recommendations", user_id=user_id) from exc

        logger.info("Generated %d recommendation(s) for user %s", len(rows), user_id)
        return rows

    # --- Queries ---

    async def list_recommendations(
        self,
        user_id: int,
        status: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[RewardRecommendation], int]:
        if status is not None and status not in RecommendationStatus.ALL:
            raise ValidationError(f"Unknown recommendation status: {status}", user_id=user_id)
        if page < 1 or per_page < 1:
            raise ValidationError("page and per_page must be positive", user_id=user_id)
        return await self.recommendations.list_for_user(user_id, status, (page - 1) * per_page, per_page)

    async def recommendation_stats(self, user_id: int) -> dict[str, int]:
        counts = await self.recommendations.count_by_status(user_id)
        return {**counts, "TOTAL": sum(counts.values())}

    async def expire_overdue(self, now: datetime | None = None) -> int:
        if now is None:
            now = datetime.now(timezone.utc)
        expired = await self.recommendations.expire_overdue(now)
        await self.db.commit()
        if expired:
            logger.info("Expired %d recommendation(s)", expired)
        return expired

    # --- Claims ---

    async def claim(self, user_id: int, recommendation_id: int, now: datetime | None = None) -> dict[str, Any]:
        """Claim a PENDING recommendation and apply its reward.

        An expired recommendation is moved to EXPIRED and the claim rejected
        with no side effect.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        rec = await self.recommendations.get(recommendation_id, for_update=True)
        if rec is None or rec.user_id != user_id:
            await self.db.rollback()
            raise NotFoundError(
                f"Recommendation {recommendation_id} not found",
                user_id=user_id,
                context={"recommendation_id": recommendation_id},
            )
        status, reward_type, expires_at = rec.status, rec.reward_type, rec.expires_at
        if status != RecommendationStatus.PENDING:
            await self.db.rollback()
            raise InvalidStateError(
                f"Recommendation {recommendation_id} is already {status}",
                user_id=user_id,
                context={"status": status},
            )
        if expires_at is not None and expires_at <= now:
            rec.status = RecommendationStatus.EXPIRED
            await self.db.commit()
            raise InvalidStateError(
                f"Recommendation {recommendation_id} has expired",
                user_id=user_id,
                context={"expires_at": expires_at.isoformat()},
            )

        handler = self._handlers.get(reward_type)
        if handler is None:
            await self.db.rollback()
            raise ValidationError(f"Unknown reward type: {reward_type}", user_id=user_id)

        try:
            claim_result = await handler(rec, now)
            rec.status = RecommendationStatus.CLAIMED
            rec.claimed_at = now
            rec.claim_result = claim_result
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StorageError("Failed to claim recommendation", user_id=user_id) from exc

        logger.info("User %s claimed %s recommendation %s", user_id, rec.reward_type, rec.id)
        await self.activity_log.record(
            user_id,
            ActivityType.REWARD_CLAIMED,
            {"recommendationId": rec.id, "rewardType": rec.reward_type, "value": rec.value},
            amount=rec.value,
            category="REWARDS",
            now=now,
            depth=1,
        )
        return claim_result

    async def _claim_cashback(self, rec: RewardRecommendation, now: datetime) -> dict[str, Any]:
        tx = await self.users.add_transaction(
            Transaction(
                user_id=rec.user_id,
                type=TransactionType.REWARD,
                amount=rec.value,
                currency="VRC",
                status=TransactionStatus.COMPLETED,
                description="Recommended cashback reward",
                created_at=now,
            )
        )
        await self.users.add_earnings(rec.user_id, rec.value)
        return {"type": RewardType.CASHBACK, "amount": rec.value, "transactionId": tx.id}

    async def _claim_bonus_tokens(self, rec: RewardRecommendation, now: datetime) -> dict[str, Any]:
        amount = int(rec.rec_metadata.get("tokenAmount") or 0)
        await self.ledger.grant_points(
            rec.user_id,
            amount,
            "recommendation",
            now,
            source_id=str(rec.id),
            description=rec.title,
            idempotency_key=f"claim:{rec.id}",
        )
        return {"type": RewardType.BONUS_TOKENS, "amount": amount}

    async def _claim_nft(self, rec: RewardRecommendation, now: datetime) -> dict[str, Any]:
        nft_type = rec.rec_metadata.get("nftType") or "EXCLUSIVE_COLLECTION"
        rarity = rec.rec_metadata.get("rarity")
        award, _ = await self.badges.award_badge(
            rec.user_id,
            nft_type,
            {"rarity": rarity, "recommendationId": rec.id},
            rarity=rarity,
            now=now,
        )
        return {"type": RewardType.NFT, "nftType": nft_type, "rarity": rarity, "userBadgeId": award.id}

    async def _claim_discount(self, rec: RewardRecommendation, now: datetime) -> dict[str, Any]:
        code = discount_code()
        percentage = rec.rec_metadata.get("discountPercentage")
        category = rec.rec_metadata.get("category")
        await self.users.set_preference(
            rec.user_id,
            ACTIVE_DISCOUNTS,
            {
                "code": code,
                "percentage": percentage,
                "category": category,
                "expiresAt": (now + timedelta(days=self.settings.discount_code_ttl_days)).isoformat(),
            },
            now,
        )
        return {"type": RewardType.DISCOUNT, "code": code, "percentage": percentage, "category": category}

    async def _claim_exclusive_access(self, rec: RewardRecommendation, now: datetime) -> dict[str, Any]:
        access_type = rec.rec_metadata.get("accessType")
        features = rec.rec_metadata.get("features") or []
        await self.users.set_preference(
            rec.user_id,
            VIP_ACCESS,
            {"accessType": access_type, "features": features, "grantedAt": now.isoformat()},
            now,
        )
        return {"type": RewardType.EXCLUSIVE_ACCESS, "accessType": access_type, "features": features}
