"""Spending analysis and the reward recommendation rule cascade.

Everything here is pure: callers load transactions and activities, these
functions turn them into a profile and a list of recommendation drafts.
All rule thresholds are strict comparisons.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from vpay.gamification.constants import RewardType

INCREASING = "INCREASING"
DECREASING = "DECREASING"
STABLE = "STABLE"

LOW = "LOW"
MEDIUM = "MEDIUM"
HIGH = "HIGH"

TOP_CATEGORY_LIMIT = 5
MAX_CASHBACK_RATE = 5.0
DISCOUNT_PERCENTAGE = 15
NFT_VALUE = 150.0
VIP_FEATURES = ["NEW_FEATURES", "PREMIUM_SUPPORT", "EXCLUSIVE_EVENTS"]


@dataclass
class CategorySpend:
    category: str
    amount: float
    frequency: int


@dataclass
class SpendingAnalysis:
    total_spent: float
    avg_transaction_amount: float
    transaction_frequency: float
    top_categories: list[CategorySpend]
    spending_trend: str
    risk_profile: str
    transaction_count: int = 0
    window_days: int = 30


@dataclass
class RecommendationDraft:
    reward_type: str
    title: str
    description: str
    value: float
    confidence: float
    reasoning: str
    metadata: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None


def spending_trend(amounts_newest_first: Sequence[float]) -> str:
    """Compare the newer half of the history against the older half."""
    mid = len(amounts_newest_first) // 2
    recent = sum(amounts_newest_first[:mid])
    older = sum(amounts_newest_first[mid:])
    if recent > older * 1.2:
        return INCREASING
    if recent < older * 0.8:
        return DECREASING
    return STABLE


def risk_profile(avg_amount: float, frequency: float) -> str:
    if avg_amount > 1000 or frequency > 5:
        return HIGH
    if avg_amount > 100 or frequency > 2:
        return MEDIUM
    return LOW


def top_categories(
    entries: Sequence[tuple[str, float]], limit: int = TOP_CATEGORY_LIMIT
) -> list[CategorySpend]:
    """Aggregate (category, amount) pairs and keep the ``limit`` largest by amount."""
    totals: dict[str, CategorySpend] = {}
    for category, amount in entries:
        spend = totals.setdefault(category, CategorySpend(category, 0.0, 0))
        spend.amount += amount
        spend.frequency += 1
    return sorted(totals.values(), key=lambda c: c.amount, reverse=True)[:limit]


def analyze(
    amounts_newest_first: Sequence[float],
    categorized: Sequence[tuple[str, float]],
    window_days: int,
) -> SpendingAnalysis:
    count = len(amounts_newest_first)
    total = float(sum(amounts_newest_first))
    avg = total / count if count else 0.0
    frequency = count / window_days if window_days > 0 else 0.0
    return SpendingAnalysis(
        total_spent=total,
        avg_transaction_amount=avg,
        transaction_frequency=frequency,
        top_categories=top_categories(categorized),
        spending_trend=spending_trend(amounts_newest_first),
        risk_profile=risk_profile(avg, frequency),
        transaction_count=count,
        window_days=window_days,
    )


def cashback_rate(analysis: SpendingAnalysis) -> float:
    rate = 1.0
    if analysis.total_spent > 2000:
        rate += 2
    elif analysis.total_spent > 1000:
        rate += 1
    if analysis.transaction_frequency > 5:
        rate += 1
    elif analysis.transaction_frequency > 2:
        rate += 0.5
    if analysis.spending_trend == INCREASING:
        rate += 0.5
    return min(rate, MAX_CASHBACK_RATE)


def build_recommendations(
    analysis: SpendingAnalysis,
    tier: str,
    reward_points: int,
    now: datetime,
    cashback_expiry_days: int = 7,
    discount_expiry_days: int = 14,
) -> list[RecommendationDraft]:
    """Run the rule cascade. Drafts come back sorted by confidence, highest first."""
    drafts: list[RecommendationDraft] = []

    if analysis.total_spent > 500:
        rate = cashback_rate(analysis)
        drafts.append(
            RecommendationDraft(
                reward_type=RewardType.CASHBACK,
                title=f"{rate:g}% Cashback on Next Purchase",
                description=f"Earn {rate:g}% cashback on your next payment based on your spending history",
                value=analysis.avg_transaction_amount * rate / 100,
                confidence=0.85,
                reasoning=(
                    f"High spending activity ({analysis.total_spent:.2f} in "
                    f"{analysis.window_days} days) qualifies for premium cashback"
                ),
                metadata={"cashbackRate": rate},
                expires_at=now + timedelta(days=cashback_expiry_days),
            )
        )

    if tier in ("Gold", "Platinum") or analysis.total_spent > 2000:
        drafts.append(
            RecommendationDraft(
                reward_type=RewardType.NFT,
                title="Exclusive VPay NFT Collection",
                description="Unlock exclusive NFTs based on your VPay activity and tier status",
                value=NFT_VALUE,
                confidence=0.75,
                reasoning=f"{tier} tier status and high activity qualifies for exclusive NFT rewards",
                metadata={
                    "nftType": "EXCLUSIVE_COLLECTION",
                    "rarity": "LEGENDARY" if tier == "Platinum" else "RARE",
                },
            )
        )

    if analysis.transaction_frequency > 3:
        bonus = math.floor(analysis.transaction_frequency * 10)
        drafts.append(
            RecommendationDraft(
                reward_type=RewardType.BONUS_TOKENS,
                title=f"{bonus} Bonus VPay Tokens",
                description="Earn bonus tokens for your frequent platform usage",
                value=float(bonus),
                confidence=0.9,
                reasoning=(
                    f"High transaction frequency ({analysis.transaction_frequency:.1f} per day) "
                    "earns bonus tokens"
                ),
                metadata={"tokenAmount": bonus, "tokenType": "VPAY"},
            )
        )

    if analysis.top_categories:
        top = analysis.top_categories[0]
        drafts.append(
            RecommendationDraft(
                reward_type=RewardType.DISCOUNT,
                title=f"{DISCOUNT_PERCENTAGE}% Discount on {top.category}",
                description=f"Special discount on your most used category: {top.category}",
                value=top.amount * DISCOUNT_PERCENTAGE / 100,
                confidence=0.8,
                reasoning=f"Most active in {top.category} category with {top.frequency} transactions",
                metadata={"discountPercentage": DISCOUNT_PERCENTAGE, "category": top.category},
                expires_at=now + timedelta(days=discount_expiry_days),
            )
        )

    if reward_points > 1000:
        drafts.append(
            RecommendationDraft(
                reward_type=RewardType.EXCLUSIVE_ACCESS,
                title="VIP Early Access Program",
                description="Get early access to new VPay features and premium services",
                value=0.0,
                confidence=0.7,
                reasoning=f"High reward points ({reward_points}) qualifies for VIP access",
                metadata={"accessType": "VIP_EARLY_ACCESS", "features": list(VIP_FEATURES)},
            )
        )

    drafts.sort(key=lambda d: d.confidence, reverse=True)
    return drafts
