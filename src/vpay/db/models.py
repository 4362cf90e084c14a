"""ORM models for the VPay gamification core.

Tables are created by Alembic (alembic/versions). Tests build the same
schema from ``Base.metadata`` on SQLite, so only portable types are used.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vpay.db.base import Base, JSONType, UTCDateTime


# ---------------------------------------------------------------------------
# Users and the transaction ledger
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table. Owned by the account service; read and credited here."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    reward_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_earnings: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="Bronze", server_default="Bronze")
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class Transaction(Base):
    """Completed money movements. Source of spending data for recommendations."""

    __tablename__ = "transactions"
    __table_args__ = (Index("ix_transactions_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="VRC", server_default="VRC")
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class UserPreference(Base):
    """Key/value preference flags (active discounts, VIP access)."""

    __tablename__ = "user_preferences"
    __table_args__ = (
        UniqueConstraint("user_id", "preference_key", name="user_preferences_user_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    preference_key: Mapped[str] = mapped_column(String(64), nullable=False)
    preference_value: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


class UserActivity(Base):
    """Append-only activity events. Never updated or deleted."""

    __tablename__ = "user_activities"
    __table_args__ = (Index("ix_user_activities_user_timestamp", "user_id", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    activity_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


class Streak(Base):
    """Consecutive-day counter, one row per (user, streak type)."""

    __tablename__ = "streaks"
    __table_args__ = (
        UniqueConstraint("user_id", "streak_type", name="streaks_user_type_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    streak_type: Mapped[str] = mapped_column(String(32), nullable=False)
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class Quest(Base):
    """Quest template, keyed by a stable catalog code."""

    __tablename__ = "quests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    requirements: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    rewards: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class UserQuest(Base):
    """Per-user quest instance. At most one ACTIVE instance per (user, quest)."""

    __tablename__ = "user_quests"
    __table_args__ = (
        Index(
            "uq_user_quests_active",
            "user_id",
            "quest_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_user_quests_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quest_id: Mapped[int] = mapped_column(Integer, ForeignKey("quests.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")
    progress: Mapped[dict[str, int]] = mapped_column(JSONType, nullable=False, default=dict)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    quest: Mapped[Quest] = relationship("Quest", lazy="joined", innerjoin=True)


# ---------------------------------------------------------------------------
# Levels and ledgers
# ---------------------------------------------------------------------------


class UserLevel(Base):
    """Per-user level singleton. xp < xp_to_next after every settle."""

    __tablename__ = "user_levels"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_to_next: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class PointsLedger(Base):
    """Immutable reward-point grants with idempotency key."""

    __tablename__ = "points_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class XPLedger(Base):
    """Immutable XP grants with idempotency key."""

    __tablename__ = "xp_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class NFTBadge(Base):
    """Badge catalog entry. ``code`` is the stable badge type key."""

    __tablename__ = "nft_badges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image: Mapped[str | None] = mapped_column(String(256), nullable=True)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    badge_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    mint_condition: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class UserBadge(Base):
    """Badges earned by users. UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="user_badges_user_id_badge_id_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("nft_badges.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    badge_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    token_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    badge: Mapped[NFTBadge] = relationship("NFTBadge", lazy="joined", innerjoin=True)


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


class SpendingPattern(Base):
    """Monthly per-category spending aggregate, recomputed by upsert."""

    __tablename__ = "spending_patterns"
    __table_args__ = (
        UniqueConstraint("user_id", "category", "period_start", name="spending_patterns_user_cat_period_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    frequency: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    trend_direction: Mapped[str] = mapped_column(String(16), nullable=False, default="STABLE")
    last_activity: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class RewardRecommendation(Base):
    """Generated reward suggestion. PENDING until claimed or expired."""

    __tablename__ = "reward_recommendations"
    __table_args__ = (Index("ix_reward_recommendations_user_status", "user_id", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    reward_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")
    rec_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    claim_result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------


class Leaderboard(Base):
    """A ranked board for one (type, category, period)."""

    __tablename__ = "leaderboards"
    __table_args__ = (
        UniqueConstraint("type", "category", "period", name="leaderboards_type_cat_period_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False)


class LeaderboardEntry(Base):
    """Cached score per (board, user). Rank is assigned by the batch recompute."""

    __tablename__ = "leaderboard_entries"
    __table_args__ = (
        UniqueConstraint("leaderboard_id", "user_id", name="leaderboard_entries_board_user_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    leaderboard_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("leaderboards.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
