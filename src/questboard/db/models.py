"""ORM models for quests, the completion ledger and derived reward state.

``quests``, ``completions`` and ``user_xp`` are the source of truth;
``leaderboard`` and ``winner_records`` are derived from them.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from questboard.db.base import Base
from questboard.db.types import BigIntPK, JSONDocument, UTCDateTime, utcnow

# Quest statuses
QUEST_ACTIVE = "active"
QUEST_PAUSED = "paused"
QUEST_COMPLETED = "completed"
QUEST_EXPIRED = "expired"

QUEST_STATUSES = (QUEST_ACTIVE, QUEST_PAUSED, QUEST_COMPLETED, QUEST_EXPIRED)
CLOSED_STATUSES = frozenset({QUEST_COMPLETED, QUEST_EXPIRED})

# Prize distribution modes
DISTRIBUTION_FCFS = "fcfs"
DISTRIBUTION_RAFFLE = "raffle"

DISTRIBUTION_TYPES = (DISTRIBUTION_FCFS, DISTRIBUTION_RAFFLE)

AMOUNT = Numeric(36, 18)

# Width of every user id column; longer token subjects are rejected at auth.
USER_ID_LENGTH = 64


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class Quest(Base):
    """A task users complete once for a points reward, optionally with a prize pool."""

    __tablename__ = "quests"
    __table_args__ = (
        Index("ix_quests_status_expires", "status", "expires_at"),
        Index("ix_quests_creator", "creator_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    creator_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    reward_points: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Prize pool (all null when the quest has none) ---
    prize_pool_amount: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    prize_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    distribution_type: Mapped[str | None] = mapped_column(String(8), nullable=True)
    number_of_winners: Mapped[int | None] = mapped_column(Integer, nullable=True)
    winner_prizes: Mapped[list[str] | None] = mapped_column(JSONDocument, nullable=True)

    max_completions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=QUEST_ACTIVE)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    @property
    def has_prize_pool(self) -> bool:
        return self.prize_pool_amount is not None and self.distribution_type is not None


# ---------------------------------------------------------------------------
# Completion ledger
# ---------------------------------------------------------------------------


class Completion(Base):
    """Immutable record that a user satisfied a quest once.

    ``points_awarded`` is a snapshot of the quest reward at insert time.
    """

    __tablename__ = "completions"
    __table_args__ = (
        UniqueConstraint("quest_id", "user_id", name="uq_completions_quest_user"),
        Index("ix_completions_quest_order", "quest_id", "completed_at", "id"),
        Index("ix_completions_user", "user_id", "completed_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    quest_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Points & ranking
# ---------------------------------------------------------------------------


class UserXP(Base):
    """Denormalized points summary, one row per user, created on first completion."""

    __tablename__ = "user_xp"

    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), primary_key=True)
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    quests_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# Leaderboard order: points desc, earliest update first, user id as final tie-break.
Index(
    "ix_user_xp_rank_order",
    UserXP.total_points.desc(),
    UserXP.updated_at,
    UserXP.user_id,
)


class LeaderboardEntry(Base):
    """Materialized leaderboard snapshot, rewritten wholesale by the refresh job."""

    __tablename__ = "leaderboard"
    __table_args__ = (
        UniqueConstraint("rank", name="uq_leaderboard_rank"),
    )

    user_id: Mapped[str] = mapped_column(String(USER_ID_LENGTH), primary_key=True)
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    quests_completed: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    snapshot_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Prize settlement
# ---------------------------------------------------------------------------


class WinnerRecord(Base):
    """Winner set for a closed quest. Written at most once per quest."""

    __tablename__ = "winner_records"
    __table_args__ = (
        UniqueConstraint("quest_id", name="uq_winner_records_quest"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    quest_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    distribution_type: Mapped[str | None] = mapped_column(String(8), nullable=True)
    winners: Mapped[list[dict[str, Any]]] = mapped_column(JSONDocument, nullable=False, default=list)
    prize_per_winner: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    prize_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    seed: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total_completions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    distributed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    distribution_proof: Mapped[str | None] = mapped_column(String(256), nullable=True)
    distributed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    @property
    def winner_user_ids(self) -> list[str]:
        return [w["user_id"] for w in self.winners]
