"""Leaderboard ranking over ``user_xp``.

Ranking order is an explicit comparator: total points descending, then the
earliest ``updated_at`` (first to reach the score), then ``user_id`` so that
the order is total. The composite index ``ix_user_xp_rank_order`` serves both
reads:

* a user's rank is ``1 + (rows that precede them)``, an index range count
  that walks every entry ahead of the user (O(log n + rank));
* a page is an index-ordered scan with ``rank = offset + i + 1``
  (O(log n + offset + limit)).

Ranks are therefore derived on read and cannot drift. The ``leaderboard``
table holds a periodic full-recompute snapshot, used for ``rank_change``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, delete, func, insert, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.db.models import LeaderboardEntry, UserXP
from questboard.db.types import as_utc, utcnow

logger = logging.getLogger(__name__)

RANK_ORDER = (UserXP.total_points.desc(), UserXP.updated_at.asc(), UserXP.user_id.asc())


def rank_sort_key(total_points: int, updated_at: datetime, user_id: str) -> tuple[int, datetime, str]:
    """Python mirror of RANK_ORDER."""
    return (-total_points, as_utc(updated_at), user_id)


def _precedes(xp: UserXP):  # noqa: ANN202
    """SQL predicate: rows ranked strictly ahead of ``xp``."""
    return or_(
        UserXP.total_points > xp.total_points,
        and_(UserXP.total_points == xp.total_points, UserXP.updated_at < xp.updated_at),
        and_(
            UserXP.total_points == xp.total_points,
            UserXP.updated_at == xp.updated_at,
            UserXP.user_id < xp.user_id,
        ),
    )


@dataclass
class RankedUser:
    user_id: str
    rank: int
    total_points: int
    level: int
    quests_completed: int
    updated_at: datetime
    rank_change: int = 0


async def count_ranked(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(UserXP))
    return int(result.scalar_one())


async def refresh_rank(db: AsyncSession, user_id: str) -> RankedUser | None:
    """Current rank of one user, read in the caller's transaction.

    Called right after the points update, so the caller sees its own write.
    Returns None for users without points.
    """
    xp = (
        await db.execute(
            select(UserXP).where(UserXP.user_id == user_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if xp is None:
        return None

    ahead = await db.execute(select(func.count()).select_from(UserXP).where(_precedes(xp)))
    return RankedUser(
        user_id=xp.user_id,
        rank=int(ahead.scalar_one()) + 1,
        total_points=xp.total_points,
        level=xp.level,
        quests_completed=xp.quests_completed,
        updated_at=xp.updated_at,
    )


async def get_page(db: AsyncSession, limit: int = 100, offset: int = 0) -> list[RankedUser]:
    """One page of the leaderboard, with movement against the last snapshot."""
    result = await db.execute(select(UserXP).order_by(*RANK_ORDER).limit(limit).offset(offset))
    rows = list(result.scalars().all())
    if not rows:
        return []

    snapshot = await db.execute(
        select(LeaderboardEntry.user_id, LeaderboardEntry.rank).where(
            LeaderboardEntry.user_id.in_([r.user_id for r in rows])
        )
    )
    previous = {row.user_id: row.rank for row in snapshot}

    page: list[RankedUser] = []
    for i, xp in enumerate(rows):
        rank = offset + i + 1
        page.append(RankedUser(
            user_id=xp.user_id,
            rank=rank,
            total_points=xp.total_points,
            level=xp.level,
            quests_completed=xp.quests_completed,
            updated_at=xp.updated_at,
            rank_change=previous.get(xp.user_id, rank) - rank,  # positive = moved up
        ))
    return page


async def rebuild_leaderboard(db: AsyncSession, *, now: datetime | None = None) -> int:
    """Full recompute: rewrite the snapshot table from one ordered read. Commits.

    Idempotent; safe to retry.
    """
    now = now or utcnow()
    result = await db.execute(select(UserXP).order_by(*RANK_ORDER))
    rows = list(result.scalars().all())

    await db.execute(delete(LeaderboardEntry))
    if rows:
        await db.execute(
            insert(LeaderboardEntry),
            [
                {
                    "user_id": xp.user_id,
                    "total_points": xp.total_points,
                    "level": xp.level,
                    "quests_completed": xp.quests_completed,
                    "updated_at": xp.updated_at,
                    "rank": position,
                    "snapshot_at": now,
                }
                for position, xp in enumerate(rows, start=1)
            ],
        )
    await db.commit()

    logger.info("Leaderboard snapshot rebuilt: %d entries", len(rows))
    return len(rows)


async def get_snapshot(db: AsyncSession, limit: int = 100, offset: int = 0) -> list[LeaderboardEntry]:
    """Read the materialized snapshot by its rank column."""
    result = await db.execute(
        select(LeaderboardEntry).order_by(LeaderboardEntry.rank).limit(limit).offset(offset)
    )
    return list(result.scalars().all())
