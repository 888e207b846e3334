"""Completion ledger: the single source of truth for "did X complete Y".

A completion attempt is one transaction:

1. lock the quest row and run ``can_accept`` (capacity count and insert are
   atomic under the lock);
2. insert the completion under the ``(quest_id, user_id)`` unique constraint;
3. add the snapshotted points to the user's XP row and read back the rank.

Duplicate completions are detected by the constraint alone. The loser of a
race rolls back its whole transaction, including the XP increment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.db.models import Completion, UserXP
from questboard.db.types import utcnow
from questboard.errors import AlreadyCompleted, Expired, QuestNotFound, StorageError, error_for_reason
from questboard.gamification.leaderboard_service import RankedUser, refresh_rank
from questboard.gamification.xp_service import apply_completion
from questboard.quests.registry import can_accept

logger = logging.getLogger(__name__)


@dataclass
class CompletionOutcome:
    completion: Completion
    user_xp: UserXP
    rank: RankedUser | None


async def _completion_exists(db: AsyncSession, quest_id: str, user_id: str) -> bool:
    result = await db.execute(
        select(Completion.id).where(Completion.quest_id == quest_id, Completion.user_id == user_id)
    )
    return result.scalar_one_or_none() is not None


async def record_completion(
    db: AsyncSession,
    quest_id: str,
    user_id: str,
    *,
    now: datetime | None = None,
) -> CompletionOutcome:
    """Accept or reject one completion attempt. Commits on success.

    Raises:
        QuestNotFound, NotActive, Expired, CapacityReached: quest rejected it.
        AlreadyCompleted: the user already has a completion for this quest.
        StorageError: the transaction failed for another reason.
    """
    now = now or utcnow()

    try:
        acceptance = await can_accept(db, quest_id, now=now, for_update=True)
        if not acceptance.ok:
            if acceptance.reason == Expired.code:
                # keep the expiry flip even though the attempt is rejected
                await db.commit()
            else:
                await db.rollback()
            logger.info("Completion of %s by %s rejected: %s", quest_id, user_id, acceptance.reason)
            raise error_for_reason(acceptance.reason or "")

        quest = acceptance.quest
        if quest is None:
            await db.rollback()
            raise QuestNotFound()
        completion = Completion(
            quest_id=quest.id,
            user_id=user_id,
            points_awarded=quest.reward_points,
            completed_at=now,
        )
        db.add(completion)
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        if await _completion_exists(db, quest_id, user_id):
            logger.info("Completion of %s by %s rejected: already_completed", quest_id, user_id)
            raise AlreadyCompleted() from exc
        logger.error("Completion insert for %s by %s failed: %s", quest_id, user_id, exc.orig)
        raise StorageError() from exc
    except OperationalError as exc:
        await db.rollback()
        logger.error("Completion of %s by %s failed: %s", quest_id, user_id, exc.orig)
        raise StorageError() from exc

    try:
        user_xp = await apply_completion(db, user_id, completion.points_awarded, now=now)
        rank = await refresh_rank(db, user_id)
        await db.commit()
    except (IntegrityError, OperationalError) as exc:
        # The completion row goes with it: never a completion without points.
        await db.rollback()
        logger.error("Points update for %s on %s failed, completion rolled back: %s", user_id, quest_id, exc)
        raise StorageError() from exc

    logger.info(
        "Quest %s completed by %s: +%d points (total %d, level %d)",
        quest_id, user_id, completion.points_awarded, user_xp.total_points, user_xp.level,
    )
    return CompletionOutcome(completion=completion, user_xp=user_xp, rank=rank)


async def list_quest_completions(
    db: AsyncSession,
    quest_id: str,
    *,
    limit: int = 100,
    offset: int = 0,
) -> list[Completion]:
    """Ledger order: earliest completion first."""
    result = await db.execute(
        select(Completion)
        .where(Completion.quest_id == quest_id)
        .order_by(Completion.completed_at.asc(), Completion.id.asc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def list_all_quest_completions(db: AsyncSession, quest_id: str) -> list[Completion]:
    """The full ordered ledger for one quest (winner selection input)."""
    result = await db.execute(
        select(Completion)
        .where(Completion.quest_id == quest_id)
        .order_by(Completion.completed_at.asc(), Completion.id.asc())
    )
    return list(result.scalars().all())


async def list_user_completions(db: AsyncSession, user_id: str, *, limit: int = 50) -> list[Completion]:
    """A user's completions, newest first."""
    result = await db.execute(
        select(Completion)
        .where(Completion.user_id == user_id)
        .order_by(Completion.completed_at.desc(), Completion.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
