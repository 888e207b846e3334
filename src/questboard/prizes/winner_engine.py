"""Winner selection for closed quests with a prize pool.

Selection is a pure function of the quest and its ordered completion ledger:

* FCFS: the first ``number_of_winners`` completions by timestamp.
* RAFFLE: a sample without replacement, seeded from the quest id and its
  closing timestamp. Re-running after a crash picks the same winners, so
  the computation can be repeated until the record is persisted.

The record is written once per quest: the quest row lock serialises
concurrent triggers and the unique constraint on ``winner_records.quest_id``
backs it up.
"""

from __future__ import annotations

import hashlib
import logging
import random
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.db.models import (
    CLOSED_STATUSES,
    DISTRIBUTION_FCFS,
    DISTRIBUTION_RAFFLE,
    Completion,
    Quest,
    WinnerRecord,
)
from questboard.db.types import as_utc, utcnow
from questboard.errors import NotEligible, StorageError
from questboard.quests.ledger import list_all_quest_completions
from questboard.quests.registry import close_if_due, get_quest

logger = logging.getLogger(__name__)


def raffle_seed(quest_id: str, closed_at: datetime) -> str:
    """Hex seed derived only from quest-intrinsic data."""
    material = f"{quest_id}:{as_utc(closed_at).isoformat()}"
    return hashlib.sha256(material.encode()).hexdigest()


def select_winners(
    completions: Sequence[Completion],
    distribution_type: str,
    number_of_winners: int,
    seed: str | None = None,
) -> list[Completion]:
    """Pick winners from a ledger already ordered by (completed_at, id)."""
    if number_of_winners <= 0 or not completions:
        return []
    k = min(number_of_winners, len(completions))

    if distribution_type == DISTRIBUTION_FCFS:
        return list(completions[:k])
    if distribution_type == DISTRIBUTION_RAFFLE:
        if seed is None:
            raise ValueError("Raffle selection requires a seed")
        rng = random.Random(int(seed, 16))
        return rng.sample(list(completions), k)
    raise ValueError(f"Unknown distribution type: {distribution_type}")


def prize_for_position(quest: Quest, position: int) -> Decimal | None:
    """Prize for the 1-based winner position: configured tier or an even split."""
    if quest.prize_pool_amount is None or not quest.number_of_winners:
        return None
    if quest.winner_prizes:
        return Decimal(quest.winner_prizes[position - 1])
    return even_split(quest)


def even_split(quest: Quest) -> Decimal | None:
    if quest.prize_pool_amount is None or not quest.number_of_winners:
        return None
    return (Decimal(quest.prize_pool_amount) / quest.number_of_winners).quantize(Decimal("1e-18"))


def _format_amount(amount: Decimal | None) -> str | None:
    if amount is None:
        return None
    return format(amount.normalize(), "f")


def _winner_entries(quest: Quest, winners: list[Completion]) -> list[dict[str, Any]]:
    return [
        {
            "position": position,
            "user_id": c.user_id,
            "completion_id": c.id,
            "completed_at": as_utc(c.completed_at).isoformat(),
            "prize": _format_amount(prize_for_position(quest, position)),
        }
        for position, c in enumerate(winners, start=1)
    ]


async def get_winner_record(db: AsyncSession, quest_id: str, *, for_update: bool = False) -> WinnerRecord | None:
    stmt = select(WinnerRecord).where(WinnerRecord.quest_id == quest_id)
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt.execution_options(populate_existing=True))).scalar_one_or_none()


async def compute_winners(
    db: AsyncSession,
    quest_id: str,
    *,
    now: datetime | None = None,
) -> WinnerRecord:
    """Compute and persist the winner record for a closed quest. Idempotent.

    Raises:
        QuestNotFound: unknown quest.
        NotEligible: the quest is still open.
    """
    now = now or utcnow()
    quest = await get_quest(db, quest_id, for_update=True)

    existing = await get_winner_record(db, quest_id)
    if existing is not None:
        await db.commit()
        return existing

    closed_now = await close_if_due(db, quest, now=now)
    if quest.status not in CLOSED_STATUSES:
        await db.rollback()
        raise NotEligible()
    if closed_now:
        logger.info("Quest %s closed as %s before winner computation", quest_id, quest.status)

    completions = await list_all_quest_completions(db, quest_id)
    distribution_type = quest.distribution_type if quest.has_prize_pool else None
    seed = None
    winners: list[Completion] = []
    if distribution_type is not None:
        if distribution_type == DISTRIBUTION_RAFFLE:
            seed = raffle_seed(quest.id, quest.closed_at or quest.updated_at)
        winners = select_winners(completions, distribution_type, quest.number_of_winners or 0, seed)

    record = WinnerRecord(
        quest_id=quest_id,
        distribution_type=distribution_type,
        winners=_winner_entries(quest, winners),
        prize_per_winner=None if quest.winner_prizes else even_split(quest),
        prize_token=quest.prize_token,
        seed=seed,
        total_completions=len(completions),
        computed_at=now,
        distributed=False,
    )
    db.add(record)
    try:
        await db.flush()
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        existing = await get_winner_record(db, quest_id)
        if existing is None:
            logger.error("Winner record insert for %s failed: %s", quest_id, exc.orig)
            raise StorageError() from exc
        logger.info("Winner record for %s written concurrently, returning it", quest_id)
        return existing

    logger.info(
        "Winners computed for %s (%s): %d of %d completions",
        quest_id, distribution_type or "no prize", len(winners), len(completions),
    )
    return record


async def pending_settlements(db: AsyncSession, *, limit: int = 100) -> list[str]:
    """Closed prize quests that still lack a winner record."""
    result = await db.execute(
        select(Quest.id)
        .outerjoin(WinnerRecord, WinnerRecord.quest_id == Quest.id)
        .where(
            Quest.status.in_(CLOSED_STATUSES),
            Quest.prize_pool_amount.is_not(None),
            WinnerRecord.id.is_(None),
        )
        .order_by(Quest.closed_at.asc(), Quest.id)
        .limit(limit)
    )
    return [row[0] for row in result]
