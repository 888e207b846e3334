"""Prize distribution tracking.

The actual payout (token transfer) happens elsewhere; callers report back
with an opaque proof such as a transaction hash. ``distributed`` goes from
false to true exactly once. Callers may deliver the same report more than
once, so repeats return the stored record instead of failing.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from questboard.db.models import WinnerRecord
from questboard.db.types import utcnow
from questboard.errors import NoWinnerRecord, ValidationFailed
from questboard.prizes.winner_engine import get_winner_record

logger = logging.getLogger(__name__)


async def mark_distributed(
    db: AsyncSession,
    quest_id: str,
    proof: str,
    *,
    now: datetime | None = None,
) -> WinnerRecord:
    """Record that the quest's prizes were paid. Idempotent."""
    if not proof or not proof.strip():
        raise ValidationFailed("proof of payment is required")
    now = now or utcnow()

    record = await get_winner_record(db, quest_id, for_update=True)
    if record is None:
        await db.rollback()
        raise NoWinnerRecord()

    if record.distributed:
        # commit, not rollback: a rollback would expire the record we return
        await db.commit()
        if record.distribution_proof != proof.strip():
            logger.warning(
                "Quest %s already distributed with proof %s; ignoring proof %s",
                quest_id, record.distribution_proof, proof,
            )
        return record

    record.distributed = True
    record.distribution_proof = proof.strip()
    record.distributed_at = now
    await db.commit()

    logger.info("Prizes for %s marked distributed (%d winners)", quest_id, len(record.winners))
    return record


async def require_winner_record(db: AsyncSession, quest_id: str) -> WinnerRecord:
    record = await get_winner_record(db, quest_id)
    if record is None:
        raise NoWinnerRecord()
    return record
