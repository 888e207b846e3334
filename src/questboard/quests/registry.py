"""Quest registry: quest records, status state machine, and acceptance checks.

``can_accept`` is the gate every completion attempt passes through. Its only
side effect is the lazy expiry flip: an ACTIVE quest whose ``expires_at`` has
passed becomes EXPIRED the first time anyone looks at it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.config import get_settings
from questboard.db.models import (
    CLOSED_STATUSES,
    DISTRIBUTION_TYPES,
    QUEST_ACTIVE,
    QUEST_COMPLETED,
    QUEST_EXPIRED,
    QUEST_PAUSED,
    Completion,
    Quest,
    WinnerRecord,
)
from questboard.db.types import as_utc, utcnow
from questboard.errors import (
    CapacityReached,
    Expired,
    InvalidTransition,
    NotActive,
    NotQuestCreator,
    QuestNotFound,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[str, list[str]] = {
    QUEST_ACTIVE: [QUEST_PAUSED, QUEST_COMPLETED, QUEST_EXPIRED],
    QUEST_PAUSED: [QUEST_ACTIVE, QUEST_COMPLETED],
    QUEST_COMPLETED: [],
    QUEST_EXPIRED: [],
}

EDITABLE_FIELDS = frozenset({"title", "description", "reward_points", "max_completions", "expires_at"})


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a status transition. Raises InvalidTransition if not allowed."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise InvalidTransition(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


def generate_quest_id() -> str:
    return f"quest_{uuid.uuid4().hex}"


@dataclass
class Acceptance:
    """Outcome of ``can_accept``. ``reason`` is an error code when not ok."""

    ok: bool
    reason: str | None = None
    quest: Quest | None = None
    completion_count: int = 0


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def _lock_quest_row(db: AsyncSession, quest_id: str) -> None:
    # SQLite ignores FOR UPDATE; a no-op write takes the database write lock instead.
    if db.get_bind().dialect.name == "sqlite":
        await db.execute(
            update(Quest)
            .where(Quest.id == quest_id)
            .values(status=Quest.status)
            .execution_options(synchronize_session=False)
        )


async def get_quest(db: AsyncSession, quest_id: str, *, for_update: bool = False) -> Quest:
    """Load a quest, optionally taking its row lock. Raises QuestNotFound."""
    stmt = select(Quest).where(Quest.id == quest_id)
    if for_update:
        await _lock_quest_row(db, quest_id)
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    quest = (await db.execute(stmt)).scalar_one_or_none()
    if quest is None:
        raise QuestNotFound(f"Quest {quest_id} not found")
    return quest


async def list_quests(
    db: AsyncSession,
    *,
    status: str | None = None,
    creator_id: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Quest]:
    """List quests newest first."""
    stmt = select(Quest).order_by(Quest.created_at.desc(), Quest.id)
    if status is not None:
        stmt = stmt.where(Quest.status == status)
    if creator_id is not None:
        stmt = stmt.where(Quest.creator_id == creator_id)
    result = await db.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())


async def count_completions(db: AsyncSession, quest_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Completion).where(Completion.quest_id == quest_id)
    )
    return int(result.scalar_one())


async def completion_counts(db: AsyncSession, quest_ids: list[str]) -> dict[str, int]:
    """Batch completion counts for quest listings."""
    if not quest_ids:
        return {}
    result = await db.execute(
        select(Completion.quest_id, func.count().label("n"))
        .where(Completion.quest_id.in_(quest_ids))
        .group_by(Completion.quest_id)
    )
    return {row.quest_id: int(row.n) for row in result}


# ---------------------------------------------------------------------------
# Acceptance
# ---------------------------------------------------------------------------


def _close(quest: Quest, status: str, closed_at: datetime, now: datetime) -> None:
    quest.status = status
    quest.closed_at = closed_at
    quest.updated_at = now


async def can_accept(
    db: AsyncSession,
    quest_id: str,
    *,
    now: datetime | None = None,
    for_update: bool = False,
) -> Acceptance:
    """Decide whether the quest accepts another completion.

    Checks, in order: exists, ACTIVE, not expired, under capacity. With
    ``for_update`` the quest row stays locked for the caller's transaction,
    which makes the capacity count and a following insert atomic.
    """
    now = now or utcnow()
    try:
        quest = await get_quest(db, quest_id, for_update=for_update)
    except QuestNotFound:
        return Acceptance(ok=False, reason=QuestNotFound.code)

    if quest.status != QUEST_ACTIVE:
        return Acceptance(ok=False, reason=NotActive.code, quest=quest)

    if quest.expires_at is not None and quest.expires_at <= now:
        _close(quest, QUEST_EXPIRED, quest.expires_at, now)
        await db.flush()
        logger.info("Quest %s expired at %s", quest.id, quest.expires_at.isoformat())
        return Acceptance(ok=False, reason=Expired.code, quest=quest)

    count = await count_completions(db, quest.id)
    if quest.max_completions is not None and count >= quest.max_completions:
        return Acceptance(ok=False, reason=CapacityReached.code, quest=quest, completion_count=count)

    return Acceptance(ok=True, quest=quest, completion_count=count)


async def close_if_due(
    db: AsyncSession,
    quest: Quest,
    *,
    now: datetime | None = None,
    completion_count: int | None = None,
) -> bool:
    """Engine-side closure: expire past-due quests, complete full ones.

    Returns True when the status changed. Closed quests are left alone.
    """
    now = now or utcnow()
    if quest.status in CLOSED_STATUSES:
        return False

    if quest.expires_at is not None and quest.expires_at <= now:
        _close(quest, QUEST_EXPIRED, quest.expires_at, now)
        await db.flush()
        return True

    if quest.status == QUEST_ACTIVE and quest.max_completions is not None:
        if completion_count is None:
            completion_count = await count_completions(db, quest.id)
        if completion_count >= quest.max_completions:
            _close(quest, QUEST_COMPLETED, now, now)
            await db.flush()
            return True

    return False


async def close_due_quests(db: AsyncSession, *, now: datetime | None = None) -> list[str]:
    """Sweep: close every open quest that is past expiry or at capacity. Commits."""
    now = now or utcnow()

    counts = (
        select(Completion.quest_id, func.count().label("n"))
        .group_by(Completion.quest_id)
        .subquery()
    )
    result = await db.execute(
        select(Quest, counts.c.n)
        .outerjoin(counts, counts.c.quest_id == Quest.id)
        .where(Quest.status.in_([QUEST_ACTIVE, QUEST_PAUSED]))
        .where(
            ((Quest.expires_at.is_not(None)) & (Quest.expires_at <= now))
            | ((Quest.max_completions.is_not(None)) & (counts.c.n >= Quest.max_completions))
        )
        .order_by(Quest.id)
        .with_for_update(of=Quest, skip_locked=True)
    )

    closed: list[str] = []
    for quest, n in result.all():
        if await close_if_due(db, quest, now=now, completion_count=int(n or 0)):
            closed.append(quest.id)

    await db.commit()
    if closed:
        logger.info("Closed %d due quests", len(closed))
    return closed


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _parse_amount(value: Any, field: str) -> Decimal:  # noqa: ANN401
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationFailed(f"{field} must be a decimal amount") from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationFailed(f"{field} must be a non-negative amount")
    return amount


def validate_prize_pool(
    prize_pool_amount: Any,  # noqa: ANN401
    distribution_type: str | None,
    number_of_winners: int | None,
    winner_prizes: list[Any] | None,
) -> tuple[Decimal | None, list[str] | None]:
    """Check prize pool settings are consistent; return normalised amounts."""
    if prize_pool_amount is None:
        if distribution_type or number_of_winners or winner_prizes:
            raise ValidationFailed("Prize settings require a prize pool amount")
        return None, None

    amount = _parse_amount(prize_pool_amount, "prize_pool_amount")
    if distribution_type not in DISTRIBUTION_TYPES:
        raise ValidationFailed(f"distribution_type must be one of {list(DISTRIBUTION_TYPES)}")
    if number_of_winners is None or number_of_winners < 1:
        raise ValidationFailed("number_of_winners must be at least 1")
    if number_of_winners > get_settings().max_winners:
        raise ValidationFailed(f"number_of_winners cannot exceed {get_settings().max_winners}")

    if winner_prizes is None:
        return amount, None
    if len(winner_prizes) != number_of_winners:
        raise ValidationFailed("winner_prizes must have one entry per winner")
    prizes = [_parse_amount(p, "winner_prizes") for p in winner_prizes]
    if sum(prizes, Decimal(0)) != amount:
        raise ValidationFailed("winner_prizes must add up to prize_pool_amount")
    return amount, [str(p) for p in prizes]


def _validate_common(reward_points: int, max_completions: int | None) -> None:
    if reward_points <= 0:
        raise ValidationFailed("reward_points must be positive")
    if max_completions is not None and max_completions < 1:
        raise ValidationFailed("max_completions must be at least 1")


async def create_quest(
    db: AsyncSession,
    creator_id: str,
    *,
    title: str,
    reward_points: int,
    description: str | None = None,
    prize_pool_amount: Any = None,  # noqa: ANN401
    prize_token: str | None = None,
    distribution_type: str | None = None,
    number_of_winners: int | None = None,
    winner_prizes: list[Any] | None = None,
    max_completions: int | None = None,
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> Quest:
    """Create an ACTIVE quest owned by ``creator_id``. Commits."""
    now = now or utcnow()
    _validate_common(reward_points, max_completions)
    amount, prizes = validate_prize_pool(prize_pool_amount, distribution_type, number_of_winners, winner_prizes)

    quest = Quest(
        id=generate_quest_id(),
        title=title,
        description=description,
        creator_id=creator_id,
        reward_points=reward_points,
        prize_pool_amount=amount,
        prize_token=prize_token if amount is not None else None,
        distribution_type=distribution_type if amount is not None else None,
        number_of_winners=number_of_winners if amount is not None else None,
        winner_prizes=prizes,
        max_completions=max_completions,
        expires_at=as_utc(expires_at),
        status=QUEST_ACTIVE,
        created_at=now,
        updated_at=now,
    )
    db.add(quest)
    await db.commit()
    logger.info("Quest %s created by %s", quest.id, creator_id)
    return quest


def ensure_creator(quest: Quest, actor_id: str) -> None:
    if quest.creator_id != actor_id:
        raise NotQuestCreator()


async def update_quest(
    db: AsyncSession,
    quest_id: str,
    actor_id: str,
    changes: dict[str, Any],
    *,
    now: datetime | None = None,
) -> Quest:
    """Apply creator edits. Existing completions keep their snapshotted points."""
    now = now or utcnow()
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationFailed(f"Fields not editable: {sorted(unknown)}")

    quest = await get_quest(db, quest_id, for_update=True)
    ensure_creator(quest, actor_id)

    _validate_common(
        changes.get("reward_points", quest.reward_points),
        changes.get("max_completions", quest.max_completions),
    )
    if "expires_at" in changes:
        changes = {**changes, "expires_at": as_utc(changes["expires_at"])}
    for field, value in changes.items():
        setattr(quest, field, value)
    quest.updated_at = now

    await db.commit()
    return quest


async def delete_quest(db: AsyncSession, quest_id: str, actor_id: str) -> None:
    """Delete a quest with its completions and winner record.

    Points already awarded stay on the users' totals.
    """
    quest = await get_quest(db, quest_id, for_update=True)
    ensure_creator(quest, actor_id)

    await db.execute(delete(WinnerRecord).where(WinnerRecord.quest_id == quest_id))
    await db.execute(delete(Completion).where(Completion.quest_id == quest_id))
    await db.delete(quest)
    await db.commit()
    logger.info("Quest %s deleted by %s", quest_id, actor_id)


async def transition_status(
    db: AsyncSession,
    quest_id: str,
    actor_id: str,
    target_status: str,
    *,
    now: datetime | None = None,
) -> Quest:
    """Creator-driven status change (pause, resume, manual close)."""
    now = now or utcnow()
    quest = await get_quest(db, quest_id, for_update=True)
    ensure_creator(quest, actor_id)

    validate_transition(quest.status, target_status)
    if target_status in CLOSED_STATUSES:
        _close(quest, target_status, now, now)
    else:
        quest.status = target_status
        quest.updated_at = now

    await db.commit()
    logger.info("Quest %s moved to %s by %s", quest_id, target_status, actor_id)
    return quest
