"""Points and level bookkeeping driven by the completion ledger."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.config import get_settings
from questboard.db.models import UserXP
from questboard.db.types import utcnow
from questboard.gamification.levels import level_for_points

logger = logging.getLogger(__name__)


def _insert_for(db: AsyncSession):  # noqa: ANN202
    """Dialect insert construct supporting ON CONFLICT."""
    return pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert


async def apply_completion(
    db: AsyncSession,
    user_id: str,
    points_awarded: int,
    *,
    now: datetime | None = None,
) -> UserXP:
    """Add a completion's points to the user's row, creating it on first use.

    Runs inside the caller's transaction (the ledger insert), so the points
    and the completion commit or roll back together. The increment is a
    single upsert, so completions of different quests by the same user can
    run concurrently without losing updates.
    """
    now = now or utcnow()
    step = get_settings().level_step_points
    insert = _insert_for(db)

    stmt = insert(UserXP).values(
        user_id=user_id,
        total_points=points_awarded,
        quests_completed=1,
        level=level_for_points(points_awarded, step),
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[UserXP.user_id],
        set_={
            "total_points": UserXP.total_points + stmt.excluded.total_points,
            "quests_completed": UserXP.quests_completed + 1,
            "level": (UserXP.total_points + stmt.excluded.total_points) // step + 1,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)

    xp = await get_user_xp(db, user_id)
    if xp is None:  # pragma: no cover - the upsert just wrote it
        raise RuntimeError(f"user_xp row missing for {user_id} after upsert")
    logger.debug("User %s now has %d points (level %d)", user_id, xp.total_points, xp.level)
    return xp


async def get_user_xp(db: AsyncSession, user_id: str) -> UserXP | None:
    """Fresh read of the user's row (bypasses stale identity-map state)."""
    result = await db.execute(
        select(UserXP)
        .where(UserXP.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def zero_state(user_id: str) -> UserXP:
    """Default state for a user with no completions (not persisted)."""
    return UserXP(
        user_id=user_id,
        total_points=0,
        quests_completed=0,
        level=1,
        updated_at=None,
    )
