"""arq worker for quest settlement.

Two periodic jobs:

* ``sweep_quests`` closes quests that expired or filled up, then computes
  winners for every closed prize quest that still lacks a record. A failure
  on one quest is logged and the sweep moves on.
* ``refresh_leaderboard`` rebuilds the leaderboard snapshot table.

Run with: arq questboard.workers.quest_worker.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from questboard.config import get_settings
from questboard.database import close_db, get_session_factory, init_db
from questboard.errors import QuestEngineError
from questboard.gamification.leaderboard_service import rebuild_leaderboard
from questboard.prizes.winner_engine import compute_winners, pending_settlements
from questboard.quests.registry import close_due_quests
from questboard.storage import retry_idempotent

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open the database engine for the worker process."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["session_factory"] = get_session_factory()
    logger.info("Quest worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Quest worker shut down")


async def sweep_quests(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Close due quests and settle winners for closed prize quests."""
    session_factory = ctx["session_factory"]

    async with session_factory() as db:
        closed = await close_due_quests(db)

    settled = 0
    failed = 0
    async with session_factory() as db:
        pending = await pending_settlements(db)

    for quest_id in pending:
        async with session_factory() as db:
            try:
                await retry_idempotent(db, compute_winners, quest_id)
                settled += 1
            except QuestEngineError as exc:
                failed += 1
                if exc.retryable:
                    logger.warning("Winner computation for %s failed, next sweep retries: %s", quest_id, exc.message)
                else:
                    logger.error("Winner computation for %s failed: %s (%s)", quest_id, exc.message, exc.code)

    if closed or pending:
        logger.info("Sweep: %d closed, %d settled, %d failed", len(closed), settled, failed)
    return {"closed": len(closed), "settled": settled, "failed": failed}


async def refresh_leaderboard(ctx: dict) -> int:  # type: ignore[type-arg]
    """Rebuild the leaderboard snapshot."""
    async with ctx["session_factory"]() as db:
        return await retry_idempotent(db, rebuild_leaderboard)


def _every(minutes: int) -> set[int]:
    return set(range(0, 60, max(minutes, 1)))


class WorkerSettings:
    """arq worker settings for quest settlement."""

    _settings = get_settings()

    functions = [sweep_quests, refresh_leaderboard]
    cron_jobs = [
        cron(sweep_quests, minute=_every(_settings.sweep_interval_minutes), run_at_startup=True),
        cron(refresh_leaderboard, minute=_every(_settings.leaderboard_snapshot_interval_minutes)),
    ]
    redis_settings = RedisSettings.from_dsn(_settings.redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 4
    job_timeout = _settings.worker_job_timeout_seconds
