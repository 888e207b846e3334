"""Integration tests for the scheduled sweep and leaderboard refresh jobs."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from conftest import at

from questboard.database import get_session_factory
from questboard.db.models import QUEST_ACTIVE, QUEST_COMPLETED, QUEST_EXPIRED, QUEST_PAUSED
from questboard.errors import StorageError
from questboard.gamification.leaderboard_service import get_snapshot
from questboard.gamification.xp_service import apply_completion
from questboard.prizes.winner_engine import get_winner_record
from questboard.quests.ledger import record_completion
from questboard.quests.registry import close_due_quests, get_quest, transition_status
from questboard.workers.quest_worker import refresh_leaderboard, sweep_quests

pytestmark = pytest.mark.asyncio


class TestCloseDueQuests:

    async def test_closes_expired_and_full_quests(self, db_session, make_quest):
        expired = await make_quest(expires_at=at(60))
        full = await make_quest(max_completions=1)
        open_ = await make_quest(expires_at=at(6000), max_completions=5)
        paused = await make_quest(expires_at=at(60))
        expired_id, full_id, open_id, paused_id = expired.id, full.id, open_.id, paused.id

        await record_completion(db_session, full_id, "alice", now=at(10))
        await transition_status(db_session, paused_id, "creator", "paused", now=at(20))

        closed = await close_due_quests(db_session, now=at(120))
        assert sorted(closed) == sorted([expired_id, full_id, paused_id])

        statuses = {}
        for quest_id in (expired_id, full_id, open_id, paused_id):
            quest = await get_quest(db_session, quest_id, for_update=True)
            statuses[quest_id] = (quest.status, quest.closed_at)

        assert statuses[expired_id] == (QUEST_EXPIRED, at(60))
        assert statuses[full_id] == (QUEST_COMPLETED, at(120))
        assert statuses[open_id] == (QUEST_ACTIVE, None)
        assert statuses[paused_id] == (QUEST_EXPIRED, at(60))

    async def test_paused_quest_at_capacity_stays_paused(self, db_session, make_quest):
        quest = await make_quest(max_completions=1)
        quest_id = quest.id
        await record_completion(db_session, quest_id, "alice", now=at(10))
        await transition_status(db_session, quest_id, "creator", "paused", now=at(20))

        assert await close_due_quests(db_session, now=at(30)) == []
        stored = await get_quest(db_session, quest_id, for_update=True)
        assert stored.status == QUEST_PAUSED

    async def test_nothing_due(self, db_session, make_quest):
        await make_quest()
        assert await close_due_quests(db_session, now=at(10)) == []


class TestSweepJob:

    async def test_sweep_settles_closed_prize_quests(self, db_session, make_quest):
        quest = await make_quest(
            expires_at=at(60),
            prize_pool_amount=Decimal("10"),
            distribution_type="fcfs",
            number_of_winners=1,
        )
        quest_id = quest.id
        await record_completion(db_session, quest_id, "alice", now=at(10))
        await record_completion(db_session, quest_id, "bob", now=at(20))

        ctx = {"session_factory": get_session_factory()}
        with patch("questboard.quests.registry.utcnow", return_value=at(120)), \
                patch("questboard.prizes.winner_engine.utcnow", return_value=at(120)):
            result = await sweep_quests(ctx)

        assert result == {"closed": 1, "settled": 1, "failed": 0}
        record = await get_winner_record(db_session, quest_id)
        assert record is not None
        assert record.winner_user_ids == ["alice"]

    async def test_sweep_is_repeatable(self, db_session, make_quest):
        quest = await make_quest(
            expires_at=at(60),
            prize_pool_amount=Decimal("10"),
            distribution_type="raffle",
            number_of_winners=1,
        )
        quest_id = quest.id
        await record_completion(db_session, quest_id, "alice", now=at(10))

        ctx = {"session_factory": get_session_factory()}
        with patch("questboard.quests.registry.utcnow", return_value=at(120)), \
                patch("questboard.prizes.winner_engine.utcnow", return_value=at(120)):
            await sweep_quests(ctx)
            second = await sweep_quests(ctx)

        assert second == {"closed": 0, "settled": 0, "failed": 0}

    async def test_failed_settlement_is_left_for_the_next_sweep(self, db_session, make_quest):
        quest = await make_quest(
            expires_at=at(60),
            prize_pool_amount=Decimal("10"),
            distribution_type="fcfs",
            number_of_winners=1,
        )
        quest_id = quest.id
        await record_completion(db_session, quest_id, "alice", now=at(10))

        ctx = {"session_factory": get_session_factory()}
        with patch("questboard.quests.registry.utcnow", return_value=at(120)), \
                patch("questboard.prizes.winner_engine.utcnow", return_value=at(120)):
            with patch("questboard.workers.quest_worker.compute_winners", new=AsyncMock(side_effect=StorageError())):
                failed = await sweep_quests(ctx)
            recovered = await sweep_quests(ctx)

        assert failed == {"closed": 1, "settled": 0, "failed": 1}
        assert recovered == {"closed": 0, "settled": 1, "failed": 0}
        assert await get_winner_record(db_session, quest_id) is not None


class TestRefreshLeaderboardJob:

    async def test_rebuilds_snapshot(self, db_session):
        await apply_completion(db_session, "alice", 300, now=at(1))
        await apply_completion(db_session, "bob", 500, now=at(2))
        await db_session.commit()

        count = await refresh_leaderboard({"session_factory": get_session_factory()})

        assert count == 2
        snapshot = await get_snapshot(db_session)
        assert [e.user_id for e in snapshot] == ["bob", "alice"]
