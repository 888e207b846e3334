"""Integration tests for storage failures and concurrent writers.

Covers: the single retry of idempotent operations, rollback of a completion
whose points update fails, the lost winner-record insert, and concurrent
completion attempts on separate connections.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from conftest import at
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from questboard.config import get_settings
from questboard.db.base import Base
from questboard.db.models import Completion, UserXP, WinnerRecord
from questboard.errors import AlreadyCompleted, CapacityReached, QuestNotFound, StorageError
from questboard.gamification import xp_service
from questboard.gamification.xp_service import get_user_xp
from questboard.prizes import winner_engine
from questboard.prizes.winner_engine import compute_winners
from questboard.quests.ledger import record_completion
from questboard.quests.registry import Acceptance, create_quest
from questboard.storage import retry_idempotent

pytestmark = pytest.mark.asyncio


def _operational_error(message: str = "server closed the connection unexpectedly") -> OperationalError:
    return OperationalError("UPDATE quests", {}, Exception(message))


async def _count(db: AsyncSession, model, *where) -> int:  # noqa: ANN001
    result = await db.execute(select(func.count()).select_from(model).where(*where))
    return int(result.scalar_one())


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr(get_settings(), "storage_retry_backoff_seconds", 0.0)


@pytest_asyncio.fixture
async def file_sessions(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """File-backed database where every session opens its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'questboard.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


class TestRetryIdempotent:

    async def test_transient_failure_is_retried_once(self, db_session, no_backoff):
        calls: list[int] = []

        async def flaky(db, value):
            calls.append(value)
            if len(calls) == 1:
                raise _operational_error()
            return value * 2

        assert await retry_idempotent(db_session, flaky, 21) == 42
        assert calls == [21, 21]

    async def test_persistent_failure_becomes_storage_error(self, db_session, no_backoff):
        calls: list[str] = []

        async def broken(db):
            calls.append("call")
            raise _operational_error("could not connect to server")

        with pytest.raises(StorageError):
            await retry_idempotent(db_session, broken)
        assert len(calls) == 2

    async def test_constraint_violation_is_not_retried(self, db_session, no_backoff):
        calls: list[str] = []

        async def conflicting(db):
            calls.append("call")
            raise IntegrityError("INSERT INTO winner_records", {}, Exception("duplicate key"))

        with pytest.raises(IntegrityError):
            await retry_idempotent(db_session, conflicting)
        assert calls == ["call"]


class TestCompletionRollback:

    async def test_failed_points_update_drops_the_completion(self, db_session, make_quest):
        earlier = await make_quest(reward_points=30)
        quest = await make_quest(reward_points=70)
        earlier_id, quest_id = earlier.id, quest.id
        await record_completion(db_session, earlier_id, "alice", now=at(10))

        real_apply = xp_service.apply_completion

        async def apply_then_fail(db, *args, **kwargs):
            await real_apply(db, *args, **kwargs)
            raise _operational_error("deadlock detected")

        with patch("questboard.quests.ledger.apply_completion", new=apply_then_fail):
            with pytest.raises(StorageError):
                await record_completion(db_session, quest_id, "alice", now=at(20))

        assert await _count(db_session, Completion, Completion.quest_id == quest_id) == 0
        xp = await get_user_xp(db_session, "alice")
        assert xp.total_points == 30
        assert xp.quests_completed == 1

        # nothing was consumed: the same attempt succeeds afterwards
        outcome = await record_completion(db_session, quest_id, "alice", now=at(30))
        assert outcome.user_xp.total_points == 100

    async def test_failed_first_points_update_leaves_no_row(self, db_session, make_quest):
        quest = await make_quest(max_completions=1)
        quest_id = quest.id

        failing = AsyncMock(side_effect=_operational_error())
        with patch("questboard.quests.ledger.apply_completion", new=failing):
            with pytest.raises(StorageError):
                await record_completion(db_session, quest_id, "bob", now=at(10))

        assert await _count(db_session, Completion, Completion.quest_id == quest_id) == 0
        assert await _count(db_session, UserXP, UserXP.user_id == "bob") == 0

    async def test_acceptance_without_quest_is_not_found(self, db_session):
        with patch("questboard.quests.ledger.can_accept", new=AsyncMock(return_value=Acceptance(ok=True))):
            with pytest.raises(QuestNotFound):
                await record_completion(db_session, "quest_gone", "alice", now=at(10))


class TestLostWinnerInsert:

    async def _closed_prize_quest(self, db_session, make_quest) -> str:
        quest = await make_quest(
            expires_at=at(60),
            prize_pool_amount=Decimal("50"),
            prize_token="USDC",
            distribution_type="fcfs",
            number_of_winners=1,
        )
        quest_id = quest.id
        await record_completion(db_session, quest_id, "alice", now=at(10))
        await record_completion(db_session, quest_id, "bob", now=at(20))
        return quest_id

    async def test_returns_the_record_written_first(self, db_session, make_quest):
        quest_id = await self._closed_prize_quest(db_session, make_quest)
        first = await compute_winners(db_session, quest_id, now=at(120))
        first_id, first_winners = first.id, list(first.winner_user_ids)

        real_get = winner_engine.get_winner_record
        lookups: list[str] = []

        async def miss_first_lookup(db, qid, **kwargs):
            lookups.append(qid)
            if len(lookups) == 1:
                return None
            return await real_get(db, qid, **kwargs)

        with patch("questboard.prizes.winner_engine.get_winner_record", new=miss_first_lookup):
            again = await compute_winners(db_session, quest_id, now=at(130))

        assert len(lookups) == 2
        assert again.id == first_id
        assert again.winner_user_ids == first_winners
        assert await _count(db_session, WinnerRecord, WinnerRecord.quest_id == quest_id) == 1

    async def test_unexplained_conflict_is_a_storage_error(self, db_session, make_quest):
        quest_id = await self._closed_prize_quest(db_session, make_quest)
        await compute_winners(db_session, quest_id, now=at(120))

        with patch("questboard.prizes.winner_engine.get_winner_record", new=AsyncMock(return_value=None)):
            with pytest.raises(StorageError):
                await compute_winners(db_session, quest_id, now=at(130))


class TestConcurrentCompletions:

    async def _quest(self, sessions, **kwargs) -> str:
        async with sessions() as db:
            quest = await create_quest(db, "creator", title="Mint the badge", reward_points=100, now=at(0), **kwargs)
            return quest.id

    async def _attempt(self, sessions, quest_id: str, user_id: str):
        async with sessions() as db:
            try:
                return await record_completion(db, quest_id, user_id, now=at(10))
            except (CapacityReached, AlreadyCompleted) as exc:
                return exc

    async def test_last_slot_goes_to_exactly_one_user(self, file_sessions):
        quest_id = await self._quest(file_sessions, max_completions=1)

        results = await asyncio.gather(
            self._attempt(file_sessions, quest_id, "alice"),
            self._attempt(file_sessions, quest_id, "bob"),
        )

        rejected = [r for r in results if isinstance(r, CapacityReached)]
        accepted = [r for r in results if not isinstance(r, Exception)]
        assert len(accepted) == 1
        assert len(rejected) == 1

        winner = accepted[0].completion.user_id
        loser = "bob" if winner == "alice" else "alice"
        async with file_sessions() as db:
            assert await _count(db, Completion, Completion.quest_id == quest_id) == 1
            assert await get_user_xp(db, loser) is None
            assert (await get_user_xp(db, winner)).total_points == 100

    async def test_same_user_twice_at_once(self, file_sessions):
        quest_id = await self._quest(file_sessions)

        results = await asyncio.gather(
            self._attempt(file_sessions, quest_id, "alice"),
            self._attempt(file_sessions, quest_id, "alice"),
        )

        assert sum(isinstance(r, AlreadyCompleted) for r in results) == 1
        async with file_sessions() as db:
            assert await _count(db, Completion, Completion.quest_id == quest_id) == 1
            xp = await get_user_xp(db, "alice")
            assert xp.total_points == 100
            assert xp.quests_completed == 1
