"""Winner computation and prize distribution endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.auth.dependencies import CurrentUser, get_current_user
from questboard.database import get_session
from questboard.prizes.distribution import mark_distributed, require_winner_record
from questboard.prizes.schemas import DistributeRequest, WinnerRecordResponse
from questboard.prizes.winner_engine import compute_winners
from questboard.quests.registry import ensure_creator, get_quest
from questboard.storage import retry_idempotent

router = APIRouter(prefix="/api/v1", tags=["Prizes"])


@router.post("/quests/{quest_id}/winners", response_model=WinnerRecordResponse)
async def compute(
    quest_id: str,
    _user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> WinnerRecordResponse:
    """Compute (or return the already computed) winners of a closed quest."""
    record = await retry_idempotent(db, compute_winners, quest_id)
    return WinnerRecordResponse.model_validate(record)


@router.get("/quests/{quest_id}/winners", response_model=WinnerRecordResponse)
async def get_winners(quest_id: str, db: AsyncSession = Depends(get_session)) -> WinnerRecordResponse:
    await get_quest(db, quest_id)
    record = await require_winner_record(db, quest_id)
    return WinnerRecordResponse.model_validate(record)


@router.post("/quests/{quest_id}/winners/distribute", response_model=WinnerRecordResponse)
async def distribute(
    quest_id: str,
    body: DistributeRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> WinnerRecordResponse:
    """Record that the prizes were paid out. Creator only; repeats are no-ops."""
    quest = await get_quest(db, quest_id)
    ensure_creator(quest, user.user_id)
    record = await retry_idempotent(db, mark_distributed, quest_id, body.proof)
    return WinnerRecordResponse.model_validate(record)
