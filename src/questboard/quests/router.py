"""Quest API endpoints: CRUD, status changes, and completions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.auth.dependencies import CurrentUser, get_current_user
from questboard.database import get_session
from questboard.db.models import QUEST_STATUSES, Quest
from questboard.dependencies import page_limit
from questboard.errors import ValidationFailed
from questboard.quests.ledger import list_quest_completions, record_completion
from questboard.quests.registry import (
    completion_counts,
    count_completions,
    create_quest,
    delete_quest,
    get_quest,
    list_quests,
    transition_status,
    update_quest,
)
from questboard.quests.schemas import (
    CompleteQuestResponse,
    CompletionListResponse,
    CompletionResponse,
    QuestCreateRequest,
    QuestListResponse,
    QuestResponse,
    QuestUpdateRequest,
    StatusTransitionRequest,
)

router = APIRouter(prefix="/api/v1", tags=["Quests"])

# Fields a PATCH may explicitly clear with null.
_NULLABLE_FIELDS = frozenset({"description", "max_completions", "expires_at"})


def _quest_response(quest: Quest, completed_count: int) -> QuestResponse:
    return QuestResponse.model_validate(quest).model_copy(update={"completed_count": completed_count})


@router.post("/quests", response_model=QuestResponse, status_code=201)
async def create(
    body: QuestCreateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> QuestResponse:
    """Create a quest owned by the caller."""
    quest = await create_quest(
        db,
        user.user_id,
        title=body.title,
        description=body.description,
        reward_points=body.reward_points,
        prize_pool_amount=body.prize_pool_amount,
        prize_token=body.prize_token,
        distribution_type=body.distribution_type,
        number_of_winners=body.number_of_winners,
        winner_prizes=body.winner_prizes,
        max_completions=body.max_completions,
        expires_at=body.expires_at,
    )
    return _quest_response(quest, 0)


@router.get("/quests", response_model=QuestListResponse)
async def list_all(
    status: str | None = Query(None),
    creator_id: str | None = Query(None),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> QuestListResponse:
    if status is not None and status not in QUEST_STATUSES:
        raise ValidationFailed(f"Unknown status: {status}")
    limit = page_limit(limit)
    quests = await list_quests(db, status=status, creator_id=creator_id, limit=limit, offset=offset)
    counts = await completion_counts(db, [q.id for q in quests])
    return QuestListResponse(
        quests=[_quest_response(q, counts.get(q.id, 0)) for q in quests],
        limit=limit,
        offset=offset,
    )


@router.get("/quests/{quest_id}", response_model=QuestResponse)
async def get_one(quest_id: str, db: AsyncSession = Depends(get_session)) -> QuestResponse:
    quest = await get_quest(db, quest_id)
    return _quest_response(quest, await count_completions(db, quest_id))


@router.patch("/quests/{quest_id}", response_model=QuestResponse)
async def update(
    quest_id: str,
    body: QuestUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> QuestResponse:
    """Edit a quest. Creator only."""
    changes = {
        field: value
        for field, value in body.model_dump(exclude_unset=True).items()
        if value is not None or field in _NULLABLE_FIELDS
    }
    quest = await update_quest(db, quest_id, user.user_id, changes)
    return _quest_response(quest, await count_completions(db, quest_id))


@router.delete("/quests/{quest_id}", status_code=204)
async def delete(
    quest_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> None:
    """Delete a quest and its ledger. Creator only."""
    await delete_quest(db, quest_id, user.user_id)


@router.post("/quests/{quest_id}/status", response_model=QuestResponse)
async def change_status(
    quest_id: str,
    body: StatusTransitionRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> QuestResponse:
    """Pause, resume, or close a quest. Creator only."""
    quest = await transition_status(db, quest_id, user.user_id, body.status)
    return _quest_response(quest, await count_completions(db, quest_id))


@router.post("/quests/{quest_id}/complete", response_model=CompleteQuestResponse, status_code=201)
async def complete(
    quest_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> CompleteQuestResponse:
    """Record the caller's completion and award the quest's points."""
    outcome = await record_completion(db, quest_id, user.user_id)
    return CompleteQuestResponse(
        completion=CompletionResponse.model_validate(outcome.completion),
        total_points=outcome.user_xp.total_points,
        level=outcome.user_xp.level,
        quests_completed=outcome.user_xp.quests_completed,
        rank=outcome.rank.rank if outcome.rank else None,
    )


@router.get("/quests/{quest_id}/completions", response_model=CompletionListResponse)
async def completions(
    quest_id: str,
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> CompletionListResponse:
    """The quest's ledger, earliest completion first."""
    await get_quest(db, quest_id)
    limit = page_limit(limit)
    rows = await list_quest_completions(db, quest_id, limit=limit, offset=offset)
    return CompletionListResponse(
        completions=[CompletionResponse.model_validate(c) for c in rows],
        limit=limit,
        offset=offset,
    )
