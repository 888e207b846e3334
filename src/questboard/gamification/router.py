"""Points, rank, and leaderboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.database import get_session
from questboard.dependencies import page_limit
from questboard.gamification.leaderboard_service import count_ranked, get_page, refresh_rank
from questboard.gamification.levels import compute_level
from questboard.gamification.schemas import (
    LeaderboardEntryResponse,
    LeaderboardPageResponse,
    UserRankResponse,
    UserXPResponse,
)
from questboard.gamification.xp_service import get_user_xp, zero_state
from questboard.quests.ledger import list_user_completions
from questboard.quests.schemas import CompletionListResponse, CompletionResponse

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


@router.get("/leaderboard", response_model=LeaderboardPageResponse)
async def leaderboard(
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> LeaderboardPageResponse:
    """Ranked users, highest points first."""
    limit = page_limit(limit)
    page = await get_page(db, limit=limit, offset=offset)
    return LeaderboardPageResponse(
        entries=[
            LeaderboardEntryResponse(
                rank=r.rank,
                user_id=r.user_id,
                total_points=r.total_points,
                level=r.level,
                quests_completed=r.quests_completed,
                updated_at=r.updated_at,
                rank_change=r.rank_change,
            )
            for r in page
        ],
        total=await count_ranked(db),
        limit=limit,
        offset=offset,
    )


@router.get("/users/{user_id}/xp", response_model=UserXPResponse)
async def user_xp(user_id: str, db: AsyncSession = Depends(get_session)) -> UserXPResponse:
    """Points and level. Users without completions get the zero state."""
    xp = await get_user_xp(db, user_id) or zero_state(user_id)
    progress = compute_level(xp.total_points)
    return UserXPResponse(
        user_id=user_id,
        total_points=xp.total_points,
        quests_completed=xp.quests_completed,
        level=xp.level,
        points_into_level=progress["points_into_level"],
        points_for_level=progress["points_for_level"],
        next_level_at=progress["next_level_at"],
        updated_at=xp.updated_at,
    )


@router.get("/users/{user_id}/rank", response_model=UserRankResponse)
async def user_rank(user_id: str, db: AsyncSession = Depends(get_session)) -> UserRankResponse:
    ranked = await refresh_rank(db, user_id)
    return UserRankResponse(
        user_id=user_id,
        rank=ranked.rank if ranked else None,
        total_points=ranked.total_points if ranked else 0,
        total_ranked=await count_ranked(db),
    )


@router.get("/users/{user_id}/completions", response_model=CompletionListResponse)
async def user_completions(
    user_id: str,
    limit: int | None = Query(None, ge=1),
    db: AsyncSession = Depends(get_session),
) -> CompletionListResponse:
    """A user's completions, newest first."""
    limit = page_limit(limit)
    rows = await list_user_completions(db, user_id, limit=limit)
    return CompletionListResponse(
        completions=[CompletionResponse.model_validate(c) for c in rows],
        limit=limit,
    )
