"""Pydantic response models for points and leaderboard endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class UserXPResponse(BaseModel):
    user_id: str
    total_points: int
    quests_completed: int
    level: int
    points_into_level: int
    points_for_level: int
    next_level_at: int
    updated_at: datetime | None


class UserRankResponse(BaseModel):
    user_id: str
    rank: int | None
    total_points: int
    total_ranked: int


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    total_points: int
    level: int
    quests_completed: int
    updated_at: datetime
    rank_change: int = 0


class LeaderboardPageResponse(BaseModel):
    entries: list[LeaderboardEntryResponse]
    total: int
    limit: int
    offset: int
