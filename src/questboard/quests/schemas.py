"""Pydantic request/response models for quest and completion endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# --- Requests ---


class QuestCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    reward_points: int = Field(gt=0)
    max_completions: int | None = Field(default=None, gt=0)
    expires_at: datetime | None = None

    # Prize pool
    prize_pool_amount: Decimal | None = Field(default=None, ge=0)
    prize_token: str | None = Field(default=None, max_length=64)
    distribution_type: Literal["fcfs", "raffle"] | None = None
    number_of_winners: int | None = Field(default=None, gt=0)
    winner_prizes: list[Decimal] | None = None


class QuestUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    reward_points: int | None = Field(default=None, gt=0)
    max_completions: int | None = Field(default=None, gt=0)
    expires_at: datetime | None = None


class StatusTransitionRequest(BaseModel):
    status: Literal["active", "paused", "completed", "expired"]


# --- Responses ---


class QuestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str | None
    creator_id: str
    reward_points: int
    prize_pool_amount: Decimal | None
    prize_token: str | None
    distribution_type: str | None
    number_of_winners: int | None
    winner_prizes: list[str] | None
    max_completions: int | None
    expires_at: datetime | None
    status: str
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    completed_count: int = 0


class QuestListResponse(BaseModel):
    quests: list[QuestResponse]
    limit: int
    offset: int


class CompletionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quest_id: str
    user_id: str
    points_awarded: int
    completed_at: datetime


class CompletionListResponse(BaseModel):
    completions: list[CompletionResponse]
    limit: int
    offset: int = 0


class CompleteQuestResponse(BaseModel):
    completion: CompletionResponse
    total_points: int
    level: int
    quests_completed: int
    rank: int | None
