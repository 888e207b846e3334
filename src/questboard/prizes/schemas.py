"""Pydantic models for winner and distribution endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class DistributeRequest(BaseModel):
    proof: str = Field(min_length=1, max_length=256)


class WinnerEntryResponse(BaseModel):
    position: int
    user_id: str
    completion_id: int
    completed_at: datetime
    prize: str | None = None


class WinnerRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    quest_id: str
    distribution_type: str | None
    winners: list[WinnerEntryResponse]
    prize_per_winner: Decimal | None
    prize_token: str | None
    seed: str | None
    total_completions: int
    computed_at: datetime
    distributed: bool
    distribution_proof: str | None
    distributed_at: datetime | None
