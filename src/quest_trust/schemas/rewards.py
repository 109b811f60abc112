"""Pydantic schemas for rewards and coin balance."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from quest_trust.schemas.base import CamelModel


class RewardStatusResponse(CamelModel):
    id: int
    slug: str
    title: dict[str, Any]
    type: str
    value: int
    condition_type: str
    earned: bool
    earned_at: datetime | None = None


class CurrencyResponse(CamelModel):
    coins: int = 0
