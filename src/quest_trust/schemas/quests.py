"""Pydantic schemas for quest verification.

The request never carries the verification type. Unknown fields in the
body (including ``verificationType``) are ignored.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from quest_trust.schemas.base import CamelModel


class VerifyQuestRequest(CamelModel):
    """Request body for claiming a quest."""

    quest_slug: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Slug of the quest being claimed",
        examples=["connect-stripe"],
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description=(
            "Claim data for the quest's verifier, e.g. "
            '{"confirmed": true}, {"apiKey": "sk_test_..."} or '
            '{"webhookUrl": "https://example.com/hook"}'
        ),
    )


class RewardSummary(CamelModel):
    """A reward granted by this verification."""

    id: int
    slug: str
    title: dict[str, Any]
    type: str
    value: int


class VerifyQuestResponse(CamelModel):
    """Outcome of a claim. Verification failures are success=false, not HTTP errors."""

    success: bool
    message: str
    error: str | None = None
    rewards: list[RewardSummary] = Field(default_factory=list)
    data: dict[str, Any] | None = Field(
        default=None,
        description="Signed data returned by the user's server (server_status quests)",
    )
