"""Rewards REST API routes.

Routes:
    GET    /api/v1/rewards            Active rewards with the user's earned status
    GET    /api/v1/rewards/currency   The user's coin balance
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from quest_trust.api.deps import get_current_user_id, get_reward_evaluator
from quest_trust.schemas.rewards import CurrencyResponse, RewardStatusResponse
from quest_trust.services.reward_service import RewardEvaluator

router = APIRouter(prefix="/api/v1/rewards", tags=["Rewards"])


@router.get(
    "",
    response_model=list[RewardStatusResponse],
    summary="List rewards",
)
async def list_rewards(
    user_id: int = Depends(get_current_user_id),
    evaluator: RewardEvaluator = Depends(get_reward_evaluator),
) -> list[RewardStatusResponse]:
    statuses = await evaluator.list_rewards_with_status(user_id)
    return [
        RewardStatusResponse(
            id=status.reward.id,
            slug=status.reward.slug,
            title=status.reward.title,
            type=status.reward.type,
            value=status.reward.value,
            condition_type=status.reward.condition_type,
            earned=status.earned,
            earned_at=status.earned_at,
        )
        for status in statuses
    ]


@router.get(
    "/currency",
    response_model=CurrencyResponse,
    summary="Get coin balance",
)
async def get_currency(
    user_id: int = Depends(get_current_user_id),
    evaluator: RewardEvaluator = Depends(get_reward_evaluator),
) -> CurrencyResponse:
    return CurrencyResponse(coins=await evaluator.get_user_coins(user_id))
