"""Quest verification REST API route.

Routes:
    POST   /api/v1/quests/verify   Verify a claim and record progress/rewards
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from quest_trust.api.deps import get_current_user_id, get_verification_service
from quest_trust.logging_config import get_logger
from quest_trust.schemas.quests import RewardSummary, VerifyQuestRequest, VerifyQuestResponse
from quest_trust.services.verification_service import VerificationService

router = APIRouter(prefix="/api/v1/quests", tags=["Quests"])
logger = get_logger(__name__)


@router.post(
    "/verify",
    response_model=VerifyQuestResponse,
    response_model_exclude_none=True,
    summary="Verify quest completion",
    description=(
        "Runs the quest's configured verifier against the claim. A failed "
        "verification is returned as success=false with HTTP 200."
    ),
)
async def verify_quest(
    request: VerifyQuestRequest,
    user_id: int = Depends(get_current_user_id),
    service: VerificationService = Depends(get_verification_service),
) -> VerifyQuestResponse:
    outcome = await service.verify_claim(
        quest_slug=request.quest_slug,
        claim_data=request.data,
        user_id=user_id,
    )
    return VerifyQuestResponse(
        success=outcome.success,
        message=outcome.message,
        error=outcome.error,
        rewards=[
            RewardSummary(
                id=reward.id,
                slug=reward.slug,
                title=reward.title,
                type=reward.type,
                value=reward.value,
            )
            for reward in outcome.rewards
        ],
        data=outcome.data,
    )
