"""Verification Service: orchestrates the verify-then-record pipeline.

Coordinates between:
    - QuestRepository (load the quest and its stored verification type)
    - VerifierFactory (dispatch to the correct verifier)
    - ProgressRecorder (prerequisite check and progress upsert)
    - RewardEvaluator (grant newly earned rewards)

All writes go through the request's session, so progress and rewards
commit together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from quest_trust.domain.enums import VerificationType
from quest_trust.domain.exceptions import (
    PrerequisiteNotMetError,
    QuestNotFoundError,
    VerificationConfigError,
)
from quest_trust.domain.verifier_protocol import VerificationClaim
from quest_trust.infrastructure.database.repositories import QuestRepository
from quest_trust.logging_config import get_logger
from quest_trust.services.progress_recorder import ProgressRecorder
from quest_trust.services.reward_service import RewardEvaluator

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from quest_trust.infrastructure.database.orm_models import Reward
    from quest_trust.verifiers import VerifierFactory

logger = get_logger(__name__)


@dataclass(frozen=True)
class QuestVerificationOutcome:
    """What the caller gets back for one claim."""

    success: bool
    message: str
    error: str | None = None
    rewards: list[Reward] = field(default_factory=list)
    data: dict[str, Any] | None = None


class VerificationService:
    """Runs the verifier for a quest and records a successful claim."""

    def __init__(self, session: AsyncSession, verifier_factory: VerifierFactory) -> None:
        self._quest_repo = QuestRepository(session)
        self._factory = verifier_factory
        self._progress_recorder = ProgressRecorder(session)
        self._reward_evaluator = RewardEvaluator(session)

    async def verify_claim(
        self,
        quest_slug: str,
        claim_data: dict[str, Any],
        user_id: int,
    ) -> QuestVerificationOutcome:
        """Verify a user's claim to have completed ``quest_slug``.

        Raises:
            QuestNotFoundError: Unknown slug.
            VerificationConfigError: The quest's stored setup is unusable.
        """
        # Step 1: Load quest
        quest = await self._quest_repo.get_by_slug(quest_slug)
        if quest is None:
            raise QuestNotFoundError(quest_slug)

        # Step 2: Verification type comes from the quest record only
        try:
            verification_type = VerificationType(quest.verification_type)
        except ValueError as err:
            logger.error(
                "verification.unknown_type",
                quest_id=quest.id,
                verification_type=quest.verification_type,
            )
            raise VerificationConfigError(
                f"Unknown verification type '{quest.verification_type}'"
            ) from err

        # Step 3: Dispatch to verifier
        logger.info(
            "verification.dispatching",
            user_id=user_id,
            quest_id=quest.id,
            verification_type=verification_type.value,
        )
        verifier = self._factory.create(verification_type)
        claim = VerificationClaim(
            user_id=user_id,
            quest_slug=quest.slug,
            payload=claim_data,
            verification_config=quest.verification_config or {},
        )
        result = await verifier.verify(claim)

        if not result.is_valid:
            logger.info(
                "verification.failed",
                user_id=user_id,
                quest_id=quest.id,
                error=result.error,
            )
            return QuestVerificationOutcome(
                success=False,
                message=result.message,
                error=result.error,
                data=result.data,
            )

        # Step 4: Record progress and grant rewards
        try:
            await self._progress_recorder.record_completion(
                user_id=user_id,
                quest=quest,
                data=claim_data,
                verification_type=verification_type.value,
            )
        except PrerequisiteNotMetError as exc:
            return QuestVerificationOutcome(
                success=False,
                message=exc.message,
                error=exc.code,
                data=result.data,
            )

        rewards = await self._reward_evaluator.evaluate_and_grant(user_id)

        logger.info(
            "verification.passed",
            user_id=user_id,
            quest_id=quest.id,
            rewards_granted=len(rewards),
        )
        return QuestVerificationOutcome(
            success=True,
            message=result.message,
            rewards=rewards,
            data=result.data,
        )
