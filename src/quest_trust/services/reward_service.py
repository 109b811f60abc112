"""Reward Evaluator: grants rewards whose conditions the user now meets.

Runs right after a progress write, in the same session, so progress and
grants commit together. Granting relies on the (user_id, reward_id) unique
constraint: a reward counts as newly granted only when this call inserted
its row, and only then are coins credited.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from quest_trust.domain.enums import RewardType
from quest_trust.domain.reward_conditions import (
    BookCondition,
    ChapterCondition,
    RewardCondition,
    is_satisfied,
    parse_condition,
)
from quest_trust.infrastructure.database.repositories import (
    ProgressRepository,
    QuestRepository,
    RewardRepository,
)
from quest_trust.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from quest_trust.infrastructure.database.orm_models import Reward

logger = get_logger(__name__)


@dataclass(frozen=True)
class RewardStatus:
    reward: Reward
    earned: bool
    earned_at: datetime | None = None


class RewardEvaluator:
    """Evaluates reward conditions against a user's completed quests."""

    def __init__(self, session: AsyncSession) -> None:
        self._reward_repo = RewardRepository(session)
        self._progress_repo = ProgressRepository(session)
        self._quest_repo = QuestRepository(session)

    async def _required_quest_ids(
        self,
        condition: RewardCondition,
        cache: dict[tuple[str, int], list[int]],
    ) -> list[int]:
        match condition:
            case ChapterCondition(chapter_id=chapter_id):
                cache_key = ("chapter", chapter_id)
                if cache_key not in cache:
                    cache[cache_key] = await self._quest_repo.get_quest_ids_by_chapter(chapter_id)
                return cache[cache_key]
            case BookCondition(book_id=book_id):
                cache_key = ("book", book_id)
                if cache_key not in cache:
                    cache[cache_key] = await self._quest_repo.get_quest_ids_by_book(book_id)
                return cache[cache_key]
            case _:
                return []

    async def evaluate_and_grant(self, user_id: int, now: datetime | None = None) -> list[Reward]:
        """Grant every active, not-yet-earned reward the user now qualifies for.

        Returns only the rewards this call actually granted.
        """
        earned_at = now or datetime.now(UTC)
        rewards = await self._reward_repo.list_active()
        completed = await self._progress_repo.get_completed_quest_ids(user_id)
        already_earned = await self._reward_repo.get_earned(user_id)
        quest_sets: dict[tuple[str, int], list[int]] = {}

        granted: list[Reward] = []
        for reward in rewards:
            if reward.id in already_earned:
                continue

            try:
                condition = parse_condition(reward.condition_config or {})
            except ValueError:
                logger.warning("reward.invalid_condition", reward_id=reward.id)
                continue

            required = await self._required_quest_ids(condition, quest_sets)
            if not is_satisfied(condition, completed, required):
                continue

            if not await self._reward_repo.grant(user_id, reward.id, earned_at):
                # Another request granted it first.
                continue

            if reward.type == RewardType.COIN and reward.value > 0:
                await self._reward_repo.add_coins(user_id, reward.value)

            logger.info(
                "reward.granted",
                user_id=user_id,
                reward_id=reward.id,
                reward_type=reward.type,
            )
            granted.append(reward)

        return granted

    async def get_user_coins(self, user_id: int) -> int:
        return await self._reward_repo.get_coins(user_id)

    async def list_rewards_with_status(self, user_id: int) -> list[RewardStatus]:
        rewards = await self._reward_repo.list_active()
        earned = await self._reward_repo.get_earned(user_id)
        return [
            RewardStatus(
                reward=reward,
                earned=reward.id in earned,
                earned_at=earned.get(reward.id),
            )
            for reward in rewards
        ]
