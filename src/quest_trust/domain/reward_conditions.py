"""Reward conditions: a tagged union stored in rewards.condition_config.

    {"type": "quest",   "questId": 3}
    {"type": "chapter", "chapterId": 1}
    {"type": "book",    "bookId": 1}
    {"type": "custom",  "questIds": [3, 4], "requireAll": true}

Chapter and book conditions need the quest ids belonging to that chapter or
book; the caller resolves them and passes them in as ``required_quest_ids``.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from typing import Any, assert_never

from quest_trust.domain.enums import RewardConditionType


@dataclass(frozen=True)
class QuestCondition:
    quest_id: int


@dataclass(frozen=True)
class ChapterCondition:
    chapter_id: int


@dataclass(frozen=True)
class BookCondition:
    book_id: int


@dataclass(frozen=True)
class CustomCondition:
    quest_ids: tuple[int, ...]
    require_all: bool


RewardCondition = QuestCondition | ChapterCondition | BookCondition | CustomCondition


def _int_field(config: dict[str, Any], key: str) -> int:
    value = config.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Reward condition field '{key}' must be an integer")
    return value


def parse_condition(config: dict[str, Any]) -> RewardCondition:
    """Build a RewardCondition from its stored JSON.

    Raises:
        ValueError: If the type is unknown or a field is missing/mistyped.
    """
    try:
        condition_type = RewardConditionType(config.get("type"))
    except ValueError as err:
        raise ValueError(f"Unknown reward condition type: {config.get('type')!r}") from err

    match condition_type:
        case RewardConditionType.QUEST:
            return QuestCondition(quest_id=_int_field(config, "questId"))
        case RewardConditionType.CHAPTER:
            return ChapterCondition(chapter_id=_int_field(config, "chapterId"))
        case RewardConditionType.BOOK:
            return BookCondition(book_id=_int_field(config, "bookId"))
        case RewardConditionType.CUSTOM:
            quest_ids = config.get("questIds")
            if not isinstance(quest_ids, list) or not all(
                isinstance(q, int) and not isinstance(q, bool) for q in quest_ids
            ):
                raise ValueError("Reward condition field 'questIds' must be a list of integers")
            return CustomCondition(
                quest_ids=tuple(quest_ids),
                require_all=bool(config.get("requireAll", False)),
            )
        case _:
            assert_never(condition_type)


def is_satisfied(
    condition: RewardCondition,
    completed_quest_ids: Collection[int],
    required_quest_ids: Collection[int] = (),
) -> bool:
    """Return True if the user's completed quests satisfy the condition.

    An empty chapter or book never satisfies. An empty custom set satisfies
    ALL vacuously and never satisfies ANY.
    """
    completed = set(completed_quest_ids)
    match condition:
        case QuestCondition(quest_id=quest_id):
            return quest_id in completed
        case ChapterCondition() | BookCondition():
            if not required_quest_ids:
                return False
            return all(q in completed for q in required_quest_ids)
        case CustomCondition(quest_ids=quest_ids, require_all=True):
            return all(q in completed for q in quest_ids)
        case CustomCondition(quest_ids=quest_ids):
            return any(q in completed for q in quest_ids)
        case _:
            assert_never(condition)
