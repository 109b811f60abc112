"""Database infrastructure: engine, ORM models, and repositories."""

from quest_trust.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_engine,
    get_session_factory,
    init_db,
)
from quest_trust.infrastructure.database.orm_models import (
    Base,
    Book,
    Chapter,
    Quest,
    Reward,
    SettingDefinition,
    UserCurrency,
    UserQuestProgress,
    UserReward,
    UserSettings,
)
from quest_trust.infrastructure.database.repositories import (
    ProgressRepository,
    QuestRepository,
    RewardRepository,
    SettingDefinitionRepository,
    UserSettingsRepository,
)

__all__ = [
    "Base",
    "Book",
    "Chapter",
    "Quest",
    "Reward",
    "SettingDefinition",
    "UserCurrency",
    "UserQuestProgress",
    "UserReward",
    "UserSettings",
    "ProgressRepository",
    "QuestRepository",
    "RewardRepository",
    "SettingDefinitionRepository",
    "UserSettingsRepository",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_db",
    "close_db",
]
