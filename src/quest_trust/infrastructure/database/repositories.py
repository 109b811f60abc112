"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Writes that must be idempotent under concurrency use the dialect's
INSERT ... ON CONFLICT, never check-then-insert. PostgreSQL and SQLite are
both supported.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Table, select
from sqlalchemy.dialects import postgresql, sqlite

from quest_trust.domain.verifier_protocol import UserSecretProfile
from quest_trust.infrastructure.database.orm_models import (
    Chapter,
    Quest,
    Reward,
    SettingDefinition,
    UserCurrency,
    UserQuestProgress,
    UserReward,
    UserSettings,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession


def _dialect_insert(session: AsyncSession, table: Table):  # noqa: ANN202
    """Return an ``insert`` construct supporting ON CONFLICT for the bound dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported on dialect '{dialect}'")


class QuestRepository:
    """Read access to quests and their position in the content tree."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_slug(self, slug: str) -> Quest | None:
        result = await self._session.execute(select(Quest).where(Quest.slug == slug))
        return result.scalar_one_or_none()

    async def get_by_id(self, quest_id: int) -> Quest | None:
        return await self._session.get(Quest, quest_id)

    async def get_quest_ids_by_chapter(self, chapter_id: int) -> list[int]:
        result = await self._session.execute(
            select(Quest.id).where(Quest.chapter_id == chapter_id).order_by(Quest.id)
        )
        return list(result.scalars().all())

    async def get_quest_ids_by_book(self, book_id: int) -> list[int]:
        result = await self._session.execute(
            select(Quest.id)
            .join(Chapter, Quest.chapter_id == Chapter.id)
            .where(Chapter.book_id == book_id)
            .order_by(Quest.id)
        )
        return list(result.scalars().all())


class ProgressRepository:
    """Data access for user_quest_progress."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _select_one(user_id: int, quest_id: int):  # noqa: ANN205
        return (
            select(UserQuestProgress)
            .where(
                UserQuestProgress.user_id == user_id,
                UserQuestProgress.quest_id == quest_id,
            )
            .execution_options(populate_existing=True)
        )

    async def get(self, user_id: int, quest_id: int) -> UserQuestProgress | None:
        result = await self._session.execute(self._select_one(user_id, quest_id))
        return result.scalar_one_or_none()

    async def get_completed_quest_ids(self, user_id: int) -> set[int]:
        result = await self._session.execute(
            select(UserQuestProgress.quest_id).where(
                UserQuestProgress.user_id == user_id,
                UserQuestProgress.status == "completed",
            )
        )
        return set(result.scalars().all())

    async def upsert_completed(
        self,
        user_id: int,
        quest_id: int,
        metadata: dict[str, Any],
        completed_at: datetime,
    ) -> UserQuestProgress:
        """Mark (user, quest) completed in one atomic statement.

        An existing row has its status, completed_at and metadata refreshed.
        """
        table = UserQuestProgress.__table__
        stmt = _dialect_insert(self._session, table).values(
            user_id=user_id,
            quest_id=quest_id,
            status="completed",
            completed_at=completed_at,
            metadata=metadata,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.quest_id],
            set_={
                "status": stmt.excluded["status"],
                "completed_at": stmt.excluded["completed_at"],
                "metadata": stmt.excluded["metadata"],
            },
        )
        await self._session.execute(stmt)

        result = await self._session.execute(self._select_one(user_id, quest_id))
        return result.scalar_one()


class UserSettingsRepository:
    """Data access for user_settings. Also serves as the SecretProfileLoader."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def _select_one(user_id: int):  # noqa: ANN205
        return (
            select(UserSettings)
            .where(UserSettings.user_id == user_id)
            .execution_options(populate_existing=True)
        )

    async def get(self, user_id: int) -> UserSettings | None:
        result = await self._session.execute(self._select_one(user_id))
        return result.scalar_one_or_none()

    async def get_tool_settings(self, user_id: int) -> dict[str, Any]:
        row = await self.get(user_id)
        if row is None or not isinstance(row.tool_settings, dict):
            return {}
        return dict(row.tool_settings)

    async def get_secret_profile(self, user_id: int) -> UserSecretProfile | None:
        settings = await self.get_tool_settings(user_id)
        if not settings:
            return None
        server_url = settings.get("serverUrl")
        token = settings.get("serverVerificationToken")
        return UserSecretProfile(
            server_url=server_url if isinstance(server_url, str) else None,
            server_verification_token=token if isinstance(token, str) else None,
        )

    async def update_tool_settings(
        self,
        user_id: int,
        updates: dict[str, Any],
        remove: Iterable[str] = (),
    ) -> UserSettings:
        """Merge ``updates`` into the user's tool settings and drop ``remove`` keys.

        The row is created if missing; concurrent first writes cannot produce
        two rows for one user.
        """
        table = UserSettings.__table__
        now = datetime.now(UTC)
        stmt = _dialect_insert(self._session, table).values(
            user_id=user_id,
            tool_settings={},
            created_at=now,
            updated_at=now,
        )
        await self._session.execute(stmt.on_conflict_do_nothing(index_elements=[table.c.user_id]))

        row = (await self._session.execute(self._select_one(user_id))).scalar_one()
        merged = dict(row.tool_settings or {})
        merged.update(updates)
        for key in remove:
            merged.pop(key, None)
        row.tool_settings = merged
        await self._session.flush()
        return row


class SettingDefinitionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_encrypted_keys(self) -> set[str]:
        """Keys of active setting definitions marked as encrypted."""
        result = await self._session.execute(
            select(SettingDefinition.key).where(
                SettingDefinition.is_encrypted.is_(True),
                SettingDefinition.is_active.is_(True),
            )
        )
        return set(result.scalars().all())


class RewardRepository:
    """Data access for rewards, grants and coin balances."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_active(self) -> list[Reward]:
        result = await self._session.execute(
            select(Reward).where(Reward.is_active.is_(True)).order_by(Reward.id)
        )
        return list(result.scalars().all())

    async def get_earned(self, user_id: int) -> dict[int, datetime]:
        """Map of reward_id -> earned_at for the user."""
        result = await self._session.execute(
            select(UserReward.reward_id, UserReward.earned_at).where(
                UserReward.user_id == user_id
            )
        )
        return {reward_id: earned_at for reward_id, earned_at in result.all()}

    async def grant(self, user_id: int, reward_id: int, earned_at: datetime) -> bool:
        """Insert a grant. Returns True only if this call created the row."""
        table = UserReward.__table__
        stmt = _dialect_insert(self._session, table).values(
            user_id=user_id,
            reward_id=reward_id,
            earned_at=earned_at,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=[table.c.user_id, table.c.reward_id])
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def add_coins(self, user_id: int, amount: int) -> None:
        """Atomically increment the user's coin balance, creating it if needed."""
        table = UserCurrency.__table__
        now = datetime.now(UTC)
        stmt = _dialect_insert(self._session, table).values(
            user_id=user_id,
            coins=amount,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id],
            set_={
                "coins": table.c.coins + stmt.excluded["coins"],
                "updated_at": stmt.excluded["updated_at"],
            },
        )
        await self._session.execute(stmt)

    async def get_coins(self, user_id: int) -> int:
        result = await self._session.execute(
            select(UserCurrency.coins).where(UserCurrency.user_id == user_id)
        )
        coins = result.scalar_one_or_none()
        return coins or 0
