"""SQLAlchemy 2.0 ORM models for quest verification.

Tables:
    1. books / chapters / quests : Content, read-only to this service.
    2. user_quest_progress       : One row per (user, quest), upserted on success.
    3. user_settings             : Per-user tool settings, some values encrypted.
    4. setting_definitions       : Which setting keys are stored encrypted.
    5. rewards / user_rewards    : Reward catalogue and grants.
    6. user_currency             : Coin balance credited by coin rewards.

Design decisions:
    - Integer primary keys; user ids come from the upstream auth layer, so
      there is no users table here.
    - JSON columns use JSONB on PostgreSQL and plain JSON elsewhere, so the
      same models run on SQLite for tests and local simulation.
    - Uniqueness on (user_id, quest_id) and (user_id, reward_id) is what
      makes progress and reward writes idempotent under concurrency.
    - CHECK constraints keep status values and completed_at consistent at
      the DB level.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. Content
# ---------------------------------------------------------------------------
class Book(Base):
    __tablename__ = "books"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    title: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment='Localized title, e.g. {"en": "...", "ja": "..."}',
    )

    def __repr__(self) -> str:
        return f"<Book id={self.id} slug={self.slug}>"


class Chapter(Base):
    __tablename__ = "chapters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    title: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    book_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("books.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (Index("idx_chapter_book", "book_id"),)

    def __repr__(self) -> str:
        return f"<Chapter id={self.id} slug={self.slug} book={self.book_id}>"


class Quest(Base):
    """A quest and how its completion is verified."""

    __tablename__ = "quests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    title: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    chapter_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("chapters.id", ondelete="CASCADE"),
        nullable=False,
    )
    prerequisite_quest_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("quests.id", ondelete="SET NULL"),
        nullable=True,
        default=None,
        comment="Quest that must be completed before this one",
    )

    # --- Verification ---
    verification_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="manual",
        comment="VerificationType value; the only input that selects a verifier",
    )
    verification_config: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment='e.g. {"requiredFields": ["stripeConnected"]} or {"webhookPayload": {...}}',
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (Index("idx_quest_chapter", "chapter_id"),)

    def __repr__(self) -> str:
        return f"<Quest id={self.id} slug={self.slug} type={self.verification_type}>"


# ---------------------------------------------------------------------------
# 2. user_quest_progress
# ---------------------------------------------------------------------------
class UserQuestProgress(Base):
    """A user's progress on one quest. At most one row per (user, quest)."""

    __tablename__ = "user_quest_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quest_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("quests.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="locked",
        comment="ProgressStatus value (guarded by ProgressStateMachine)",
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
        comment="Sanitized verification metadata; never holds secrets",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "quest_id", name="uq_progress_user_quest"),
        CheckConstraint(
            "status IN ('locked', 'available', 'completed')",
            name="ck_progress_valid_status",
        ),
        CheckConstraint(
            "(status = 'completed' AND completed_at IS NOT NULL) "
            "OR (status <> 'completed' AND completed_at IS NULL)",
            name="ck_progress_completed_at",
        ),
        Index("idx_progress_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserQuestProgress user={self.user_id} quest={self.quest_id} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 3. user_settings / setting_definitions
# ---------------------------------------------------------------------------
class UserSettings(Base):
    """Per-user tool settings.

    tool_settings["serverUrl"] is plaintext; tool_settings["serverVerificationToken"]
    holds an encrypted envelope. Keys listed as encrypted in setting_definitions
    are always stored encrypted.
    """

    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    tool_settings: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<UserSettings user={self.user_id} keys={sorted(self.tool_settings or {})}>"


class SettingDefinition(Base):
    """Admin-managed catalogue of tool setting keys."""

    __tablename__ = "setting_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value_type: Mapped[str] = mapped_column(String(20), nullable=False, default="string")
    is_encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<SettingDefinition key={self.key} encrypted={self.is_encrypted}>"


# ---------------------------------------------------------------------------
# 4. rewards / user_rewards / user_currency
# ---------------------------------------------------------------------------
class Reward(Base):
    """A reward and the condition that earns it."""

    __tablename__ = "rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    title: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    type: Mapped[str] = mapped_column(String(20), nullable=False, comment="RewardType value")
    value: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Coin amount for coin rewards; informational otherwise",
    )
    condition_type: Mapped[str] = mapped_column(String(20), nullable=False)
    condition_config: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment='Tagged union, e.g. {"type": "chapter", "chapterId": 1}',
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "type IN ('badge', 'coin', 'perk')",
            name="ck_reward_valid_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<Reward id={self.id} slug={self.slug} type={self.type}>"


class UserReward(Base):
    __tablename__ = "user_rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("rewards.id", ondelete="CASCADE"),
        nullable=False,
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "reward_id", name="uq_user_reward"),
        Index("idx_user_reward_user", "user_id"),
    )


class UserCurrency(Base):
    __tablename__ = "user_currency"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (CheckConstraint("coins >= 0", name="ck_currency_non_negative"),)


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
event.listen(UserSettings, "before_update", _set_updated_at)
event.listen(SettingDefinition, "before_update", _set_updated_at)
