"""Domain enumerations for quest verification.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class VerificationType(enum.StrEnum):
    """Verification strategies a quest can require.

    Stored in quests.verification_type. The dispatcher reads it from the
    quest record only, never from the claim.
    """

    MANUAL = "manual"
    PAYMENT_KEY = "payment_key"
    PAYMENT_PRODUCT = "payment_product"
    WEBHOOK = "webhook"
    SERVER_STATUS = "server_status"


class ProgressStatus(enum.StrEnum):
    """Lifecycle states of a user's progress on one quest.

    Transitions are enforced by ProgressStateMachine.
    See domain/state_machine.py for the transition table.
    """

    LOCKED = "locked"
    AVAILABLE = "available"
    COMPLETED = "completed"


class RewardType(enum.StrEnum):
    """Kinds of rewards. Only COIN carries a balance side effect."""

    BADGE = "badge"
    COIN = "coin"
    PERK = "perk"


class RewardConditionType(enum.StrEnum):
    """Discriminator of RewardCondition (rewards.condition_config["type"])."""

    QUEST = "quest"
    CHAPTER = "chapter"
    BOOK = "book"
    CUSTOM = "custom"
