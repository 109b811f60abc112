"""Domain layer: pure business logic with zero framework dependencies."""

from quest_trust.domain.enums import (
    ProgressStatus,
    RewardConditionType,
    RewardType,
    VerificationType,
)
from quest_trust.domain.exceptions import (
    AuthenticationRequiredError,
    ClaimValidationError,
    DecryptionError,
    InvalidStateTransitionError,
    MissingEncryptionKeyError,
    PrerequisiteNotMetError,
    QuestNotFoundError,
    QuestTrustError,
    VerificationConfigError,
)
from quest_trust.domain.state_machine import (
    ProgressStateMachine,
    validate_transition,
)
from quest_trust.domain.verifier_protocol import (
    SecretProfileLoader,
    UserSecretProfile,
    VerificationClaim,
    VerificationResult,
    VerifierStrategy,
)

__all__ = [
    "ProgressStatus",
    "RewardConditionType",
    "RewardType",
    "VerificationType",
    "AuthenticationRequiredError",
    "ClaimValidationError",
    "DecryptionError",
    "InvalidStateTransitionError",
    "MissingEncryptionKeyError",
    "PrerequisiteNotMetError",
    "QuestNotFoundError",
    "QuestTrustError",
    "VerificationConfigError",
    "ProgressStateMachine",
    "validate_transition",
    "SecretProfileLoader",
    "UserSecretProfile",
    "VerificationClaim",
    "VerificationResult",
    "VerifierStrategy",
]
