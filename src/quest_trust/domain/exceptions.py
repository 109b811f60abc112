"""Domain exceptions for quest verification.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

SSRF rejections, signature and freshness failures and upstream errors are
NOT exceptions: verifiers fold them into a VerificationResult so that every
failed verification looks the same to the caller.
"""


class QuestTrustError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "QUEST_TRUST_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Request Errors ---


class ClaimValidationError(QuestTrustError):
    """Raised when a claim or settings update is malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")


class AuthenticationRequiredError(QuestTrustError):
    """Raised when no resolved user identity accompanies the request."""

    def __init__(self) -> None:
        super().__init__(
            message="Authentication required",
            code="AUTHENTICATION_REQUIRED",
        )


class QuestNotFoundError(QuestTrustError):
    """Raised when a quest slug does not exist."""

    def __init__(self, quest_slug: str) -> None:
        super().__init__(
            message=f"Quest not found: {quest_slug}",
            code="QUEST_NOT_FOUND",
        )
        self.quest_slug = quest_slug


# --- Configuration Errors ---


class VerificationConfigError(QuestTrustError):
    """Raised when a quest's stored verification setup is unusable.

    This is a server fault, not a failed verification. The detail is kept
    for logs; the API returns a generic message.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(
            message="Quest verification is misconfigured",
            code="VERIFICATION_CONFIG_ERROR",
        )
        self.detail = detail


class MissingEncryptionKeyError(QuestTrustError):
    """Raised when the process-wide encryption secret is not configured."""

    def __init__(self) -> None:
        super().__init__(
            message="ENCRYPTION_KEY is not configured",
            code="MISSING_ENCRYPTION_KEY",
        )


# --- Crypto Errors ---


class DecryptionError(QuestTrustError):
    """Raised when an at-rest envelope is malformed or fails authentication.

    Never carries ciphertext or the underlying library error text.
    """

    def __init__(self, reason: str = "Unable to decrypt value") -> None:
        super().__init__(message=reason, code="DECRYPTION_FAILED")


# --- Progress Errors ---


class PrerequisiteNotMetError(QuestTrustError):
    """Raised when a quest's prerequisite is not completed by the user."""

    def __init__(self, quest_slug: str, prerequisite_quest_id: int) -> None:
        super().__init__(
            message=(
                "The prerequisite quest is not completed yet. "
                "Complete it before this one."
            ),
            code="PREREQUISITE_NOT_MET",
        )
        self.quest_slug = quest_slug
        self.prerequisite_quest_id = prerequisite_quest_id


class InvalidStateTransitionError(QuestTrustError):
    """Raised when an attempted progress transition is not allowed."""

    def __init__(self, current_state: str, attempted_event: str) -> None:
        super().__init__(
            message=f"Invalid progress transition: {current_state} -> {attempted_event}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_event = attempted_event
