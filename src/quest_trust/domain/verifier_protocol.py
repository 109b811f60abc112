"""Verifier Strategy Protocol.

Defines the interface that all verification strategies must implement.
This is a Protocol (structural subtyping) so concrete verifiers don't need
to inherit from a base class; they just need to match the shape.

The domain layer has ZERO imports from httpx, SQLAlchemy, or any external service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class VerificationClaim:
    """Input to a verifier.

    Attributes:
        user_id: The authenticated user making the claim.
        quest_slug: Slug of the quest being claimed.
        payload: Free-form claim data supplied by the user.
        verification_config: The quest's stored verification_config JSON.
    """

    user_id: int
    quest_slug: str
    payload: dict[str, Any] = field(default_factory=dict)
    verification_config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    """Output from a verifier.

    Attributes:
        is_valid: Whether the claim holds.
        message: User-presentable explanation. Never contains secrets.
        data: Diagnostic data (server_status only). Returned to the user,
            never logged or persisted.
        error: Short machine-readable code for failures.
    """

    is_valid: bool
    message: str = ""
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def failure(
        cls, message: str, error: str, data: dict[str, Any] | None = None
    ) -> VerificationResult:
        return cls(is_valid=False, message=message, error=error, data=data)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "message": self.message,
            "data": self.data,
            "error": self.error,
        }


@dataclass(frozen=True)
class UserSecretProfile:
    """Stored server settings for the server_status verifier.

    Attributes:
        server_url: Plaintext base URL of the user's server.
        server_verification_token: Ciphertext envelope of the shared secret.
    """

    server_url: str | None = None
    server_verification_token: str | None = None


@runtime_checkable
class SecretProfileLoader(Protocol):
    """Anything that can load a user's UserSecretProfile."""

    async def get_secret_profile(self, user_id: int) -> UserSecretProfile | None:
        ...


@runtime_checkable
class ReplayGuard(Protocol):
    """Remembers response signatures seen within the freshness window."""

    async def check_and_remember(self, signature: str, ttl_seconds: int) -> bool:
        """Return True if the signature is new, False if it was seen before."""
        ...


@runtime_checkable
class VerifierStrategy(Protocol):
    """Protocol that all verifier implementations must satisfy.

    Concrete implementations:
        - verifiers/manual.py         (self-attestation)
        - verifiers/payment.py        (payment provider key / product)
        - verifiers/webhook.py        (webhook reachability)
        - verifiers/server_status.py  (signed challenge-response)
    """

    async def verify(self, claim: VerificationClaim) -> VerificationResult:
        """Check the claim.

        Expected failures are returned with is_valid=False, never raised.
        """
        ...
