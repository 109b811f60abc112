"""Verification strategy implementations and factory.

Five strategies, one per VerificationType:
    - ManualVerifier:          Self-attestation, no network
    - PaymentKeyVerifier:      Payment secret key authenticates
    - PaymentProductVerifier:  Payment account has an active product
    - WebhookVerifier:         User's webhook accepts a test event
    - ServerStatusVerifier:    Signed challenge-response with the user's server

The VerifierFactory builds the verifier for a quest's stored
verification_type. The claim never chooses its own verifier.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import assert_never

import httpx

from quest_trust.config import Settings
from quest_trust.domain.enums import VerificationType
from quest_trust.domain.verifier_protocol import (
    ReplayGuard,
    SecretProfileLoader,
    VerificationClaim,
    VerificationResult,
    VerifierStrategy,
)
from quest_trust.security.crypto import TrustTokenCrypto
from quest_trust.verifiers.manual import ManualVerifier
from quest_trust.verifiers.payment import PaymentKeyVerifier, PaymentProductVerifier
from quest_trust.verifiers.server_status import ServerStatusVerifier
from quest_trust.verifiers.webhook import WebhookVerifier


class VerifierFactory:
    """Creates the verifier for a VerificationType.

    Dependencies are injected once per request so verifiers can be exercised
    with a mock transport, a fixed clock and an in-memory profile loader.

    Usage:
        factory = VerifierFactory(profile_loader=repo, crypto=crypto, settings=settings)
        verifier = factory.create(VerificationType.SERVER_STATUS)
        result = await verifier.verify(claim)
    """

    def __init__(
        self,
        profile_loader: SecretProfileLoader,
        crypto: TrustTokenCrypto,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        replay_guard: ReplayGuard | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._profile_loader = profile_loader
        self._crypto = crypto
        self._settings = settings
        self._transport = transport
        self._replay_guard = replay_guard
        self._clock = clock

    def create(self, verification_type: VerificationType) -> VerifierStrategy:
        settings = self._settings
        match verification_type:
            case VerificationType.MANUAL:
                return ManualVerifier()
            case VerificationType.PAYMENT_KEY:
                return PaymentKeyVerifier(
                    base_url=settings.payment_api_base_url,
                    key_prefix=settings.payment_key_prefix,
                    timeout=settings.outbound_timeout_seconds,
                    transport=self._transport,
                )
            case VerificationType.PAYMENT_PRODUCT:
                return PaymentProductVerifier(
                    base_url=settings.payment_api_base_url,
                    key_prefix=settings.payment_key_prefix,
                    timeout=settings.outbound_timeout_seconds,
                    transport=self._transport,
                )
            case VerificationType.WEBHOOK:
                return WebhookVerifier(
                    timeout=settings.outbound_timeout_seconds,
                    transport=self._transport,
                    clock=self._clock,
                )
            case VerificationType.SERVER_STATUS:
                return ServerStatusVerifier(
                    self._profile_loader,
                    self._crypto,
                    timeout=settings.server_status_timeout_seconds,
                    max_skew_seconds=settings.server_status_max_skew_seconds,
                    status_path=settings.server_status_path,
                    transport=self._transport,
                    replay_guard=self._replay_guard,
                    clock=self._clock,
                )
            case _:
                assert_never(verification_type)

    @staticmethod
    def get_supported_types() -> list[str]:
        """Return the list of supported verification type strings."""
        return [t.value for t in VerificationType]


__all__ = [
    "ManualVerifier",
    "PaymentKeyVerifier",
    "PaymentProductVerifier",
    "ServerStatusVerifier",
    "WebhookVerifier",
    "VerifierFactory",
    "VerificationClaim",
    "VerificationResult",
    "VerifierStrategy",
]
