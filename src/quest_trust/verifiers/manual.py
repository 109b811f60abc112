"""ManualVerifier: self-attestation.

The user ticks "I did it". No network, no stored state. Used for quests
whose completion cannot be observed from outside.
"""

from __future__ import annotations

from quest_trust.domain.verifier_protocol import VerificationClaim, VerificationResult


class ManualVerifier:
    """Valid iff the claim payload carries ``confirmed: true``."""

    async def verify(self, claim: VerificationClaim) -> VerificationResult:
        if claim.payload.get("confirmed") is True:
            return VerificationResult(is_valid=True, message="Completion confirmed")
        return VerificationResult.failure(
            "Please confirm that you completed this quest",
            error="NOT_CONFIRMED",
        )
