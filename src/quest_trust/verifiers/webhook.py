"""WebhookVerifier: the user's webhook endpoint accepts a test event.

The URL is user-supplied, so it must pass the STRICT_EXTERNAL policy before
any request is made. Redirects are not followed.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import httpx

from quest_trust.domain.verifier_protocol import VerificationClaim, VerificationResult
from quest_trust.logging_config import get_logger
from quest_trust.security.url_guard import STRICT_EXTERNAL, UrlPolicy

logger = get_logger(__name__)

TEST_EVENT_TYPE = "quest_trust.test"


class WebhookVerifier:
    """POST a fixed test event to ``payload["webhookUrl"]``; any 2xx passes."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        policy: UrlPolicy = STRICT_EXTERNAL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._policy = policy
        self._clock = clock or (lambda: datetime.now(UTC))

    def _build_event(self, claim: VerificationClaim) -> dict:
        data = {"message": "Quest verification test event", "test": True}
        extra = claim.verification_config.get("webhookPayload")
        if isinstance(extra, dict):
            data.update(extra)
        return {
            "type": TEST_EVENT_TYPE,
            "timestamp": self._clock().isoformat(),
            "data": data,
        }

    async def verify(self, claim: VerificationClaim) -> VerificationResult:
        url = claim.payload.get("webhookUrl")
        if not isinstance(url, str) or not url.strip():
            return VerificationResult.failure("Please enter a webhook URL", error="MISSING_URL")

        check = self._policy.validate(url)
        if not check.ok:
            logger.info(
                "verifier.webhook.url_rejected",
                user_id=claim.user_id,
                policy=self._policy.name,
            )
            return VerificationResult.failure(check.reason, error="URL_REJECTED")

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=False,
            ) as client:
                response = await client.post(url.strip(), json=self._build_event(claim))
        except httpx.HTTPError as exc:
            logger.info(
                "verifier.webhook.unreachable",
                user_id=claim.user_id,
                error_type=type(exc).__name__,
            )
            return VerificationResult.failure(
                "Could not reach the webhook URL",
                error="UPSTREAM_UNREACHABLE",
            )

        if not response.is_success:
            return VerificationResult.failure(
                f"Webhook responded with status {response.status_code}",
                error="UPSTREAM_STATUS",
            )

        return VerificationResult(is_valid=True, message="Webhook endpoint responded successfully")
