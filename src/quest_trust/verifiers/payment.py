"""Payment provider verifiers.

Two checks against the payment provider's REST API (Stripe-compatible):

    PaymentKeyVerifier      GET /v1/account
                            the secret key authenticates at all
    PaymentProductVerifier  GET /v1/products?active=true&limit=1
                            the account has at least one active product

The key is sent as a Bearer token and never logged or echoed back. The
upstream is a fixed, configured base URL, so the SSRF guard does not apply.
"""

from __future__ import annotations

from typing import Any

import httpx

from quest_trust.domain.verifier_protocol import VerificationClaim, VerificationResult
from quest_trust.logging_config import get_logger

logger = get_logger(__name__)

INVALID_KEY_MESSAGE = "API key is invalid. Check the key and try again."
UNREACHABLE_MESSAGE = "Could not reach the payment provider. Try again later."


class _PaymentVerifierBase:
    """Shared key validation and HTTP plumbing."""

    endpoint: str = ""
    params: dict[str, Any] | None = None
    check_name: str = "payment"

    def __init__(
        self,
        base_url: str = "https://api.stripe.com",
        key_prefix: str = "sk_",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._key_prefix = key_prefix
        self._timeout = timeout
        self._transport = transport

    def _check_key(self, claim: VerificationClaim) -> str | None:
        api_key = claim.payload.get("apiKey")
        if not isinstance(api_key, str) or not api_key.startswith(self._key_prefix):
            return None
        return api_key

    async def _fetch(self, api_key: str) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=False,
        ) as client:
            return await client.get(
                self.endpoint,
                params=self.params,
                headers={"Authorization": f"Bearer {api_key}"},
            )

    async def verify(self, claim: VerificationClaim) -> VerificationResult:
        api_key = self._check_key(claim)
        if api_key is None:
            return VerificationResult.failure(
                f"API key must start with {self._key_prefix}",
                error="INVALID_KEY_FORMAT",
            )

        try:
            response = await self._fetch(api_key)
        except httpx.HTTPError as exc:
            logger.warning(
                f"verifier.{self.check_name}.unreachable",
                user_id=claim.user_id,
                error_type=type(exc).__name__,
            )
            return VerificationResult.failure(UNREACHABLE_MESSAGE, error="UPSTREAM_UNREACHABLE")

        if not response.is_success:
            logger.info(
                f"verifier.{self.check_name}.rejected",
                user_id=claim.user_id,
                status_code=response.status_code,
            )
            return VerificationResult.failure(INVALID_KEY_MESSAGE, error="INVALID_KEY")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return self._interpret(body)

    def _interpret(self, body: dict[str, Any]) -> VerificationResult:
        raise NotImplementedError


class PaymentKeyVerifier(_PaymentVerifierBase):
    """The submitted secret key authenticates against the provider."""

    endpoint = "/v1/account"
    check_name = "payment_key"

    def _interpret(self, body: dict[str, Any]) -> VerificationResult:
        account = body.get("email") or body.get("id") or "your account"
        return VerificationResult(
            is_valid=True,
            message=f"Connected to payment account: {account}",
        )


class PaymentProductVerifier(_PaymentVerifierBase):
    """The account behind the key has at least one active product."""

    endpoint = "/v1/products"
    params = {"active": "true", "limit": "1"}
    check_name = "payment_product"

    def _interpret(self, body: dict[str, Any]) -> VerificationResult:
        products = body.get("data")
        if not isinstance(products, list) or not products:
            return VerificationResult.failure(
                "No active product found. Create a product in your payment dashboard.",
                error="NO_ACTIVE_PRODUCT",
            )
        first = products[0] if isinstance(products[0], dict) else {}
        name = first.get("name") or "unnamed product"
        return VerificationResult(is_valid=True, message=f"Active product found: {name}")
