"""Unit tests for the payment provider verifiers.

The provider is replaced by an httpx.MockTransport; no network access.
"""

from __future__ import annotations

import httpx
import pytest

from quest_trust.domain.verifier_protocol import VerificationClaim
from quest_trust.verifiers.payment import (
    INVALID_KEY_MESSAGE,
    UNREACHABLE_MESSAGE,
    PaymentKeyVerifier,
    PaymentProductVerifier,
)


def _claim(api_key: object) -> VerificationClaim:
    return VerificationClaim(user_id=7, quest_slug="connect-stripe", payload={"apiKey": api_key})


class RecordingProvider:
    def __init__(self, status: int = 200, body: object = None) -> None:
        self.status = status
        self.body = body if body is not None else {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.body)


class TestPaymentKeyVerifier:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("api_key", [None, "", "pk_test_123", 42])
    async def test_bad_key_format_makes_no_call(self, api_key: object) -> None:
        provider = RecordingProvider()
        verifier = PaymentKeyVerifier(transport=httpx.MockTransport(provider))
        result = await verifier.verify(_claim(api_key))
        assert not result.is_valid
        assert result.error == "INVALID_KEY_FORMAT"
        assert result.message == "API key must start with sk_"
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_valid_key(self) -> None:
        provider = RecordingProvider(body={"id": "acct_1", "email": "owner@example.com"})
        verifier = PaymentKeyVerifier(transport=httpx.MockTransport(provider))
        result = await verifier.verify(_claim("sk_test_abc"))

        assert result.is_valid
        assert result.message == "Connected to payment account: owner@example.com"
        request = provider.requests[0]
        assert request.url == "https://api.stripe.com/v1/account"
        assert request.headers["Authorization"] == "Bearer sk_test_abc"

    @pytest.mark.asyncio
    async def test_falls_back_to_account_id(self) -> None:
        provider = RecordingProvider(body={"id": "acct_1"})
        verifier = PaymentKeyVerifier(transport=httpx.MockTransport(provider))
        result = await verifier.verify(_claim("sk_test_abc"))
        assert result.message == "Connected to payment account: acct_1"

    @pytest.mark.asyncio
    async def test_rejected_key(self) -> None:
        provider = RecordingProvider(status=401, body={"error": {"message": "Invalid API Key"}})
        verifier = PaymentKeyVerifier(transport=httpx.MockTransport(provider))
        result = await verifier.verify(_claim("sk_test_bad"))
        assert not result.is_valid
        assert result.error == "INVALID_KEY"
        assert result.message == INVALID_KEY_MESSAGE
        assert "sk_test_bad" not in result.message

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        verifier = PaymentKeyVerifier(transport=httpx.MockTransport(fail))
        result = await verifier.verify(_claim("sk_test_abc"))
        assert result.error == "UPSTREAM_UNREACHABLE"
        assert result.message == UNREACHABLE_MESSAGE

    @pytest.mark.asyncio
    async def test_custom_base_url_and_prefix(self) -> None:
        provider = RecordingProvider(body={"id": "acct_2"})
        verifier = PaymentKeyVerifier(
            base_url="https://payments.test/",
            key_prefix="rk_",
            transport=httpx.MockTransport(provider),
        )
        assert (await verifier.verify(_claim("sk_test_abc"))).error == "INVALID_KEY_FORMAT"
        assert (await verifier.verify(_claim("rk_live_abc"))).is_valid
        assert provider.requests[0].url == "https://payments.test/v1/account"


class TestPaymentProductVerifier:
    @pytest.mark.asyncio
    async def test_active_product_found(self) -> None:
        provider = RecordingProvider(body={"data": [{"id": "prod_1", "name": "Pro plan"}]})
        verifier = PaymentProductVerifier(transport=httpx.MockTransport(provider))
        result = await verifier.verify(_claim("sk_test_abc"))

        assert result.is_valid
        assert result.message == "Active product found: Pro plan"
        url = provider.requests[0].url
        assert url.path == "/v1/products"
        assert url.params["active"] == "true"
        assert url.params["limit"] == "1"

    @pytest.mark.asyncio
    async def test_no_active_product(self) -> None:
        provider = RecordingProvider(body={"data": []})
        verifier = PaymentProductVerifier(transport=httpx.MockTransport(provider))
        result = await verifier.verify(_claim("sk_test_abc"))
        assert not result.is_valid
        assert result.error == "NO_ACTIVE_PRODUCT"

    @pytest.mark.asyncio
    async def test_rejected_key(self) -> None:
        provider = RecordingProvider(status=403)
        verifier = PaymentProductVerifier(transport=httpx.MockTransport(provider))
        result = await verifier.verify(_claim("sk_test_abc"))
        assert result.error == "INVALID_KEY"
