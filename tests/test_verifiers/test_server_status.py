"""Unit tests for the ServerStatusVerifier.

The user's server is a SignedStatusServer behind an httpx.MockTransport and
the clock is fixed, so every step of the challenge-response is deterministic.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx
import pytest

from quest_trust.domain.exceptions import VerificationConfigError
from quest_trust.domain.verifier_protocol import UserSecretProfile, VerificationClaim
from quest_trust.security.crypto import TrustTokenCrypto, verify_signature
from quest_trust.verifiers.server_status import (
    ServerStatusVerifier,
    check_required_fields,
    required_fields_from_config,
)

SERVER_URL = "http://localhost:4003"


class InMemoryProfiles:
    def __init__(self, profile: UserSecretProfile | None) -> None:
        self.profile = profile

    async def get_secret_profile(self, user_id: int) -> UserSecretProfile | None:
        return self.profile


class InMemoryReplayGuard:
    def __init__(self) -> None:
        self.seen: dict[str, int] = {}

    async def check_and_remember(self, signature: str, ttl_seconds: int) -> bool:
        if signature in self.seen:
            return False
        self.seen[signature] = ttl_seconds
        return True


def _claim(required: list[str] | None = None) -> VerificationClaim:
    config: dict[str, Any] = {}
    if required is not None:
        config["requiredFields"] = required
    return VerificationClaim(user_id=1, quest_slug="server", verification_config=config)


@pytest.fixture
def profiles(crypto: TrustTokenCrypto, server_token: str) -> InMemoryProfiles:
    return InMemoryProfiles(
        UserSecretProfile(
            server_url=SERVER_URL,
            server_verification_token=crypto.encrypt(server_token),
        )
    )


@pytest.fixture
def make_verifier(
    profiles: InMemoryProfiles,
    crypto: TrustTokenCrypto,
    fixed_clock: Callable[[], datetime],
) -> Callable[..., ServerStatusVerifier]:
    def _make(transport: httpx.AsyncBaseTransport, **kwargs: Any) -> ServerStatusVerifier:
        return ServerStatusVerifier(
            profiles,
            crypto,
            transport=transport,
            clock=fixed_clock,
            **kwargs,
        )

    return _make


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_signed_round_trip(self, make_verifier, status_server) -> None:
        verifier = make_verifier(status_server.transport())
        result = await verifier.verify(_claim(["server", "database_connected"]))

        assert result.is_valid, result.message
        assert result.message == "Server status verified"
        assert result.data == {"server": True, "database_connected": True}
        assert status_server.request_signature_ok is True

    @pytest.mark.asyncio
    async def test_challenge_shape(self, make_verifier, status_server, fixed_clock) -> None:
        await make_verifier(status_server.transport()).verify(_claim())

        request = status_server.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://localhost:4003/api/saas-quest/status"
        assert request.headers["Content-Type"] == "application/json"
        body = json.loads(request.content)
        assert body["action"] == "verify_status"
        assert body["timestamp"] == int(fixed_clock().timestamp())
        assert body["nonce"] == request.headers["X-SaaS-Quest-Nonce"]
        assert len(body["nonce"]) == 32

    @pytest.mark.asyncio
    async def test_path_on_stored_url_is_ignored(
        self, make_verifier, status_server, profiles, crypto, server_token
    ) -> None:
        profiles.profile = UserSecretProfile(
            server_url="http://localhost:4003/some/page?x=1",
            server_verification_token=crypto.encrypt(server_token),
        )
        await make_verifier(status_server.transport()).verify(_claim())
        assert status_server.requests[0].url.path == "/api/saas-quest/status"

    @pytest.mark.asyncio
    async def test_no_required_fields(self, make_verifier, status_server) -> None:
        result = await make_verifier(status_server.transport()).verify(_claim())
        assert result.is_valid


class TestStoredConfiguration:
    @pytest.mark.asyncio
    async def test_no_profile(self, crypto, fixed_clock) -> None:
        verifier = ServerStatusVerifier(InMemoryProfiles(None), crypto, clock=fixed_clock)
        result = await verifier.verify(_claim())
        assert result.error == "SERVER_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_no_token(self, crypto, fixed_clock) -> None:
        profiles = InMemoryProfiles(UserSecretProfile(server_url=SERVER_URL))
        verifier = ServerStatusVerifier(profiles, crypto, clock=fixed_clock)
        result = await verifier.verify(_claim())
        assert result.error == "TOKEN_NOT_CONFIGURED"

    @pytest.mark.asyncio
    async def test_stored_url_rejected_by_guard(
        self, make_verifier, status_server, profiles, crypto, server_token
    ) -> None:
        profiles.profile = UserSecretProfile(
            server_url="http://192.168.1.20",
            server_verification_token=crypto.encrypt(server_token),
        )
        result = await make_verifier(status_server.transport()).verify(_claim())
        assert result.error == "URL_REJECTED"
        assert status_server.requests == []

    @pytest.mark.asyncio
    async def test_undecryptable_token(self, make_verifier, status_server, profiles) -> None:
        profiles.profile = UserSecretProfile(
            server_url=SERVER_URL,
            server_verification_token="encrypted:" + "00" * 12 + ":" + "00" * 16 + ":abcd",
        )
        result = await make_verifier(status_server.transport()).verify(_claim())
        assert result.error == "TOKEN_DECRYPT_FAILED"
        assert status_server.requests == []

    @pytest.mark.asyncio
    async def test_bad_required_fields_config(self, make_verifier, status_server) -> None:
        verifier = make_verifier(status_server.transport())
        with pytest.raises(VerificationConfigError):
            await verifier.verify(_claim(["ok", 3]))  # type: ignore[list-item]


class TestUpstreamFailures:
    @pytest.mark.asyncio
    async def test_timeout(self, make_verifier) -> None:
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = await make_verifier(httpx.MockTransport(slow)).verify(_claim())
        assert result.error == "UPSTREAM_TIMEOUT"

    @pytest.mark.asyncio
    async def test_connection_refused(self, make_verifier) -> None:
        def refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await make_verifier(httpx.MockTransport(refused)).verify(_claim())
        assert result.error == "UPSTREAM_UNREACHABLE"

    @pytest.mark.asyncio
    async def test_server_rejects_request_signature(
        self, make_verifier, status_server
    ) -> None:
        status_server.token = "not-the-stored-token"
        result = await make_verifier(status_server.transport()).verify(_claim())
        assert result.error == "UPSTREAM_STATUS"
        assert result.message == "Your server responded with status 401"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[]",
            b'{"timestamp": 1, "data": {}}',
            b'{"signature": "", "timestamp": 1, "data": {}}',
            b'{"signature": "ab", "timestamp": "1", "data": {}}',
            b'{"signature": "ab", "timestamp": 1, "data": []}',
        ],
    )
    async def test_malformed_response(self, make_verifier, body: bytes) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=body))
        result = await make_verifier(transport).verify(_claim())
        assert result.error == "MALFORMED_RESPONSE"


class TestResponseChecks:
    @pytest.mark.asyncio
    async def test_forged_signature(self, make_verifier, status_server) -> None:
        status_server.signing_secret = "attacker-secret"
        result = await make_verifier(status_server.transport()).verify(_claim())
        assert not result.is_valid
        assert result.error == "SIGNATURE_MISMATCH"
        assert result.data is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset", [timedelta(seconds=301), timedelta(seconds=-301)])
    async def test_stale_or_future_timestamp(
        self, make_verifier, status_server, fixed_clock, offset: timedelta
    ) -> None:
        status_server.timestamp = int((fixed_clock() + offset).timestamp())
        result = await make_verifier(status_server.transport()).verify(_claim())
        assert result.error == "STALE_RESPONSE"

    @pytest.mark.asyncio
    async def test_skew_boundary_accepted(self, make_verifier, status_server, fixed_clock) -> None:
        status_server.timestamp = int(fixed_clock().timestamp()) - 300
        result = await make_verifier(status_server.transport()).verify(_claim())
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_data_changed_after_signing(self, make_verifier, status_server) -> None:
        def tampering(request: httpx.Request) -> httpx.Response:
            response = status_server(request)
            payload = response.json()
            payload["data"]["database_connected"] = True
            payload["data"]["admin"] = True
            return httpx.Response(200, json=payload)

        result = await make_verifier(httpx.MockTransport(tampering)).verify(_claim())
        assert result.error == "SIGNATURE_MISMATCH"

    @pytest.mark.asyncio
    async def test_missing_fields(self, make_verifier, status_server) -> None:
        result = await make_verifier(status_server.transport()).verify(
            _claim(["server", "stripe_configured", "database_connected", "email_configured"])
        )
        assert result.error == "MISSING_FIELDS"
        assert result.message == "Missing required fields: stripe_configured, email_configured"
        assert result.data == status_server.data

    @pytest.mark.asyncio
    async def test_false_fields(self, make_verifier, status_server) -> None:
        status_server.data = {"server": True, "database_connected": False}
        result = await make_verifier(status_server.transport()).verify(
            _claim(["server", "database_connected"])
        )
        assert result.error == "FALSE_FIELDS"
        assert result.message == "Required fields are not enabled: database_connected"
        assert result.data == {"server": True, "database_connected": False}

    @pytest.mark.asyncio
    async def test_zero_and_empty_values_count_as_present(
        self, make_verifier, status_server
    ) -> None:
        status_server.data = {"count": 0, "label": "", "nothing": None}
        result = await make_verifier(status_server.transport()).verify(
            _claim(["count", "label", "nothing"])
        )
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_response_signature_matches_signed_data(
        self, make_verifier, status_server, server_token
    ) -> None:
        status_server.data = {"emoji": "✓", "nested": {"a": [1, 2]}}
        result = await make_verifier(status_server.transport()).verify(_claim())
        assert result.is_valid
        raw = status_server.requests[0]
        assert verify_signature(
            f"{raw.headers['X-SaaS-Quest-Timestamp']}.{raw.headers['X-SaaS-Quest-Nonce']}."
            + raw.content.decode("utf-8"),
            raw.headers["X-SaaS-Quest-Signature"],
            server_token,
        )


class TestReplayGuard:
    @pytest.mark.asyncio
    async def test_replayed_response_rejected(self, make_verifier, status_server) -> None:
        guard = InMemoryReplayGuard()
        verifier = make_verifier(status_server.transport(), replay_guard=guard)

        first = await verifier.verify(_claim())
        second = await verifier.verify(_claim())

        assert first.is_valid
        assert second.error == "REPLAYED_RESPONSE"
        assert list(guard.seen.values()) == [600]

    @pytest.mark.asyncio
    async def test_without_guard_identical_responses_pass(
        self, make_verifier, status_server
    ) -> None:
        verifier = make_verifier(status_server.transport())
        assert (await verifier.verify(_claim())).is_valid
        assert (await verifier.verify(_claim())).is_valid


class TestRequiredFieldHelpers:
    def test_from_config(self) -> None:
        assert required_fields_from_config({}) == []
        assert required_fields_from_config({"requiredFields": None}) == []
        assert required_fields_from_config({"requiredFields": ["a"]}) == ["a"]

    def test_from_config_rejects_non_list(self) -> None:
        with pytest.raises(VerificationConfigError):
            required_fields_from_config({"requiredFields": "a"})

    def test_check_preserves_order(self) -> None:
        missing, false = check_required_fields({"b": False, "d": True}, ["a", "b", "c", "d"])
        assert missing == ["a", "c"]
        assert false == ["b"]
