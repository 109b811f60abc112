"""ServerStatusVerifier: signed challenge-response against the user's server.

Verification flow:
    1. Load the user's stored server URL and encrypted verification token.
    2. Check the URL against the DEV_TOLERANT_SERVER policy.
    3. Decrypt the token (the shared HMAC secret).
    4. POST a signed challenge to <server>/api/saas-quest/status.
    5. Validate the response shape with a JSON Schema.
    6. Reject responses whose timestamp is outside the freshness window.
    7. Check the response signature in constant time.
    8. Optionally reject a response signature already seen (replay guard).
    9. Check the quest's required fields in the signed data.

Every failure is returned as an invalid result with a safe message. The
signed ``data`` object is returned to the caller but never logged.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlsplit

import httpx
from jsonschema import Draft7Validator

from quest_trust.domain.exceptions import DecryptionError, VerificationConfigError
from quest_trust.domain.verifier_protocol import (
    ReplayGuard,
    SecretProfileLoader,
    VerificationClaim,
    VerificationResult,
)
from quest_trust.logging_config import get_logger
from quest_trust.security.crypto import (
    TrustTokenCrypto,
    build_request_signature_payload,
    build_response_signature_payload,
    canonical_json,
    generate_nonce,
    sign,
    verify_signature,
)
from quest_trust.security.url_guard import DEV_TOLERANT_SERVER, UrlPolicy

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-SaaS-Quest-Signature"
TIMESTAMP_HEADER = "X-SaaS-Quest-Timestamp"
NONCE_HEADER = "X-SaaS-Quest-Nonce"

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["signature", "timestamp", "data"],
    "properties": {
        "signature": {"type": "string", "minLength": 1},
        "timestamp": {"type": "integer"},
        "data": {"type": "object"},
    },
}

_response_validator = Draft7Validator(RESPONSE_SCHEMA)


def required_fields_from_config(verification_config: dict[str, Any]) -> list[str]:
    """Read ``requiredFields`` from a quest's verification config.

    Raises:
        VerificationConfigError: If present but not a list of strings.
    """
    fields = verification_config.get("requiredFields", [])
    if fields is None:
        return []
    if not isinstance(fields, list) or not all(isinstance(f, str) for f in fields):
        raise VerificationConfigError("requiredFields must be a list of strings")
    return fields


def check_required_fields(
    data: dict[str, Any], required: list[str]
) -> tuple[list[str], list[str]]:
    """Return (missing, false) field names, in ``required`` order."""
    missing = [name for name in required if name not in data]
    false = [name for name in required if name in data and data[name] is False]
    return missing, false


class ServerStatusVerifier:
    """Proves that the user runs a server holding the shared secret."""

    def __init__(
        self,
        profile_loader: SecretProfileLoader,
        crypto: TrustTokenCrypto,
        *,
        timeout: float = 15.0,
        max_skew_seconds: int = 300,
        status_path: str = "/api/saas-quest/status",
        transport: httpx.AsyncBaseTransport | None = None,
        replay_guard: ReplayGuard | None = None,
        clock: Callable[[], datetime] | None = None,
        policy: UrlPolicy = DEV_TOLERANT_SERVER,
    ) -> None:
        self._profile_loader = profile_loader
        self._crypto = crypto
        self._timeout = timeout
        self._max_skew = max_skew_seconds
        self._status_path = status_path
        self._transport = transport
        self._replay_guard = replay_guard
        self._clock = clock or (lambda: datetime.now(UTC))
        self._policy = policy

    def _status_url(self, server_url: str) -> str:
        parts = urlsplit(server_url.strip())
        return f"{parts.scheme}://{parts.netloc}{self._status_path}"

    async def verify(self, claim: VerificationClaim) -> VerificationResult:
        required = required_fields_from_config(claim.verification_config)
        log = logger.bind(user_id=claim.user_id, quest_slug=claim.quest_slug)

        # --- Step 1: Stored configuration ---
        profile = await self._profile_loader.get_secret_profile(claim.user_id)
        if profile is None or not profile.server_url:
            return VerificationResult.failure(
                "Server URL is not configured. Set it on the server settings page.",
                error="SERVER_NOT_CONFIGURED",
            )
        if not profile.server_verification_token:
            return VerificationResult.failure(
                "Verification token is not configured. Issue one on the server settings page.",
                error="TOKEN_NOT_CONFIGURED",
            )

        # --- Step 2: URL policy ---
        check = self._policy.validate(profile.server_url)
        if not check.ok:
            log.info("verifier.server_status.url_rejected", policy=self._policy.name)
            return VerificationResult.failure(check.reason, error="URL_REJECTED")

        # --- Step 3: Shared secret ---
        try:
            secret = self._crypto.decrypt(profile.server_verification_token)
        except DecryptionError:
            log.warning("verifier.server_status.token_decrypt_failed")
            return VerificationResult.failure(
                "Stored verification token could not be read. Please re-issue your token.",
                error="TOKEN_DECRYPT_FAILED",
            )

        # --- Step 4: Signed challenge ---
        timestamp = int(self._clock().timestamp())
        nonce = generate_nonce()
        body = {"action": "verify_status", "timestamp": timestamp, "nonce": nonce}
        signature = sign(build_request_signature_payload(timestamp, nonce, body), secret)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=False,
            ) as client:
                response = await client.post(
                    self._status_url(profile.server_url),
                    content=canonical_json(body).encode("utf-8"),
                    headers={
                        "Content-Type": "application/json",
                        SIGNATURE_HEADER: signature,
                        TIMESTAMP_HEADER: str(timestamp),
                        NONCE_HEADER: nonce,
                    },
                )
        except httpx.TimeoutException:
            log.info("verifier.server_status.timeout", timeout=self._timeout)
            return VerificationResult.failure(
                "Your server did not respond in time",
                error="UPSTREAM_TIMEOUT",
            )
        except httpx.HTTPError as exc:
            log.info("verifier.server_status.unreachable", error_type=type(exc).__name__)
            return VerificationResult.failure(
                "Could not connect to your server",
                error="UPSTREAM_UNREACHABLE",
            )

        if not response.is_success:
            log.info("verifier.server_status.bad_status", status_code=response.status_code)
            return VerificationResult.failure(
                f"Your server responded with status {response.status_code}",
                error="UPSTREAM_STATUS",
            )

        # --- Step 5: Response shape ---
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if payload is None or not _response_validator.is_valid(payload):
            log.info("verifier.server_status.malformed_response")
            return VerificationResult.failure(
                "Your server returned a malformed response",
                error="MALFORMED_RESPONSE",
            )

        response_ts = int(payload["timestamp"])
        data: dict[str, Any] = payload["data"]

        # --- Step 6: Freshness ---
        now = int(self._clock().timestamp())
        if abs(now - response_ts) > self._max_skew:
            log.info("verifier.server_status.stale_response", skew=now - response_ts)
            return VerificationResult.failure(
                "Your server's response timestamp is too old or too far in the future",
                error="STALE_RESPONSE",
            )

        # --- Step 7: Signature ---
        response_payload = build_response_signature_payload(response_ts, data)
        if not verify_signature(response_payload, payload["signature"], secret):
            log.warning("verifier.server_status.signature_mismatch")
            return VerificationResult.failure(
                "Response signature verification failed",
                error="SIGNATURE_MISMATCH",
            )

        # --- Step 8: Replay ---
        if self._replay_guard is not None:
            # The accepted window spans max_skew on both sides of now.
            fresh = await self._replay_guard.check_and_remember(
                payload["signature"], ttl_seconds=self._max_skew * 2
            )
            if not fresh:
                log.warning("verifier.server_status.replayed_response")
                return VerificationResult.failure(
                    "This server response was already used",
                    error="REPLAYED_RESPONSE",
                )

        # --- Step 9: Required fields ---
        missing, false = check_required_fields(data, required)
        if missing:
            log.info("verifier.server_status.missing_fields", fields=missing)
            return VerificationResult.failure(
                f"Missing required fields: {', '.join(missing)}",
                error="MISSING_FIELDS",
                data=data,
            )
        if false:
            log.info("verifier.server_status.false_fields", fields=false)
            return VerificationResult.failure(
                f"Required fields are not enabled: {', '.join(false)}",
                error="FALSE_FIELDS",
                data=data,
            )

        log.info("verifier.server_status.passed", field_count=len(data))
        return VerificationResult(
            is_valid=True,
            message="Server status verified",
            data=data,
        )
