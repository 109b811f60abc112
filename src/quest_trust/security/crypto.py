"""TrustTokenCrypto: secrets at rest and HMAC signing for server challenges.

At-rest envelope (AES-256-GCM, key derived with scrypt from ENCRYPTION_KEY):

    encrypted:<hex iv>:<hex tag>:<hex ciphertext>     current, 96-bit IV
    <hex iv>:<hex tag>:<hex ciphertext>               legacy, 128-bit IV

Both forms go through ``decode_envelope``. Legacy values still decrypt and
are logged so their remaining reach can be measured before removal.

Signing payloads are built from compact JSON (no spaces, insertion order,
non-ASCII kept as-is) so that peers using ``JSON.stringify`` agree byte for
byte.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from typing import Any, Literal

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from quest_trust.domain.exceptions import DecryptionError, MissingEncryptionKeyError
from quest_trust.logging_config import get_logger

logger = get_logger(__name__)

ENVELOPE_PREFIX = "encrypted:"
IV_BYTES = 12
LEGACY_IV_BYTES = 16
TAG_BYTES = 16

SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1
KEY_BYTES = 32


@dataclass(frozen=True)
class Envelope:
    """A parsed at-rest envelope."""

    version: Literal["v1", "legacy"]
    iv: bytes
    tag: bytes
    ciphertext: bytes


def is_encrypted(value: object) -> bool:
    """True if ``value`` carries the current envelope prefix."""
    return isinstance(value, str) and value.startswith(ENVELOPE_PREFIX)


def decode_envelope(value: str) -> Envelope:
    """Parse either envelope form without decrypting it.

    Raises:
        DecryptionError: Wrong part count, bad hex or bad IV/tag length.
    """
    if not isinstance(value, str):
        raise DecryptionError("Invalid encrypted value format")

    if value.startswith(ENVELOPE_PREFIX):
        version: Literal["v1", "legacy"] = "v1"
        body = value[len(ENVELOPE_PREFIX):]
    else:
        version = "legacy"
        body = value

    parts = body.split(":")
    if len(parts) != 3:
        raise DecryptionError("Invalid encrypted value format")
    iv_hex, tag_hex, ct_hex = parts
    if not iv_hex or not tag_hex or (version == "legacy" and not ct_hex):
        raise DecryptionError("Invalid encrypted value format")

    try:
        iv = bytes.fromhex(iv_hex)
        tag = bytes.fromhex(tag_hex)
        ciphertext = bytes.fromhex(ct_hex)
    except ValueError as err:
        raise DecryptionError("Invalid encrypted value format") from err

    if len(iv) not in (IV_BYTES, LEGACY_IV_BYTES):
        raise DecryptionError("Invalid encrypted value format")
    if len(tag) != TAG_BYTES:
        raise DecryptionError("Invalid encrypted value format")

    return Envelope(version=version, iv=iv, tag=tag, ciphertext=ciphertext)


def canonical_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def build_request_signature_payload(timestamp: int, nonce: str, body: dict) -> str:
    return f"{timestamp}.{nonce}.{canonical_json(body)}"


def build_response_signature_payload(timestamp: int, data: dict) -> str:
    return f"{timestamp}.{canonical_json(data)}"


def sign(payload: str, secret: str) -> str:
    """Hex HMAC-SHA256 of ``payload`` under ``secret``."""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(payload: str, signature: object, secret: str) -> bool:
    """Constant-time comparison of ``signature`` against the expected HMAC."""
    if not isinstance(signature, str):
        return False
    try:
        given = signature.encode("ascii")
    except UnicodeEncodeError:
        return False
    expected = sign(payload, secret).encode("ascii")
    return hmac.compare_digest(given, expected)


def generate_nonce() -> str:
    return secrets.token_hex(16)


def generate_verification_token() -> str:
    return secrets.token_hex(32)


def mask_secret(value: str) -> str:
    """Display form of a secret: ``abcd...xyz``, or ``****`` when short."""
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}...{value[-3:]}"


class TrustTokenCrypto:
    """Symmetric encryption of stored secrets.

    One instance is built at startup from the process-wide secret and shared
    by every request. The derived key never leaves the instance.
    """

    def __init__(self, base_secret: str | None, salt: str = "saas-quest-salt") -> None:
        if not base_secret:
            raise MissingEncryptionKeyError()
        kdf = Scrypt(
            salt=salt.encode("utf-8"),
            length=KEY_BYTES,
            n=SCRYPT_N,
            r=SCRYPT_R,
            p=SCRYPT_P,
        )
        self._aead = AESGCM(kdf.derive(base_secret.encode("utf-8")))

    def encrypt(self, plaintext: str) -> str:
        iv = secrets.token_bytes(IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{ENVELOPE_PREFIX}{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, value: str) -> str:
        """Decrypt an envelope of either version.

        Raises:
            DecryptionError: Malformed envelope, tag mismatch or non-UTF-8
                plaintext. The cause is never included in the message.
        """
        envelope = decode_envelope(value)
        try:
            plaintext = self._aead.decrypt(envelope.iv, envelope.ciphertext + envelope.tag, None)
        except InvalidTag as err:
            raise DecryptionError() from err

        try:
            text = plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise DecryptionError() from err

        if envelope.version == "legacy":
            logger.info("crypto.legacy_envelope_decrypted", iv_bytes=len(envelope.iv))
        return text

    # Signing helpers exposed on the instance for callers holding only the crypto object.
    sign = staticmethod(sign)
    verify = staticmethod(verify_signature)
