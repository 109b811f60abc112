"""Security primitives: outbound URL policy and secrets at rest."""

from quest_trust.security.crypto import TrustTokenCrypto
from quest_trust.security.url_guard import (
    DEV_TOLERANT_SERVER,
    STRICT_EXTERNAL,
    UrlCheck,
    UrlPolicy,
    validate_url,
)

__all__ = [
    "DEV_TOLERANT_SERVER",
    "STRICT_EXTERNAL",
    "TrustTokenCrypto",
    "UrlCheck",
    "UrlPolicy",
    "validate_url",
]
