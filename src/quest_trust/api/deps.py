"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
services, the resolved user id and configuration. Process-wide objects
(crypto, encrypted-key cache, replay guard) are created in the lifespan and
kept on ``app.state``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request

from quest_trust.config import Settings, get_settings
from quest_trust.domain.exceptions import AuthenticationRequiredError
from quest_trust.infrastructure.database.engine import get_async_session
from quest_trust.infrastructure.database.repositories import UserSettingsRepository
from quest_trust.services.reward_service import RewardEvaluator
from quest_trust.services.server_config_service import ServerConfigService
from quest_trust.services.tool_settings import (
    EncryptedKeyCache,
    ToolSettingsCodec,
    ToolSettingsService,
)
from quest_trust.services.verification_service import VerificationService
from quest_trust.verifiers import VerifierFactory

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import httpx
    from sqlalchemy.ext.asyncio import AsyncSession

    from quest_trust.domain.verifier_protocol import ReplayGuard
    from quest_trust.security.crypto import TrustTokenCrypto


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_current_user_id(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> int:
    """Resolve the authenticated user id set by the upstream auth layer."""
    raw = request.headers.get(settings.auth_user_header, "").strip()
    if not raw.isdigit() or int(raw) <= 0:
        raise AuthenticationRequiredError()
    return int(raw)


def get_crypto(request: Request) -> TrustTokenCrypto:
    return request.app.state.crypto


def get_key_cache(request: Request) -> EncryptedKeyCache:
    return request.app.state.key_cache


def get_replay_guard(request: Request) -> ReplayGuard | None:
    return getattr(request.app.state, "replay_guard", None)


def get_outbound_transport(request: Request) -> httpx.AsyncBaseTransport | None:
    """Transport for outbound calls; None uses httpx's default network transport."""
    return getattr(request.app.state, "outbound_transport", None)


def get_codec(
    crypto: TrustTokenCrypto = Depends(get_crypto),
    key_cache: EncryptedKeyCache = Depends(get_key_cache),
) -> ToolSettingsCodec:
    return ToolSettingsCodec(crypto, key_cache)


def get_verifier_factory(
    session: AsyncSession = Depends(get_db_session),
    crypto: TrustTokenCrypto = Depends(get_crypto),
    settings: Settings = Depends(get_app_settings),
    transport: httpx.AsyncBaseTransport | None = Depends(get_outbound_transport),
    replay_guard: ReplayGuard | None = Depends(get_replay_guard),
) -> VerifierFactory:
    return VerifierFactory(
        profile_loader=UserSettingsRepository(session),
        crypto=crypto,
        settings=settings,
        transport=transport,
        replay_guard=replay_guard,
    )


def get_verification_service(
    session: AsyncSession = Depends(get_db_session),
    factory: VerifierFactory = Depends(get_verifier_factory),
) -> VerificationService:
    return VerificationService(session, factory)


def get_server_config_service(
    session: AsyncSession = Depends(get_db_session),
    codec: ToolSettingsCodec = Depends(get_codec),
    settings: Settings = Depends(get_app_settings),
    transport: httpx.AsyncBaseTransport | None = Depends(get_outbound_transport),
) -> ServerConfigService:
    return ServerConfigService(
        session,
        codec,
        timeout=settings.outbound_timeout_seconds,
        status_path=settings.server_status_path,
        transport=transport,
    )


def get_tool_settings_service(
    session: AsyncSession = Depends(get_db_session),
    codec: ToolSettingsCodec = Depends(get_codec),
) -> ToolSettingsService:
    return ToolSettingsService(session, codec)


def get_reward_evaluator(
    session: AsyncSession = Depends(get_db_session),
) -> RewardEvaluator:
    return RewardEvaluator(session)
