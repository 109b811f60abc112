"""Server Config Service: the user's server URL and verification token.

The server URL is stored in plaintext and must pass the DEV_TOLERANT_SERVER
policy on write. The verification token is generated here, stored encrypted
and returned in plaintext exactly once, at issuance.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import httpx

from quest_trust.domain.exceptions import ClaimValidationError
from quest_trust.infrastructure.database.repositories import UserSettingsRepository
from quest_trust.logging_config import get_logger
from quest_trust.security.crypto import generate_verification_token
from quest_trust.security.url_guard import DEV_TOLERANT_SERVER

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from quest_trust.services.tool_settings import ToolSettingsCodec

logger = get_logger(__name__)

SERVER_URL_KEY = "serverUrl"
TOKEN_KEY = "serverVerificationToken"
TOKEN_CREATED_AT_KEY = "serverTokenCreatedAt"


@dataclass(frozen=True)
class ServerConfigView:
    server_url: str | None
    has_token: bool
    token_created_at: datetime | None


@dataclass(frozen=True)
class IssuedToken:
    token: str
    created_at: datetime


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    message: str
    status_code: int | None = None


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class ServerConfigService:
    """Reads and updates the server settings used by server_status quests."""

    def __init__(
        self,
        session: AsyncSession,
        codec: ToolSettingsCodec,
        *,
        timeout: float = 10.0,
        status_path: str = "/api/saas-quest/status",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings_repo = UserSettingsRepository(session)
        self._codec = codec
        self._timeout = timeout
        self._status_path = status_path
        self._transport = transport

    async def get_config(self, user_id: int) -> ServerConfigView:
        settings = await self._settings_repo.get_tool_settings(user_id)
        server_url = self._codec.get(settings, SERVER_URL_KEY)
        return ServerConfigView(
            server_url=server_url if isinstance(server_url, str) and server_url else None,
            has_token=self._codec.has(settings, TOKEN_KEY),
            token_created_at=_parse_timestamp(settings.get(TOKEN_CREATED_AT_KEY)),
        )

    async def update_server_url(self, user_id: int, server_url: str | None) -> ServerConfigView:
        """Store or clear the server URL.

        Raises:
            ClaimValidationError: If the URL fails the server URL policy.
        """
        if server_url:
            check = DEV_TOLERANT_SERVER.validate(server_url)
            if not check.ok:
                logger.info("server_config.url_rejected", user_id=user_id)
                raise ClaimValidationError(check.reason)
            updates = await self._codec.set({}, SERVER_URL_KEY, server_url.strip())
            await self._settings_repo.update_tool_settings(user_id, updates)
        else:
            await self._settings_repo.update_tool_settings(user_id, {}, remove=[SERVER_URL_KEY])

        logger.info("server_config.url_updated", user_id=user_id, cleared=not server_url)
        return await self.get_config(user_id)

    async def issue_token(self, user_id: int, now: datetime | None = None) -> IssuedToken:
        """Generate a fresh verification token, replacing any previous one."""
        created_at = now or datetime.now(UTC)
        token = generate_verification_token()
        updates = await self._codec.set_many(
            {},
            {TOKEN_KEY: token, TOKEN_CREATED_AT_KEY: created_at.isoformat()},
        )
        await self._settings_repo.update_tool_settings(user_id, updates)
        logger.info("server_config.token_issued", user_id=user_id)
        return IssuedToken(token=token, created_at=created_at)

    async def test_connection(self, server_url: str) -> ConnectionTestResult:
        """Unsigned reachability probe of the status endpoint.

        Raises:
            ClaimValidationError: If the URL fails the server URL policy.
        """
        check = DEV_TOLERANT_SERVER.validate(server_url)
        if not check.ok:
            raise ClaimValidationError(check.reason)

        parts = urlsplit(server_url.strip())
        target = f"{parts.scheme}://{parts.netloc}{self._status_path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=False,
            ) as client:
                response = await client.get(target, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            logger.info("server_config.connection_failed", error_type=type(exc).__name__)
            return ConnectionTestResult(success=False, message="Failed to connect to the server")

        if response.is_success:
            return ConnectionTestResult(
                success=True,
                message="Server is reachable",
                status_code=response.status_code,
            )
        return ConnectionTestResult(
            success=False,
            message=f"Server responded with status {response.status_code}",
            status_code=response.status_code,
        )
