"""Per-user tool settings with transparent encryption.

Which keys are stored encrypted is configured in setting_definitions.
EncryptedKeyCache keeps that set in memory and is invalidated whenever a
SettingDefinition row is inserted, updated or deleted through the ORM.
ToolSettingsCodec reads and writes individual values, encrypting and
decrypting the configured keys.

serverVerificationToken is always encrypted, whatever the definitions say,
because the server-status verifier always decrypts it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy import event

from quest_trust.domain.exceptions import ClaimValidationError, DecryptionError
from quest_trust.infrastructure.database.orm_models import SettingDefinition
from quest_trust.infrastructure.database.repositories import (
    SettingDefinitionRepository,
    UserSettingsRepository,
)
from quest_trust.logging_config import get_logger
from quest_trust.security.crypto import is_encrypted, mask_secret

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from quest_trust.security.crypto import TrustTokenCrypto

logger = get_logger(__name__)

FALLBACK_ENCRYPTED_KEYS = frozenset({"geminiApiKey", "serverVerificationToken"})
ALWAYS_ENCRYPTED_KEYS = frozenset({"serverVerificationToken"})

KeyLoader = Callable[[], Awaitable[set[str]]]

_CHANGE_EVENTS = ("after_insert", "after_update", "after_delete")


def repository_key_loader(session_factory: async_sessionmaker[AsyncSession]) -> KeyLoader:
    """Build a loader that reads encrypted keys in its own short-lived session."""

    async def load() -> set[str]:
        async with session_factory() as session:
            return await SettingDefinitionRepository(session).get_encrypted_keys()

    return load


class EncryptedKeyCache:
    """Lazily loaded set of setting keys that must be stored encrypted.

    A failed load returns FALLBACK_ENCRYPTED_KEYS without caching it, so the
    next call tries the database again.
    """

    def __init__(self, loader: KeyLoader) -> None:
        self._loader = loader
        self._keys: frozenset[str] | None = None
        self._generation = 0
        self._listener = self._on_definition_changed

    async def get_keys(self) -> frozenset[str]:
        if self._keys is not None:
            return self._keys

        generation = self._generation
        try:
            loaded = await self._loader()
        except Exception:
            logger.warning("settings.encrypted_keys_load_failed", exc_info=True)
            return FALLBACK_ENCRYPTED_KEYS | ALWAYS_ENCRYPTED_KEYS

        keys = frozenset(loaded) | ALWAYS_ENCRYPTED_KEYS
        # An invalidation during the load makes this result stale.
        if generation == self._generation:
            self._keys = keys
        return keys

    def invalidate(self) -> None:
        self._keys = None
        self._generation += 1
        logger.debug("settings.encrypted_keys_invalidated")

    def _on_definition_changed(self, mapper, connection, target) -> None:  # noqa: ANN001
        self.invalidate()

    def attach_invalidation_listeners(self) -> None:
        for name in _CHANGE_EVENTS:
            if not event.contains(SettingDefinition, name, self._listener):
                event.listen(SettingDefinition, name, self._listener)

    def detach_invalidation_listeners(self) -> None:
        for name in _CHANGE_EVENTS:
            if event.contains(SettingDefinition, name, self._listener):
                event.remove(SettingDefinition, name, self._listener)


class ToolSettingsCodec:
    """Reads and writes values of a tool_settings dict."""

    def __init__(self, crypto: TrustTokenCrypto, key_cache: EncryptedKeyCache) -> None:
        self._crypto = crypto
        self._key_cache = key_cache

    def get(self, settings: dict[str, Any] | None, key: str) -> Any:
        """Return the plain value for ``key``; None if missing or undecryptable."""
        if not settings or key not in settings:
            return None
        value = settings[key]
        if not is_encrypted(value):
            return value
        try:
            return self._crypto.decrypt(value)
        except DecryptionError:
            logger.warning("settings.decrypt_failed", key=key)
            return None

    def has(self, settings: dict[str, Any] | None, key: str) -> bool:
        """True if ``key`` holds a usable value (not null, empty or false)."""
        if not settings or key not in settings:
            return False
        value = settings[key]
        if value is None or value == "" or value is False:
            return False
        if is_encrypted(value):
            return self.get(settings, key) not in (None, "")
        return True

    async def set(self, settings: dict[str, Any] | None, key: str, value: Any) -> dict[str, Any]:
        """Return a copy of ``settings`` with ``key`` set. None deletes the key."""
        updated = dict(settings or {})
        if value is None:
            updated.pop(key, None)
            return updated

        encrypted_keys = await self._key_cache.get_keys()
        if key in encrypted_keys and isinstance(value, str) and value != "":
            updated[key] = self._crypto.encrypt(value)
        else:
            updated[key] = value
        return updated

    async def set_many(
        self, settings: dict[str, Any] | None, updates: dict[str, Any]
    ) -> dict[str, Any]:
        updated = dict(settings or {})
        for key, value in updates.items():
            updated = await self.set(updated, key, value)
        return updated

    def masked(self, settings: dict[str, Any] | None, key: str) -> str | None:
        value = self.get(settings, key)
        if not isinstance(value, str) or not value:
            return None
        return mask_secret(value)

    async def public_view(self, settings: dict[str, Any] | None) -> dict[str, Any]:
        """Settings safe to return to the owner: encrypted values masked.

        The server verification token is left out; it has its own endpoints.
        """
        encrypted_keys = await self._key_cache.get_keys()
        view: dict[str, Any] = {}
        for key, value in (settings or {}).items():
            if key in ALWAYS_ENCRYPTED_KEYS:
                continue
            if key in encrypted_keys or is_encrypted(value):
                view[key] = self.masked(settings, key)
            else:
                view[key] = value
        return view


class ToolSettingsService:
    """Owner-facing read and update of a user's generic tool settings."""

    # Managed by ServerConfigService, which validates and issues them.
    reserved_keys = frozenset({"serverUrl", "serverVerificationToken", "serverTokenCreatedAt"})

    def __init__(self, session: AsyncSession, codec: ToolSettingsCodec) -> None:
        self._settings_repo = UserSettingsRepository(session)
        self._codec = codec

    async def get_view(self, user_id: int) -> dict[str, Any]:
        settings = await self._settings_repo.get_tool_settings(user_id)
        return await self._codec.public_view(settings)

    async def update(self, user_id: int, updates: dict[str, Any]) -> dict[str, Any]:
        """Merge ``updates``; a None value removes the key.

        Raises:
            ClaimValidationError: Reserved key or unsupported value type.
        """
        for key, value in updates.items():
            if key in self.reserved_keys:
                raise ClaimValidationError(f"Setting '{key}' cannot be changed here")
            if value is not None and not isinstance(value, str | bool | int | float):
                raise ClaimValidationError(f"Setting '{key}' must be a string, number or boolean")

        removed = [key for key, value in updates.items() if value is None]
        encoded = await self._codec.set_many(
            {}, {key: value for key, value in updates.items() if value is not None}
        )
        await self._settings_repo.update_tool_settings(user_id, encoded, remove=removed)
        logger.info(
            "settings.updated",
            user_id=user_id,
            keys=sorted(updates),
        )
        return await self.get_view(user_id)
