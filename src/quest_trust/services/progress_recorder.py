"""Progress Recorder: persists a successful verification.

Enforces the prerequisite rule, strips anything secret-looking from the
claim data before it is stored, validates the status transition and writes
progress with a single upsert.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from quest_trust.domain.enums import ProgressStatus
from quest_trust.domain.exceptions import PrerequisiteNotMetError
from quest_trust.domain.state_machine import validate_transition
from quest_trust.infrastructure.database.repositories import ProgressRepository
from quest_trust.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from quest_trust.infrastructure.database.orm_models import Quest, UserQuestProgress

logger = get_logger(__name__)

SENSITIVE_KEY_MARKERS = (
    "apikey",
    "api_key",
    "token",
    "password",
    "secret",
    "credential",
    "key",
)


def is_sensitive_key(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


def sanitize_url(value: str) -> str | None:
    """Reduce a URL to ``scheme://host[:port]``, or None if it does not parse."""
    try:
        parts = urlsplit(value.strip())
        host = parts.hostname
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    origin = f"{parts.scheme.lower()}://{host}"
    if port is not None:
        origin += f":{port}"
    return origin


def sanitize_metadata(
    data: dict[str, Any] | None,
    verification_type: str,
    verified_at: datetime,
) -> dict[str, Any]:
    """Build the metadata stored with a completed quest.

    Keeps booleans, finite numbers and reduced URL origins. Drops every key
    that looks secret and every other value. ``verificationType`` and
    ``verifiedAt`` are written last and cannot be overridden by the claim.
    """
    sanitized: dict[str, Any] = {}
    for key, value in (data or {}).items():
        if not isinstance(key, str) or is_sensitive_key(key):
            continue
        if "url" in key.lower() and isinstance(value, str):
            origin = sanitize_url(value)
            if origin is not None:
                sanitized[key] = origin
        elif isinstance(value, bool):
            sanitized[key] = value
        elif isinstance(value, int | float) and math.isfinite(value):
            sanitized[key] = value

    sanitized["verificationType"] = verification_type
    sanitized["verifiedAt"] = verified_at.isoformat()
    return sanitized


class ProgressRecorder:
    """Writes user_quest_progress rows for verified claims."""

    def __init__(self, session: AsyncSession) -> None:
        self._progress_repo = ProgressRepository(session)

    async def check_prerequisite(self, user_id: int, quest: Quest) -> None:
        """Raise PrerequisiteNotMetError unless the prerequisite is completed."""
        if quest.prerequisite_quest_id is None:
            return
        prerequisite = await self._progress_repo.get(user_id, quest.prerequisite_quest_id)
        if prerequisite is None or prerequisite.status != ProgressStatus.COMPLETED:
            logger.info(
                "progress.prerequisite_not_met",
                user_id=user_id,
                quest_id=quest.id,
                prerequisite_quest_id=quest.prerequisite_quest_id,
            )
            raise PrerequisiteNotMetError(quest.slug, quest.prerequisite_quest_id)

    async def record_completion(
        self,
        user_id: int,
        quest: Quest,
        data: dict[str, Any] | None,
        verification_type: str,
        now: datetime | None = None,
    ) -> UserQuestProgress:
        """Mark the quest completed for the user.

        Raises:
            PrerequisiteNotMetError: Nothing is written in that case.
        """
        await self.check_prerequisite(user_id, quest)

        existing = await self._progress_repo.get(user_id, quest.id)
        current = existing.status if existing is not None else ProgressStatus.LOCKED.value
        new_status = validate_transition(current, "complete")

        completed_at = now or datetime.now(UTC)
        metadata = sanitize_metadata(data, verification_type, completed_at)
        progress = await self._progress_repo.upsert_completed(
            user_id=user_id,
            quest_id=quest.id,
            metadata=metadata,
            completed_at=completed_at,
        )

        logger.info(
            "progress.recorded",
            user_id=user_id,
            quest_id=quest.id,
            old_status=current,
            new_status=new_status,
            metadata_keys=sorted(metadata),
        )
        return progress
