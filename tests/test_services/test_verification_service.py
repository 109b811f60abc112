"""End-to-end tests of VerificationService against SQLite.

The verifier factory is real; outbound calls go to a MockTransport.
"""

from __future__ import annotations

from datetime import datetime

import pytest

from quest_trust.domain.exceptions import QuestNotFoundError, VerificationConfigError
from quest_trust.infrastructure.database.orm_models import Quest, Reward
from quest_trust.infrastructure.database.repositories import (
    ProgressRepository,
    UserSettingsRepository,
)
from quest_trust.services.verification_service import VerificationService
from quest_trust.verifiers import VerifierFactory


@pytest.fixture
def make_service(session, crypto, settings, fixed_clock):
    def _make(transport=None) -> VerificationService:
        factory = VerifierFactory(
            profile_loader=UserSettingsRepository(session),
            crypto=crypto,
            settings=settings,
            transport=transport,
            clock=fixed_clock,
        )
        return VerificationService(session, factory)

    return _make


class TestVerifyClaim:
    @pytest.mark.asyncio
    async def test_unknown_quest(self, make_service, content) -> None:
        with pytest.raises(QuestNotFoundError):
            await make_service().verify_claim("no-such-quest", {}, 1)

    @pytest.mark.asyncio
    async def test_unknown_stored_type_is_config_error(
        self, session, make_service, content
    ) -> None:
        session.add(
            Quest(slug="odd", chapter_id=content["chapter"].id, verification_type="telepathy")
        )
        await session.flush()
        with pytest.raises(VerificationConfigError) as exc_info:
            await make_service().verify_claim("odd", {"confirmed": True}, 1)
        assert "telepathy" in exc_info.value.detail
        assert "telepathy" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_failed_verification_writes_nothing(self, session, make_service, content) -> None:
        outcome = await make_service().verify_claim("first", {}, 1)
        assert not outcome.success
        assert outcome.error == "NOT_CONFIRMED"
        assert await ProgressRepository(session).get(1, content["first"].id) is None

    @pytest.mark.asyncio
    async def test_success_records_progress_and_rewards(
        self, session, make_service, content
    ) -> None:
        session.add(
            Reward(
                slug="welcome-coins",
                type="coin",
                value=10,
                condition_type="quest",
                condition_config={"type": "quest", "questId": content["first"].id},
            )
        )
        await session.flush()

        outcome = await make_service().verify_claim("first", {"confirmed": True}, 1)

        assert outcome.success
        assert [r.slug for r in outcome.rewards] == ["welcome-coins"]
        progress = await ProgressRepository(session).get(1, content["first"].id)
        assert progress.status == "completed"
        assert progress.metadata_json["verificationType"] == "manual"

    @pytest.mark.asyncio
    async def test_persists_sanitized_claim(self, session, make_service, content) -> None:
        outcome = await make_service().verify_claim(
            "first", {"apiKey": "sk_live_x", "confirmed": True}, 1
        )

        assert outcome.success
        progress = await ProgressRepository(session).get(1, content["first"].id)
        metadata = dict(progress.metadata_json)
        verified_at = datetime.fromisoformat(metadata.pop("verifiedAt"))
        assert verified_at.tzinfo is not None
        assert metadata == {"confirmed": True, "verificationType": "manual"}

    @pytest.mark.asyncio
    async def test_claim_cannot_choose_verifier(self, make_service, content) -> None:
        outcome = await make_service().verify_claim(
            "first", {"verificationType": "webhook", "webhookUrl": "https://x.example"}, 1
        )
        assert outcome.error == "NOT_CONFIRMED"

    @pytest.mark.asyncio
    async def test_prerequisite_not_met(self, session, make_service, content) -> None:
        outcome = await make_service().verify_claim("second", {"confirmed": True}, 1)
        assert not outcome.success
        assert outcome.error == "PREREQUISITE_NOT_MET"
        assert await ProgressRepository(session).get(1, content["second"].id) is None

    @pytest.mark.asyncio
    async def test_server_status_end_to_end(
        self, session, make_service, content, crypto, server_token, status_server
    ) -> None:
        await UserSettingsRepository(session).update_tool_settings(
            1,
            {
                "serverUrl": "http://localhost:4003",
                "serverVerificationToken": crypto.encrypt(server_token),
            },
        )

        outcome = await make_service(status_server.transport()).verify_claim("server", {}, 1)

        assert outcome.success, outcome.message
        assert outcome.data == {"server": True, "database_connected": True}
        progress = await ProgressRepository(session).get(1, content["server"].id)
        assert set(progress.metadata_json) == {"verificationType", "verifiedAt"}
        assert progress.metadata_json["verificationType"] == "server_status"

    @pytest.mark.asyncio
    async def test_server_status_failure_returns_data(
        self, session, make_service, content, crypto, server_token, status_server
    ) -> None:
        await UserSettingsRepository(session).update_tool_settings(
            1,
            {
                "serverUrl": "http://localhost:4003",
                "serverVerificationToken": crypto.encrypt(server_token),
            },
        )
        status_server.data = {"server": True, "database_connected": False}

        outcome = await make_service(status_server.transport()).verify_claim("server", {}, 1)

        assert outcome.error == "FALSE_FIELDS"
        assert outcome.data == {"server": True, "database_connected": False}
