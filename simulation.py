#!/usr/bin/env python3
"""Quest Trust: End-to-End Simulation.

Runs the verification pipeline against an in-memory SQLite database and a
simulated user server (an httpx.MockTransport that signs its responses with
the user's verification token). No network access is needed.

    Scenario 1: Manual quest
        - User confirms the first quest -> completed, badge granted

    Scenario 2: Server status, happy path
        - User issues a token and registers a localhost server
        - Server answers the signed challenge -> completed, coins credited

    Scenario 3: Forged and stale server responses
        - Server signs with the wrong secret -> signature verification fails
        - Server replays an old timestamp -> stale response rejected

    Scenario 4: SSRF attempts
        - Webhook pointed at the cloud metadata address -> rejected before any call
        - Server URL pointed at a private network -> rejected on save

Usage:
    uv run python simulation.py
    uv run python simulation.py --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from quest_trust.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

USER_ID = 1
SIMULATION_SECRET = "simulation-encryption-key"

# Module-level state
_engine = None
_session_factory = None
_crypto = None
_key_cache = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database() -> None:
    """Create an in-memory SQLite database and seed content."""
    global _engine, _session_factory, _crypto, _key_cache

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import StaticPool

    from quest_trust.infrastructure.database.orm_models import Base
    from quest_trust.security.crypto import TrustTokenCrypto
    from quest_trust.services.tool_settings import EncryptedKeyCache, repository_key_loader

    _engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    _crypto = TrustTokenCrypto(SIMULATION_SECRET)
    _key_cache = EncryptedKeyCache(repository_key_loader(_session_factory))
    _key_cache.attach_invalidation_listeners()

    await seed_content()
    logger.info("database.sqlite_initialized")


async def shutdown_database() -> None:
    global _engine, _session_factory
    if _key_cache is not None:
        _key_cache.detach_invalidation_listeners()
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def seed_content() -> None:
    """One book, one chapter, three quests and three rewards."""
    from quest_trust.infrastructure.database.orm_models import (
        Book,
        Chapter,
        Quest,
        Reward,
        SettingDefinition,
    )

    async with _session_factory() as session:
        book = Book(slug="launch", title={"en": "Launch your SaaS"})
        session.add(book)
        await session.flush()
        chapter = Chapter(slug="foundations", title={"en": "Foundations"}, book_id=book.id)
        session.add(chapter)
        await session.flush()

        welcome = Quest(
            slug="welcome",
            title={"en": "Welcome"},
            chapter_id=chapter.id,
            verification_type="manual",
        )
        session.add(welcome)
        await session.flush()
        server = Quest(
            slug="server-online",
            title={"en": "Bring your server online"},
            chapter_id=chapter.id,
            prerequisite_quest_id=welcome.id,
            verification_type="server_status",
            verification_config={"requiredFields": ["server", "database_connected"]},
        )
        webhook = Quest(
            slug="webhook",
            title={"en": "Receive a webhook"},
            chapter_id=chapter.id,
            verification_type="webhook",
        )
        session.add_all([server, webhook])
        await session.flush()

        session.add_all(
            [
                Reward(
                    slug="first-steps",
                    title={"en": "First steps"},
                    type="badge",
                    value=0,
                    condition_type="quest",
                    condition_config={"type": "quest", "questId": welcome.id},
                ),
                Reward(
                    slug="server-bonus",
                    title={"en": "Server bonus"},
                    type="coin",
                    value=100,
                    condition_type="quest",
                    condition_config={"type": "quest", "questId": server.id},
                ),
                Reward(
                    slug="foundations-complete",
                    title={"en": "Foundations complete"},
                    type="perk",
                    value=0,
                    condition_type="chapter",
                    condition_config={"type": "chapter", "chapterId": chapter.id},
                ),
                SettingDefinition(key="geminiApiKey", is_encrypted=True),
            ]
        )
        await session.commit()


# ---------------------------------------------------------------------------
# Simulated user server
# ---------------------------------------------------------------------------
@dataclass
class SimulatedUserServer:
    """A user's server implementing the signed status endpoint.

    Checks the request signature, then answers with a signed status object.
    ``signing_secret`` and ``clock_offset`` let scenarios misbehave.
    """

    token: str
    status: dict[str, Any] = field(
        default_factory=lambda: {
            "server": True,
            "database_connected": True,
            "environment": "development",
            "version": "1.0.0",
        }
    )
    signing_secret: str | None = None
    clock_offset: int = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        from quest_trust.security.crypto import (
            build_request_signature_payload,
            build_response_signature_payload,
            sign,
            verify_signature,
        )

        if request.url.path != "/api/saas-quest/status":
            return httpx.Response(404, json={"error": "Not found"})

        timestamp = int(request.headers["X-SaaS-Quest-Timestamp"])
        nonce = request.headers["X-SaaS-Quest-Nonce"]
        body = json.loads(request.content)
        signed = build_request_signature_payload(timestamp, nonce, body)
        if not verify_signature(signed, request.headers["X-SaaS-Quest-Signature"], self.token):
            return httpx.Response(401, json={"error": "Invalid signature"})

        response_ts = int(time.time()) + self.clock_offset
        payload = build_response_signature_payload(response_ts, self.status)
        return httpx.Response(
            200,
            json={
                "signature": sign(payload, self.signing_secret or self.token),
                "timestamp": response_ts,
                "data": self.status,
            },
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    print("\n" + "=" * 70)
    print(f"  {text}")
    print("=" * 70)


def section(text: str) -> None:
    print(f"\n--- {text} ---")


def print_outcome(outcome: Any) -> None:
    status = "PASS" if outcome.success else "FAIL"
    print(f"  [{status}] {outcome.message}")
    if outcome.error:
        print(f"  error:   {outcome.error}")
    for reward in outcome.rewards:
        print(f"  reward:  {reward.slug} ({reward.type}, value={reward.value})")
    if outcome.data is not None:
        print(f"  data:    {outcome.data}")


async def claim(
    quest_slug: str,
    data: dict[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
):
    """Run one claim in its own session, committing like a request would."""
    from quest_trust.config import Settings
    from quest_trust.infrastructure.database.repositories import UserSettingsRepository
    from quest_trust.services.verification_service import VerificationService
    from quest_trust.verifiers import VerifierFactory

    async with _session_factory() as session:
        factory = VerifierFactory(
            profile_loader=UserSettingsRepository(session),
            crypto=_crypto,
            settings=Settings(encryption_key=SIMULATION_SECRET),
            transport=transport,
        )
        outcome = await VerificationService(session, factory).verify_claim(
            quest_slug, data, USER_ID
        )
        await session.commit()
    return outcome


async def configure_server(server_url: str) -> str:
    """Save the server URL and issue a token. Returns the plaintext token."""
    from quest_trust.services.server_config_service import ServerConfigService
    from quest_trust.services.tool_settings import ToolSettingsCodec

    async with _session_factory() as session:
        service = ServerConfigService(session, ToolSettingsCodec(_crypto, _key_cache))
        await service.update_server_url(USER_ID, server_url)
        issued = await service.issue_token(USER_ID)
        await session.commit()
    return issued.token


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------
async def scenario_1_manual() -> None:
    banner("SCENARIO 1: Manual quest")

    section("Claim without confirming")
    print_outcome(await claim("welcome", {}))

    section("Claim with confirmed=true")
    print_outcome(await claim("welcome", {"confirmed": True}))

    section("Claim again (no duplicate rewards)")
    print_outcome(await claim("welcome", {"confirmed": True}))


async def scenario_2_server_status() -> None:
    banner("SCENARIO 2: Server status, happy path")
    await claim("welcome", {"confirmed": True})

    token = await configure_server("http://localhost:4003")
    print(f"  issued token: {token[:8]}... (shown once)")
    server = SimulatedUserServer(token=token)

    section("Server reports every required field")
    print_outcome(await claim("server-online", {}, transport=server.transport()))

    from quest_trust.services.reward_service import RewardEvaluator

    async with _session_factory() as session:
        coins = await RewardEvaluator(session).get_user_coins(USER_ID)
    print(f"  coin balance: {coins}")


async def scenario_3_forged_responses() -> None:
    banner("SCENARIO 3: Forged and stale server responses")
    await claim("welcome", {"confirmed": True})
    token = await configure_server("http://localhost:4003")

    section("Response signed with the wrong secret")
    forged = SimulatedUserServer(token=token, signing_secret="not-the-token")
    print_outcome(await claim("server-online", {}, transport=forged.transport()))

    section("Response timestamp ten minutes old")
    stale = SimulatedUserServer(token=token, clock_offset=-600)
    print_outcome(await claim("server-online", {}, transport=stale.transport()))

    section("Required field reported as false")
    degraded = SimulatedUserServer(token=token)
    degraded.status["database_connected"] = False
    print_outcome(await claim("server-online", {}, transport=degraded.transport()))


async def scenario_4_ssrf() -> None:
    banner("SCENARIO 4: SSRF attempts")

    def refuse(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected outbound call to {request.url}")

    section("Webhook at the cloud metadata address")
    print_outcome(
        await claim(
            "webhook",
            {"webhookUrl": "https://169.254.169.254/latest/meta-data"},
            transport=httpx.MockTransport(refuse),
        )
    )

    section("Server URL on a private network")
    from quest_trust.domain.exceptions import ClaimValidationError

    try:
        await configure_server("https://10.0.0.5")
    except ClaimValidationError as exc:
        print(f"  [REJECTED] {exc.message}")


async def run_all() -> None:
    """Run all scenarios sequentially, each on a fresh database."""
    print("\n" + "#" * 70)
    print("  QUEST TRUST SIMULATION")
    print("  Database: SQLite (in-memory)")
    print("#" * 70 + "\n")

    for scenario in SCENARIOS.values():
        await init_database()
        try:
            await scenario()
        finally:
            await shutdown_database()

    print("\n" + "=" * 70)
    print("  ALL SCENARIOS COMPLETED")
    print("=" * 70 + "\n")


async def run_scenario(num: int) -> None:
    """Run a specific scenario."""
    if num not in SCENARIOS:
        print(f"Unknown scenario {num}. Available: {', '.join(map(str, SCENARIOS))}")
        return
    await init_database()
    try:
        await SCENARIOS[num]()
    finally:
        await shutdown_database()


SCENARIOS = {
    1: scenario_1_manual,
    2: scenario_2_server_status,
    3: scenario_3_forged_responses,
    4: scenario_4_ssrf,
}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Quest Trust Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-4). Default: run all.",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all())
    else:
        asyncio.run(run_scenario(args.scenario))
