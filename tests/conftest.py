"""Shared test fixtures for the Quest Trust test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with the full schema
    - Seeded content: one book, one chapter, a few quests
    - A TrustTokenCrypto instance and a fixed clock
    - A simulated user server for server_status verification
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from quest_trust.config import Settings
from quest_trust.infrastructure.database.orm_models import Base, Book, Chapter, Quest
from quest_trust.security.crypto import (
    TrustTokenCrypto,
    build_request_signature_payload,
    build_response_signature_payload,
    sign,
    verify_signature,
)

TEST_ENCRYPTION_KEY = "test-encryption-key"
FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Core Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def crypto() -> TrustTokenCrypto:
    """Scrypt is slow on purpose, so derive the key once per run."""
    return TrustTokenCrypto(TEST_ENCRYPTION_KEY)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        encryption_key=TEST_ENCRYPTION_KEY,
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    await engine.dispose()


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def content(session: AsyncSession) -> dict[str, Any]:
    """One book with one chapter of three quests.

    ``second`` requires ``first``; ``server`` is a server_status quest.
    """
    book = Book(slug="launch", title={"en": "Launch"})
    session.add(book)
    await session.flush()
    chapter = Chapter(slug="basics", title={"en": "Basics"}, book_id=book.id)
    session.add(chapter)
    await session.flush()

    first = Quest(slug="first", chapter_id=chapter.id, verification_type="manual")
    session.add(first)
    await session.flush()
    second = Quest(
        slug="second",
        chapter_id=chapter.id,
        verification_type="manual",
        prerequisite_quest_id=first.id,
    )
    server = Quest(
        slug="server",
        chapter_id=chapter.id,
        verification_type="server_status",
        verification_config={"requiredFields": ["database_connected"]},
    )
    session.add_all([second, server])
    await session.commit()

    return {"book": book, "chapter": chapter, "first": first, "second": second, "server": server}


# ---------------------------------------------------------------------------
# Simulated user server
# ---------------------------------------------------------------------------


class SignedStatusServer:
    """MockTransport handler implementing the signed status endpoint.

    Records every request it receives. Attributes may be changed by a test to
    make the server misbehave.
    """

    def __init__(self, token: str, now: datetime = FIXED_NOW) -> None:
        self.token = token
        self.signing_secret = token
        self.timestamp = int(now.timestamp())
        self.data: dict[str, Any] = {"server": True, "database_connected": True}
        self.requests: list[httpx.Request] = []
        self.request_signature_ok: bool | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        ts = int(request.headers["X-SaaS-Quest-Timestamp"])
        nonce = request.headers["X-SaaS-Quest-Nonce"]
        body = json.loads(request.content)
        self.request_signature_ok = verify_signature(
            build_request_signature_payload(ts, nonce, body),
            request.headers["X-SaaS-Quest-Signature"],
            self.token,
        )
        if not self.request_signature_ok:
            return httpx.Response(401, json={"error": "Invalid signature"})

        payload = build_response_signature_payload(self.timestamp, self.data)
        return httpx.Response(
            200,
            json={
                "signature": sign(payload, self.signing_secret),
                "timestamp": self.timestamp,
                "data": self.data,
            },
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def server_token() -> str:
    return "a" * 64


@pytest.fixture
def status_server(server_token: str) -> SignedStatusServer:
    return SignedStatusServer(server_token)
