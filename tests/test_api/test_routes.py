"""HTTP-level tests of the REST API.

The app is served in-process through httpx.ASGITransport. The lifespan is
not run; the objects it would create are placed on ``app.state`` and the
database session dependency is overridden with the SQLite test session.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from quest_trust.api.deps import get_app_settings, get_db_session
from quest_trust.infrastructure.database.orm_models import Reward
from quest_trust.main import create_app
from quest_trust.services.tool_settings import EncryptedKeyCache

USER = {"X-User-ID": "1"}


async def _no_extra_keys() -> set[str]:
    return set()


@pytest.fixture
def app(session, crypto, settings):
    app = create_app()

    async def override_session() -> AsyncGenerator:
        yield session

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.state.crypto = crypto
    app.state.key_cache = EncryptedKeyCache(_no_extra_keys)
    app.state.replay_guard = None
    app.state.outbound_transport = None
    return app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


class TestAuthentication:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"X-User-ID": "abc"}, {"X-User-ID": "0"}])
    async def test_missing_or_bad_user_is_401(self, client, content, headers) -> None:
        response = await client.post(
            "/api/v1/quests/verify",
            json={"questSlug": "first", "data": {"confirmed": True}},
            headers=headers,
        )
        assert response.status_code == 401
        assert response.json()["error"] == "AUTHENTICATION_REQUIRED"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client) -> None:
        response = await client.get(
            "/api/v1/rewards/currency", headers={**USER, "X-Request-ID": "req-123"}
        )
        assert response.headers["X-Request-ID"] == "req-123"


class TestVerifyQuest:
    @pytest.mark.asyncio
    async def test_success_with_reward(self, client, session, content) -> None:
        session.add(
            Reward(
                slug="first-coins",
                title={"en": "First coins"},
                type="coin",
                value=20,
                condition_type="quest",
                condition_config={"type": "quest", "questId": content["first"].id},
            )
        )
        await session.flush()

        response = await client.post(
            "/api/v1/quests/verify",
            json={"questSlug": "first", "data": {"confirmed": True}},
            headers=USER,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["rewards"][0]["slug"] == "first-coins"
        assert "error" not in body

        balance = await client.get("/api/v1/rewards/currency", headers=USER)
        assert balance.json() == {"coins": 20}

    @pytest.mark.asyncio
    async def test_failed_verification_is_200(self, client, content) -> None:
        response = await client.post(
            "/api/v1/quests/verify",
            json={"questSlug": "first", "data": {"confirmed": False}},
            headers=USER,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "NOT_CONFIRMED"

    @pytest.mark.asyncio
    async def test_unknown_quest_is_404(self, client, content) -> None:
        response = await client.post(
            "/api/v1/quests/verify", json={"questSlug": "nope"}, headers=USER
        )
        assert response.status_code == 404
        assert response.json()["error"] == "QUEST_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_missing_slug_is_422(self, client) -> None:
        response = await client.post("/api/v1/quests/verify", json={"data": {}}, headers=USER)
        assert response.status_code == 422


class TestServerConfigRoutes:
    @pytest.mark.asyncio
    async def test_set_url_issue_token_and_read_back(self, client) -> None:
        response = await client.put(
            "/api/v1/user/server-config",
            json={"serverUrl": "http://localhost:4003"},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["serverUrl"] == "http://localhost:4003"
        assert response.json()["hasToken"] is False

        issued = await client.post("/api/v1/user/server-config/token", headers=USER)
        assert issued.status_code == 200
        token = issued.json()["token"]
        assert len(token) == 64

        config = await client.get("/api/v1/user/server-config", headers=USER)
        assert config.json()["hasToken"] is True
        assert token not in config.text

    @pytest.mark.asyncio
    async def test_private_url_is_400(self, client) -> None:
        response = await client.put(
            "/api/v1/user/server-config",
            json={"serverUrl": "https://192.168.1.10"},
            headers=USER,
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert "192.168.1.10" in body["message"]

    @pytest.mark.asyncio
    async def test_connection_probe(self, app, client) -> None:
        app.state.outbound_transport = httpx.MockTransport(lambda request: httpx.Response(204))
        response = await client.post(
            "/api/v1/user/server-config/test",
            json={"serverUrl": "http://localhost:4003"},
            headers=USER,
        )
        assert response.json() == {"success": True, "message": "Server is reachable", "status": 204}


class TestToolSettingsRoutes:
    @pytest.mark.asyncio
    async def test_update_and_read(self, client) -> None:
        response = await client.put(
            "/api/v1/user/tool-settings",
            json={"toolSettings": {"theme": "dark"}},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json() == {"toolSettings": {"theme": "dark"}}

        read = await client.get("/api/v1/user/tool-settings", headers=USER)
        assert read.json() == {"toolSettings": {"theme": "dark"}}

    @pytest.mark.asyncio
    async def test_reserved_key_is_400(self, client) -> None:
        response = await client.put(
            "/api/v1/user/tool-settings",
            json={"toolSettings": {"serverUrl": "https://evil.example"}},
            headers=USER,
        )
        assert response.status_code == 400


class TestRewardRoutes:
    @pytest.mark.asyncio
    async def test_list_rewards(self, client, session, content) -> None:
        session.add(
            Reward(
                slug="badge",
                type="badge",
                value=0,
                condition_type="quest",
                condition_config={"type": "quest", "questId": content["first"].id},
            )
        )
        await session.flush()

        response = await client.get("/api/v1/rewards", headers=USER)
        assert response.status_code == 200
        assert response.json()[0]["slug"] == "badge"
        assert response.json()[0]["earned"] is False
