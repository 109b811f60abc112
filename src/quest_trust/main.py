"""FastAPI application entry point for the quest verification service.

Lifecycle:
    1. Startup: Initialize logging, crypto (fails without ENCRYPTION_KEY),
       database, the encrypted-key cache and, if enabled, the Redis replay guard.
    2. Running: Serve the REST API at /api/v1/* on a single Uvicorn process.
    3. Shutdown: Detach listeners, close database and Redis connections.

Run with:
    uv run uvicorn quest_trust.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from quest_trust.config import get_settings
from quest_trust.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Secrets at rest (raises MissingEncryptionKeyError without a key)
    from quest_trust.security.crypto import TrustTokenCrypto

    app.state.crypto = TrustTokenCrypto(
        settings.encryption_key_value,
        salt=settings.encryption_kdf_salt,
    )

    # 3. Initialize database
    from quest_trust.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 4. Encrypted-key cache, invalidated on SettingDefinition changes
    from quest_trust.services.tool_settings import EncryptedKeyCache, repository_key_loader

    key_cache = EncryptedKeyCache(repository_key_loader(get_session_factory()))
    key_cache.attach_invalidation_listeners()
    app.state.key_cache = key_cache

    # 5. Optional replay guard
    from quest_trust.infrastructure.redis_client import (
        RedisReplayGuard,
        close_redis,
        init_redis,
    )

    app.state.replay_guard = None
    if settings.replay_guard_enabled:
        app.state.replay_guard = RedisReplayGuard(await init_redis())
        logger.info("app.replay_guard_enabled")

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    key_cache.detach_invalidation_listeners()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Quest Trust",
        description=(
            "Verifies quest completion claims against external endpoints "
            "and records progress and rewards."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from quest_trust.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from quest_trust.api.routes.health import router as health_router
    from quest_trust.api.routes.quests import router as quests_router
    from quest_trust.api.routes.rewards import router as rewards_router
    from quest_trust.api.routes.server_config import router as server_config_router

    app.include_router(health_router)
    app.include_router(quests_router)
    app.include_router(server_config_router)
    app.include_router(rewards_router)

    return app


# The app instance used by Uvicorn
app = create_app()
