"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware: injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware: catches domain exceptions -> structured JSON errors
    3. CORSMiddleware: handles browser clients of the dashboard

Failed verifications are not errors: they come back from the route as
HTTP 200 with success=false and never reach this layer.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from quest_trust.config import get_settings
from quest_trust.domain.exceptions import (
    AuthenticationRequiredError,
    ClaimValidationError,
    InvalidStateTransitionError,
    QuestNotFoundError,
    QuestTrustError,
    VerificationConfigError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def _error_response(status_code: int, exc: QuestTrustError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message},
    )


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except ClaimValidationError as exc:
            logger.info("request.invalid", error=exc.message)
            return _error_response(400, exc)
        except AuthenticationRequiredError as exc:
            logger.info("auth.required", path=request.url.path)
            return _error_response(401, exc)
        except QuestNotFoundError as exc:
            logger.warning("quest.not_found", quest_slug=exc.quest_slug)
            return _error_response(404, exc)
        except VerificationConfigError as exc:
            # The detail names the broken config; the client only gets the generic message.
            logger.error("quest.misconfigured", detail=exc.detail)
            return _error_response(500, exc)
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted_event,
            )
            return _error_response(409, exc)
        except QuestTrustError as exc:
            logger.error("domain.error", error=exc.message, code=exc.code)
            return _error_response(400, exc)
        except Exception:
            logger.exception("unhandled.error")
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters: middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    settings = get_settings()
    origins = settings.cors_origin_list

    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
