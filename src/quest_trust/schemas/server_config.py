"""Pydantic schemas for the user's server configuration and tool settings."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from quest_trust.schemas.base import CamelModel


class ServerConfigResponse(CamelModel):
    server_url: str | None = None
    has_token: bool = False
    token_created_at: datetime | None = None


class UpdateServerConfigRequest(CamelModel):
    server_url: str | None = Field(
        default=None,
        max_length=2048,
        description="Base URL of the user's server; null or empty clears it",
        examples=["https://my-saas.example.com"],
    )


class IssueTokenResponse(CamelModel):
    success: bool = True
    token: str = Field(description="Plaintext token. Shown once; store it on your server.")
    created_at: datetime
    message: str = "Token generated. Save it now; it will not be shown again."


class ConnectionCheckRequest(CamelModel):
    server_url: str = Field(..., min_length=1, max_length=2048)


class ConnectionCheckResponse(CamelModel):
    success: bool
    message: str
    status: int | None = None


class ToolSettingsResponse(CamelModel):
    tool_settings: dict[str, Any] = Field(
        default_factory=dict,
        description="Tool settings with encrypted values masked",
    )


class UpdateToolSettingsRequest(CamelModel):
    tool_settings: dict[str, str | bool | int | float | None] = Field(
        ...,
        description="Settings to merge; null removes a key",
    )
