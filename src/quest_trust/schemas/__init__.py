"""Pydantic API schemas."""

from quest_trust.schemas.health import HealthResponse
from quest_trust.schemas.quests import RewardSummary, VerifyQuestRequest, VerifyQuestResponse
from quest_trust.schemas.rewards import CurrencyResponse, RewardStatusResponse
from quest_trust.schemas.server_config import (
    ConnectionCheckRequest,
    ConnectionCheckResponse,
    IssueTokenResponse,
    ServerConfigResponse,
    ToolSettingsResponse,
    UpdateServerConfigRequest,
    UpdateToolSettingsRequest,
)

__all__ = [
    "ConnectionCheckRequest",
    "ConnectionCheckResponse",
    "CurrencyResponse",
    "HealthResponse",
    "IssueTokenResponse",
    "RewardStatusResponse",
    "RewardSummary",
    "ServerConfigResponse",
    "ToolSettingsResponse",
    "UpdateServerConfigRequest",
    "UpdateToolSettingsRequest",
    "VerifyQuestRequest",
    "VerifyQuestResponse",
]
