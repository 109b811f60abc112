"""Application services: use case orchestration."""

from quest_trust.services.progress_recorder import ProgressRecorder
from quest_trust.services.reward_service import RewardEvaluator
from quest_trust.services.server_config_service import ServerConfigService
from quest_trust.services.tool_settings import (
    EncryptedKeyCache,
    ToolSettingsCodec,
    ToolSettingsService,
)
from quest_trust.services.verification_service import VerificationService

__all__ = [
    "EncryptedKeyCache",
    "ProgressRecorder",
    "RewardEvaluator",
    "ServerConfigService",
    "ToolSettingsCodec",
    "ToolSettingsService",
    "VerificationService",
]
