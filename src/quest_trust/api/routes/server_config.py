"""User server configuration and tool settings REST API routes.

Routes:
    GET    /api/v1/user/server-config         Current server URL and token status
    PUT    /api/v1/user/server-config         Set or clear the server URL
    POST   /api/v1/user/server-config/token   Issue a new verification token
    POST   /api/v1/user/server-config/test    Unsigned reachability probe
    GET    /api/v1/user/tool-settings         Tool settings, secrets masked
    PUT    /api/v1/user/tool-settings         Merge tool settings
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from quest_trust.api.deps import (
    get_current_user_id,
    get_server_config_service,
    get_tool_settings_service,
)
from quest_trust.schemas.server_config import (
    ConnectionCheckRequest,
    ConnectionCheckResponse,
    IssueTokenResponse,
    ServerConfigResponse,
    ToolSettingsResponse,
    UpdateServerConfigRequest,
    UpdateToolSettingsRequest,
)
from quest_trust.services.server_config_service import ServerConfigService, ServerConfigView
from quest_trust.services.tool_settings import ToolSettingsService

router = APIRouter(prefix="/api/v1/user", tags=["User Settings"])


def _to_response(view: ServerConfigView) -> ServerConfigResponse:
    return ServerConfigResponse(
        server_url=view.server_url,
        has_token=view.has_token,
        token_created_at=view.token_created_at,
    )


@router.get(
    "/server-config",
    response_model=ServerConfigResponse,
    summary="Get server configuration",
)
async def get_server_config(
    user_id: int = Depends(get_current_user_id),
    service: ServerConfigService = Depends(get_server_config_service),
) -> ServerConfigResponse:
    view = await service.get_config(user_id)
    return _to_response(view)


@router.put(
    "/server-config",
    response_model=ServerConfigResponse,
    summary="Update server URL",
)
async def update_server_config(
    request: UpdateServerConfigRequest,
    user_id: int = Depends(get_current_user_id),
    service: ServerConfigService = Depends(get_server_config_service),
) -> ServerConfigResponse:
    view = await service.update_server_url(user_id, request.server_url)
    return _to_response(view)


@router.post(
    "/server-config/token",
    response_model=IssueTokenResponse,
    summary="Issue a verification token",
    description="Replaces any previous token. The plaintext is returned only in this response.",
)
async def issue_token(
    user_id: int = Depends(get_current_user_id),
    service: ServerConfigService = Depends(get_server_config_service),
) -> IssueTokenResponse:
    issued = await service.issue_token(user_id)
    return IssueTokenResponse(token=issued.token, created_at=issued.created_at)


@router.post(
    "/server-config/test",
    response_model=ConnectionCheckResponse,
    response_model_exclude_none=True,
    summary="Test server reachability",
)
async def test_server_connection(
    request: ConnectionCheckRequest,
    user_id: int = Depends(get_current_user_id),
    service: ServerConfigService = Depends(get_server_config_service),
) -> ConnectionCheckResponse:
    result = await service.test_connection(request.server_url)
    return ConnectionCheckResponse(
        success=result.success,
        message=result.message,
        status=result.status_code,
    )


@router.get(
    "/tool-settings",
    response_model=ToolSettingsResponse,
    summary="Get tool settings",
)
async def get_tool_settings(
    user_id: int = Depends(get_current_user_id),
    service: ToolSettingsService = Depends(get_tool_settings_service),
) -> ToolSettingsResponse:
    return ToolSettingsResponse(tool_settings=await service.get_view(user_id))


@router.put(
    "/tool-settings",
    response_model=ToolSettingsResponse,
    summary="Update tool settings",
)
async def update_tool_settings(
    request: UpdateToolSettingsRequest,
    user_id: int = Depends(get_current_user_id),
    service: ToolSettingsService = Depends(get_tool_settings_service),
) -> ToolSettingsResponse:
    view = await service.update(user_id, request.tool_settings)
    return ToolSettingsResponse(tool_settings=view)
