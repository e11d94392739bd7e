"""
Integration API routes — OAuth connect/callback, list, refresh, disconnect.

Route prefix: /api/v1/integrations
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from auth.dependencies import get_current_user_id
from config.settings import config
from integrations.errors import AuthError, ProviderNotAvailableError
from integrations.service import IntegrationService, get_integration_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["integrations"])


def _ui_redirect(**params: str) -> RedirectResponse:
    """Send the browser back to the integrations settings view."""
    return RedirectResponse(
        url=f"{config.integrations_ui_url}?{urlencode(params)}",
        status_code=status.HTTP_302_FOUND,
    )


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/tools")
async def list_tools(
    service: IntegrationService = Depends(get_integration_service),
) -> Dict[str, Any]:
    """
    Tools and tool groups that have client credentials configured.
    No auth required; used by the frontend to show available integrations.
    """
    return {
        "tools": [
            {
                "tool_type": tool_type,
                "display_name": service.registry.config_for(tool_type).display_name,
            }
            for tool_type in service.get_available_tools()
        ],
        "groups": service.get_available_groups(),
    }


@router.get("/connections")
async def list_connections(
    user_id: str = Depends(get_current_user_id),
    service: IntegrationService = Depends(get_integration_service),
) -> List[Dict[str, Any]]:
    """Token metadata for every integration of the authenticated user."""
    return await service.describe_integrations(user_id)


@router.get("/validate")
async def validate_connections(
    refresh: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    service: IntegrationService = Depends(get_integration_service),
) -> Dict[str, Dict[str, Any]]:
    results = await service.validate_all_integrations(user_id, refresh=refresh)
    return {tool_type: result.to_dict() for tool_type, result in results.items()}


@router.get("/groups/{group_id}/auth-url")
async def get_group_auth_url(
    group_id: str,
    user_id: str = Depends(get_current_user_id),
    service: IntegrationService = Depends(get_integration_service),
) -> Dict[str, str]:
    """Authorization URL covering every tool in a provider group."""
    try:
        request = service.get_authorization_url_for_group(user_id, group_id)
    except ProviderNotAvailableError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return {"url": request.url, "state": request.state, "group_id": group_id}


@router.get("/{tool_type}/auth-url")
async def get_auth_url(
    tool_type: str,
    user_id: str = Depends(get_current_user_id),
    service: IntegrationService = Depends(get_integration_service),
) -> Dict[str, str]:
    """
    Get the OAuth authorization URL for a tool.

    Frontend should open this URL in a popup window.
    """
    try:
        request = service.get_authorization_url(user_id, tool_type)
    except ProviderNotAvailableError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return {"url": request.url, "state": request.state, "tool_type": tool_type}


@router.get("/callback/{target}")
async def oauth_callback(
    target: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    service: IntegrationService = Depends(get_integration_service),
) -> RedirectResponse:
    """
    OAuth callback. The provider redirects here after consent.

    Success and failure both redirect to the settings view; failures carry a
    machine-readable ``code``.
    """
    if error:
        logger.info("Provider %s returned error on callback: %s", target, error)
        return _ui_redirect(status="error", code=error, target=target)

    try:
        integrations = await service.handle_callback(code or "", state or "", target=target)
    except AuthError as exc:
        logger.warning("OAuth callback failed for %s: %s (%s)", target, exc, exc.code)
        return _ui_redirect(status="error", code=exc.code, target=target)
    except Exception:
        logger.exception("OAuth callback crashed for %s", target)
        return _ui_redirect(status="error", code="internal_error", target=target)

    tools = ",".join(i.tool_type for i in integrations)
    return _ui_redirect(status="connected", tools=tools)


@router.post("/{tool_type}/refresh")
async def refresh_connection(
    tool_type: str,
    user_id: str = Depends(get_current_user_id),
    service: IntegrationService = Depends(get_integration_service),
) -> Dict[str, Any]:
    """Force-refresh a token (even if not expired)."""
    token = await service.refresh_access_token(user_id, tool_type)
    return {"tool_type": tool_type, "success": token is not None}


@router.delete("/{tool_type}")
async def delete_connection(
    tool_type: str,
    user_id: str = Depends(get_current_user_id),
    service: IntegrationService = Depends(get_integration_service),
) -> Dict[str, Any]:
    """Disconnect and revoke an integration."""
    disconnected = await service.disconnect_integration(user_id, tool_type)
    if not disconnected:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Integration not found")
    return {"status": "disconnected", "tool_type": tool_type}
