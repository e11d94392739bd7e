"""
IntegrationService — the public face of the credential lifecycle.

Onboarding routes, CLIs and data-fetch callers use only this class.  It
wires the registry, credential store, PKCE coordinator, OAuth flow and token
manager from settings.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings, config
from database.models import Integration
from integrations.audit import AuditSink
from integrations.base import AuthorizationRequest, ValidationResult
from integrations.oauth_flow import OAuthFlowController
from integrations.pkce import PKCECoordinator
from integrations.registry import ProviderRegistry
from integrations.store import CredentialStore
from integrations.token_manager import TokenManager

logger = logging.getLogger(__name__)


class IntegrationService:
    """
    Raises ``ConfigError`` from the constructor when no encryption key is
    configured, before any other component is built.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        encryption_key: Optional[Union[str, bytes]] = None,
        registry: Optional[ProviderRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        audit_sink: Optional[AuditSink] = None,
    ):
        settings = settings or config
        self.store = CredentialStore(
            session_factory,
            encryption_key=settings.token_encryption_key if encryption_key is None else encryption_key,
            audit_sink=audit_sink,
        )
        self.registry = registry or ProviderRegistry.from_settings(settings)
        self.pkce = PKCECoordinator()
        self.flow = OAuthFlowController(
            self.registry,
            self.store,
            self.pkce,
            state_secret=settings.oauth_state_secret,
            http_client=http_client,
            timeout=settings.oauth_http_timeout_seconds,
        )
        self.tokens = TokenManager(
            self.store,
            self.registry,
            http_client=http_client,
            timeout=settings.oauth_http_timeout_seconds,
            backoff_base=settings.token_refresh_backoff_seconds,
        )
        logger.info(
            "Integration service ready: tools=%s groups=%s",
            self.registry.get_available_tools(),
            list(self.registry.get_available_groups()),
        )

    # ── Onboarding ──────────────────────────────────────────────────────

    def get_authorization_url(self, user_id: str, tool_type: str) -> AuthorizationRequest:
        return self.flow.get_authorization_url(user_id, tool_type)

    def get_authorization_url_for_group(self, user_id: str, group_id: str) -> AuthorizationRequest:
        return self.flow.get_authorization_url_for_group(user_id, group_id)

    async def handle_callback(
        self, code: str, state: str, *, target: Optional[str] = None
    ) -> List[Integration]:
        return await self.flow.handle_callback(code, state, target=target)

    # ── Token lifecycle ─────────────────────────────────────────────────

    async def get_access_token(self, user_id: str, tool_type: str) -> Optional[str]:
        return await self.tokens.get_access_token(user_id, tool_type)

    async def refresh_access_token(self, user_id: str, tool_type: str) -> Optional[str]:
        """Force a refresh even if the current token is still fresh."""
        return await self.tokens.refresh_access_token(user_id, tool_type, force=True)

    async def disconnect_integration(self, user_id: str, tool_type: str) -> bool:
        return await self.tokens.disconnect_integration(user_id, tool_type)

    async def validate_all_integrations(
        self, user_id: str, *, refresh: bool = False
    ) -> Dict[str, ValidationResult]:
        return await self.tokens.validate_all_integrations(user_id, refresh=refresh)

    # ── Introspection ───────────────────────────────────────────────────

    def is_tool_available(self, tool_type: str) -> bool:
        return self.registry.is_tool_available(tool_type)

    def get_available_tools(self) -> List[str]:
        return self.registry.get_available_tools()

    def get_available_groups(self) -> Dict[str, List[str]]:
        return self.registry.get_available_groups()

    async def describe_integrations(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.store.describe_integrations(user_id)


@lru_cache(maxsize=1)
def get_integration_service() -> IntegrationService:
    """Process-wide service built from ``config`` on first use."""
    return IntegrationService()
