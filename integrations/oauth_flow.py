"""
OAuthFlowController — authorization URLs and callback handling.

1. ``get_authorization_url`` / ``get_authorization_url_for_group`` build the
   provider redirect with a signed, timestamped ``state`` (and PKCE
   parameters where the provider requires them).
2. ``handle_callback`` validates the state, exchanges the code, and stores
   the resulting tokens, once per tool the authorization covers.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from database.models import Integration
from integrations.audit import AuditAction
from integrations.base import AuthorizationRequest, ProviderConfig, TokenSet
from integrations.errors import AuthStateError, ExchangeError, ProviderNotAvailableError
from integrations.pkce import PKCECoordinator
from integrations.registry import ProviderRegistry
from integrations.state import AuthorizationState, decode_state, encode_state
from integrations.store import CredentialStore
from integrations.token_endpoint import client_scope, error_in_body, parse_json, post_token_request

logger = logging.getLogger(__name__)


class OAuthFlowController:
    """Authorization Code grant (RFC 6749) with optional PKCE (RFC 7636)."""

    def __init__(
        self,
        registry: ProviderRegistry,
        store: CredentialStore,
        pkce: PKCECoordinator,
        *,
        state_secret: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self._registry = registry
        self._store = store
        self._pkce = pkce
        self._state_secret = state_secret
        self._http_client = http_client
        self._timeout = timeout

    # ── Authorization URL ───────────────────────────────────────────────

    def get_authorization_url(self, user_id: str, tool_type: str) -> AuthorizationRequest:
        """Raises ``ProviderNotAvailableError`` if the tool is not configured."""
        provider = self._registry.config_for(tool_type)
        state = AuthorizationState.new(user_id, tool_type=tool_type)
        return self._build_request(provider, state)

    def get_authorization_url_for_group(self, user_id: str, group_id: str) -> AuthorizationRequest:
        """One authorization for every tool sharing the group's app registration."""
        group = self._registry.group_for(group_id)
        state = AuthorizationState.new(user_id, group_id=group_id)
        return self._build_request(group.config, state)

    def _build_request(
        self, provider: ProviderConfig, state: AuthorizationState
    ) -> AuthorizationRequest:
        encoded_state = encode_state(state, self._state_secret)
        params = {
            "client_id": provider.client_id,
            "redirect_uri": provider.redirect_uri,
            "response_type": "code",
            provider.scope_param: provider.scope_string,
            "state": encoded_state,
        }
        params.update(provider.extra_auth_params)

        if provider.requires_pkce:
            pair = self._pkce.create(state.nonce)
            params["code_challenge"] = pair.code_challenge
            params["code_challenge_method"] = pair.code_challenge_method

        url = f"{provider.auth_url}?{urlencode(params)}"
        logger.info("Generated auth URL for %s (user %s)", state.target, state.user_id)
        return AuthorizationRequest(url=url, state=encoded_state)

    # ── Callback ────────────────────────────────────────────────────────

    async def handle_callback(
        self, code: str, state: str, *, target: Optional[str] = None
    ) -> List[Integration]:
        """
        Validate ``state``, exchange ``code`` and persist the tokens.

        ``target`` is the tool or group named by the callback URL; when given
        it must match the one the state was issued for.

        Raises ``AuthStateError`` for missing / forged / expired state and
        ``ExchangeError`` when the provider rejects the code.
        """
        auth_state = decode_state(state, self._state_secret)
        if target is not None and target != auth_state.target:
            raise AuthStateError(
                f"OAuth state was issued for {auth_state.target}, not {target}",
                code="state_invalid",
            )
        provider, tool_types = self._resolve_target(auth_state)

        verifier = self._pkce.consume(auth_state.nonce)
        if provider.requires_pkce and verifier is None:
            raise AuthStateError(
                f"No PKCE verifier for this {provider.tool_type} authorization "
                "(expired, already used, or issued by another instance)",
                code="pkce_verifier_missing",
            )
        if not code:
            raise ExchangeError("Authorization code missing from callback")

        tokens = await self._exchange_code(provider, code, verifier)

        integrations = []
        for tool_type in tool_types:
            integrations.append(
                await self._store.store_tokens(
                    auth_state.user_id, tool_type, tokens, action=AuditAction.CONNECT
                )
            )
        logger.info(
            "OAuth connected: user=%s tools=%s", auth_state.user_id, ",".join(tool_types)
        )
        return integrations

    def _resolve_target(self, auth_state: AuthorizationState) -> Tuple[ProviderConfig, Tuple[str, ...]]:
        try:
            if auth_state.group_id:
                group = self._registry.group_for(auth_state.group_id)
                return group.config, group.tool_types
            return self._registry.config_for(auth_state.tool_type), (auth_state.tool_type,)
        except ProviderNotAvailableError as exc:
            raise AuthStateError(str(exc), code="provider_unavailable") from exc

    async def _exchange_code(
        self, provider: ProviderConfig, code: str, verifier: Optional[str]
    ) -> TokenSet:
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": provider.redirect_uri,
        }
        if verifier is not None:
            form["code_verifier"] = verifier

        try:
            async with client_scope(self._http_client, self._timeout) as client:
                resp = await post_token_request(client, provider, form, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise ExchangeError(f"{provider.tool_type} token endpoint unreachable: {exc}") from exc

        if resp.status_code >= 400:
            logger.error(
                "Code exchange failed for %s: HTTP %s %s",
                provider.tool_type,
                resp.status_code,
                resp.text[:500],
            )
            raise ExchangeError(
                f"{provider.tool_type} token endpoint returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )

        data = parse_json(resp)
        problem = error_in_body(data)
        if problem:
            raise ExchangeError(
                f"{provider.tool_type} OAuth error: {problem}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return TokenSet.from_response(data)
