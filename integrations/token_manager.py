"""
Token manager — get / refresh / revoke per-user OAuth tokens.

This is the single interface data-fetch callers use to get an active token
for a given user + tool combination.  Failures never escape
``get_access_token``: a ``None`` result means "skip this tool for now".

Refreshes are de-duplicated per ``(user_id, tool_type)``: concurrent callers
await the same in-flight task, so a rotating refresh token is never spent
twice.  The map is process-local and does not coordinate across instances.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

import httpx

from database.models import Integration
from integrations.audit import AuditAction
from integrations.base import ProviderConfig, TokenSet, ValidationResult
from integrations.errors import (
    DecryptionError,
    PermanentRefreshError,
    ProviderNotAvailableError,
    RefreshError,
    RevocationError,
    TransientRefreshError,
)
from integrations.registry import ProviderRegistry
from integrations.store import CredentialStore, as_utc
from integrations.token_endpoint import (
    client_scope,
    error_in_body,
    parse_json,
    post_token_request,
    revoke_token,
)

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)
MAX_REFRESH_ATTEMPTS = 3

_RefreshKey = Tuple[str, str]


def needs_refresh(expires_at: Optional[datetime], buffer: timedelta = REFRESH_BUFFER) -> bool:
    """True when the token expires within ``buffer``. Non-expiring tokens never do."""
    if expires_at is None:
        return False
    return as_utc(expires_at) - datetime.now(timezone.utc) <= buffer


class TokenManager:
    """Proactive refresh, retry/backoff, refresh de-duplication and revocation."""

    def __init__(
        self,
        store: CredentialStore,
        registry: ProviderRegistry,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        backoff_base: float = 1.0,
        max_attempts: int = MAX_REFRESH_ATTEMPTS,
        refresh_buffer: timedelta = REFRESH_BUFFER,
    ):
        self._store = store
        self._registry = registry
        self._http_client = http_client
        self._timeout = timeout
        self._backoff_base = backoff_base
        self._max_attempts = max_attempts
        self._refresh_buffer = refresh_buffer
        self._inflight: Dict[_RefreshKey, asyncio.Task] = {}

    # ── Public API ──────────────────────────────────────────────────────

    async def get_access_token(self, user_id: str, tool_type: str) -> Optional[str]:
        """
        Get a valid access token for the user + tool.

        1. Look up the integration; inactive or missing → None.
        2. Non-expiring token → return it.
        3. Expiring within the buffer → refresh first (de-duplicated).
        4. Any failure → None.
        """
        try:
            integration = await self._store.get_integration(user_id, tool_type)
            if integration is None or not integration.is_active:
                return None

            access_token = self._store.decrypt(integration.access_token)
            if not needs_refresh(integration.expires_at, self._refresh_buffer):
                return access_token

            return await self.refresh_access_token(user_id, tool_type)
        except DecryptionError:
            logger.error("Stored %s token for user %s cannot be decrypted", tool_type, user_id)
            return None
        except Exception:
            logger.exception("get_access_token failed for %s/%s", tool_type, user_id)
            return None

    async def refresh_access_token(
        self, user_id: str, tool_type: str, *, force: bool = False
    ) -> Optional[str]:
        """
        Refresh through the per-key lock.  Callers arriving while a refresh
        is in flight await that refresh instead of starting another one.
        ``force=True`` refreshes even a token that is still fresh.
        """
        key = (user_id, tool_type)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._refresh_and_store(user_id, tool_type, force))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, _k=key: self._inflight.pop(_k, None))
        else:
            logger.debug("Joining in-flight refresh for %s/%s", tool_type, user_id)
        # A caller that stops waiting must not cancel the refresh for everyone else.
        return await asyncio.shield(task)

    async def disconnect_integration(self, user_id: str, tool_type: str) -> bool:
        """
        Best-effort revocation at the provider, then ``is_active=False``
        regardless of how the revocation went.
        """
        try:
            integration = await self._store.get_integration(user_id, tool_type)
        except Exception:
            logger.exception("disconnect lookup failed for %s/%s", tool_type, user_id)
            return False
        if integration is None:
            return False

        await self._try_revoke(integration)

        try:
            return await self._store.deactivate(user_id, tool_type)
        except Exception:
            logger.exception("Failed to deactivate %s for user %s", tool_type, user_id)
            return False

    async def validate_all_integrations(
        self, user_id: str, *, refresh: bool = False
    ) -> Dict[str, ValidationResult]:
        """
        Status of every active integration, checked concurrently.

        By default no provider call is made: an expiring token with a refresh
        token is reported ``expired``.  ``refresh=True`` tries to refresh such
        tokens and reports the outcome.
        """
        integrations = await self._store.list_integrations(user_id, active_only=True)
        results = await asyncio.gather(
            *(self._validate_one(i, refresh) for i in integrations),
            return_exceptions=True,
        )
        statuses: Dict[str, ValidationResult] = {}
        for integration, result in zip(integrations, results):
            if isinstance(result, BaseException):
                logger.error("Validation of %s crashed: %s", integration.tool_type, result)
                result = ValidationResult("invalid", error=str(result))
            statuses[integration.tool_type] = result
        return statuses

    # ── Refresh internals ───────────────────────────────────────────────

    async def _refresh_and_store(self, user_id: str, tool_type: str, force: bool) -> Optional[str]:
        try:
            # Re-read under the lock: a refresh that finished just before we
            # got here has already rotated the refresh token.
            integration = await self._store.get_integration(user_id, tool_type)
            if integration is None or not integration.is_active:
                return None
            if not force and not needs_refresh(integration.expires_at, self._refresh_buffer):
                return self._store.decrypt(integration.access_token)

            if not integration.refresh_token:
                return self._without_refresh_token(integration)
            if not integration.is_connected:
                logger.info("%s for user %s is awaiting reconnect, not refreshing", tool_type, user_id)
                return None

            provider = self._registry.config_for(tool_type)
            refresh_token = self._store.decrypt(integration.refresh_token)
            tokens = await self._do_refresh(provider, refresh_token)

            await self._store.store_tokens(
                user_id, tool_type, tokens, action=AuditAction.TOKEN_REFRESHED
            )
            return tokens.access_token

        except PermanentRefreshError as exc:
            logger.warning("Refresh for %s/%s rejected: %s", tool_type, user_id, exc)
            if exc.needs_reconnect:
                await self._flag_reconnect(user_id, tool_type, str(exc))
            return None
        except TransientRefreshError as exc:
            logger.warning("Refresh for %s/%s gave up after retries: %s", tool_type, user_id, exc)
            return None
        except ProviderNotAvailableError:
            logger.error("Cannot refresh %s for user %s: provider not configured", tool_type, user_id)
            return None
        except DecryptionError:
            logger.error("Stored %s refresh token for user %s cannot be decrypted", tool_type, user_id)
            return None
        except Exception:
            logger.exception("Unexpected refresh failure for %s/%s", tool_type, user_id)
            return None

    def _without_refresh_token(self, integration: Integration) -> Optional[str]:
        """No refresh token: serve the cached token only while it is still valid."""
        expires_at = as_utc(integration.expires_at)
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            logger.info(
                "%s token for user %s expired and has no refresh token",
                integration.tool_type,
                integration.user_id,
            )
            return None
        return self._store.decrypt(integration.access_token)

    async def _do_refresh(self, provider: ProviderConfig, refresh_token: str) -> TokenSet:
        """
        One logical refresh: up to ``max_attempts`` calls, exponential
        backoff between them, retrying only transient failures.
        """
        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        last_error: Optional[RefreshError] = None

        async with client_scope(self._http_client, self._timeout) as client:
            for attempt in range(self._max_attempts):
                try:
                    return await self._refresh_once(client, provider, form)
                except TransientRefreshError as exc:
                    last_error = exc
                    if attempt < self._max_attempts - 1:
                        wait_time = self._backoff_base * (2 ** attempt)
                        logger.warning(
                            "Transient refresh failure for %s (%s), retry %d/%d in %.1fs",
                            provider.tool_type,
                            exc,
                            attempt + 1,
                            self._max_attempts - 1,
                            wait_time,
                        )
                        await asyncio.sleep(wait_time)

        raise last_error or TransientRefreshError("refresh failed after all retries")

    async def _refresh_once(
        self, client: httpx.AsyncClient, provider: ProviderConfig, form: Dict[str, str]
    ) -> TokenSet:
        try:
            resp = await post_token_request(client, provider, form, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise TransientRefreshError(f"network error: {exc}") from exc

        status_code = resp.status_code
        if status_code >= 500:
            raise TransientRefreshError(
                f"HTTP {status_code}", status_code=status_code, body=resp.text
            )
        if status_code >= 400:
            raise PermanentRefreshError(
                f"HTTP {status_code}: {resp.text[:200]}", status_code=status_code, body=resp.text
            )

        data = parse_json(resp)
        problem = error_in_body(data)
        if problem:
            raise PermanentRefreshError(f"OAuth error: {problem}", body=resp.text)
        return TokenSet.from_response(data)

    async def _flag_reconnect(self, user_id: str, tool_type: str, reason: str) -> None:
        try:
            await self._store.mark_needs_reconnect(user_id, tool_type, reason)
        except Exception:
            logger.exception("Could not flag %s/%s for reconnect", tool_type, user_id)

    # ── Revocation / validation internals ───────────────────────────────

    async def _try_revoke(self, integration: Integration) -> None:
        if not self._registry.is_tool_available(integration.tool_type):
            return
        provider = self._registry.config_for(integration.tool_type)
        if not provider.revoke_url:
            return
        try:
            token = self._store.decrypt(integration.access_token)
            async with client_scope(self._http_client, self._timeout) as client:
                await revoke_token(client, provider, token, timeout=self._timeout)
        except RevocationError as exc:
            logger.warning("Revocation failed for %s/%s: %s", integration.tool_type, integration.user_id, exc)
        except Exception:
            # Local deactivation must not depend on the provider call.
            logger.exception("Revocation crashed for %s/%s", integration.tool_type, integration.user_id)

    async def _validate_one(self, integration: Integration, refresh: bool) -> ValidationResult:
        tool_type = integration.tool_type
        if not self._registry.is_tool_available(tool_type):
            return ValidationResult("invalid", error="provider not configured")
        try:
            self._store.decrypt(integration.access_token)
        except DecryptionError:
            return ValidationResult("invalid", error="token cannot be decrypted")
        if not integration.is_connected:
            return ValidationResult("invalid", error=integration.error_message or "needs reconnect")

        if not needs_refresh(integration.expires_at, self._refresh_buffer):
            return ValidationResult("valid")

        if not integration.refresh_token:
            expires_at = as_utc(integration.expires_at)
            if expires_at <= datetime.now(timezone.utc):
                return ValidationResult("invalid", error="expired with no refresh token")
            return ValidationResult("valid")

        if not refresh:
            return ValidationResult("expired")

        token = await self.refresh_access_token(integration.user_id, tool_type)
        if token is None:
            return ValidationResult("invalid", error="refresh failed")
        return ValidationResult("valid")
