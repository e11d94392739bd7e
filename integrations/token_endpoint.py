"""
Outbound calls to provider token and revocation endpoints.

Shared by the OAuth flow (code exchange) and the token manager (refresh,
revocation).  Every request carries an explicit timeout.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from integrations.base import ProviderConfig
from integrations.errors import RevocationError

logger = logging.getLogger(__name__)

_JSON_ACCEPT = {"Accept": "application/json"}


@asynccontextmanager
async def client_scope(
    client: Optional[httpx.AsyncClient], timeout: float
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the injected client, or a short-lived one closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as own_client:
        yield own_client


async def post_token_request(
    client: httpx.AsyncClient,
    config: ProviderConfig,
    form: Dict[str, str],
    *,
    timeout: float,
) -> httpx.Response:
    """POST ``form`` plus client credentials to the provider's token endpoint."""
    data = {
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        **form,
    }
    return await client.post(config.token_url, data=data, headers=_JSON_ACCEPT, timeout=timeout)


def error_in_body(data: Any) -> Optional[str]:
    """
    Some providers answer 200 with an error payload (GitHub ``error``,
    Slack ``ok: false``).  Return the error text, or None for a usable body.
    """
    if not isinstance(data, dict):
        return "token response is not a JSON object"
    if data.get("error"):
        return str(data.get("error_description") or data["error"])
    if data.get("ok") is False:
        return "ok=false"
    has_token = data.get("access_token") or (
        isinstance(data.get("authed_user"), dict) and data["authed_user"].get("access_token")
    )
    if not has_token:
        return "token response has no access_token"
    return None


def parse_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


async def revoke_token(
    client: httpx.AsyncClient,
    config: ProviderConfig,
    token: str,
    *,
    timeout: float,
) -> None:
    """Revoke ``token`` at the provider. Raises ``RevocationError`` on failure."""
    if not config.revoke_url:
        return

    try:
        if config.revoke_method == "github":
            resp = await client.request(
                "DELETE",
                config.revoke_url.format(client_id=config.client_id),
                auth=(config.client_id, config.client_secret),
                json={"access_token": token},
                headers={"Accept": "application/vnd.github+json"},
                timeout=timeout,
            )
        else:
            resp = await client.post(
                config.revoke_url,
                data={
                    "token": token,
                    "client_id": config.client_id,
                    "client_secret": config.client_secret,
                },
                headers=_JSON_ACCEPT,
                timeout=timeout,
            )
    except httpx.HTTPError as exc:
        raise RevocationError(f"{config.tool_type} revocation request failed: {exc}") from exc

    if resp.status_code >= 400:
        raise RevocationError(
            f"{config.tool_type} revocation returned HTTP {resp.status_code}: {resp.text[:200]}"
        )
    body = parse_json(resp)
    if isinstance(body, dict) and body.get("ok") is False:
        raise RevocationError(f"{config.tool_type} revocation rejected: {body.get('error')}")
    logger.info("Revoked %s token at provider", config.tool_type)
