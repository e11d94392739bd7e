"""
Catalog of supported OAuth providers.

Entries here are templates: endpoints, scopes and quirks only.  Client
credentials and redirect URIs are filled in by ``ProviderRegistry``.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from integrations.base import ProviderConfig

_ATLASSIAN_AUTH_URL = "https://auth.atlassian.com/authorize"
_ATLASSIAN_TOKEN_URL = "https://auth.atlassian.com/oauth/token"
_MS_AUTH_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
_MS_TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"

# ── All known providers, add new ones here ───────────────────────────────

PROVIDER_TEMPLATES: List[ProviderConfig] = [
    ProviderConfig(
        tool_type="github",
        display_name="GitHub",
        auth_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        revoke_url="https://api.github.com/applications/{client_id}/token",
        revoke_method="github",
        scopes=("repo", "read:user"),
    ),
    ProviderConfig(
        tool_type="jira",
        display_name="Jira",
        auth_url=_ATLASSIAN_AUTH_URL,
        token_url=_ATLASSIAN_TOKEN_URL,
        scopes=("read:jira-work", "read:jira-user", "offline_access"),
        group_id="atlassian",
        extra_auth_params={"audience": "api.atlassian.com", "prompt": "consent"},
    ),
    ProviderConfig(
        tool_type="confluence",
        display_name="Confluence",
        auth_url=_ATLASSIAN_AUTH_URL,
        token_url=_ATLASSIAN_TOKEN_URL,
        scopes=("read:confluence-content.all", "read:confluence-user", "offline_access"),
        group_id="atlassian",
        extra_auth_params={"audience": "api.atlassian.com", "prompt": "consent"},
    ),
    ProviderConfig(
        tool_type="figma",
        display_name="Figma",
        auth_url="https://www.figma.com/oauth",
        token_url="https://www.figma.com/api/oauth/token",
        scopes=("file_read",),
    ),
    ProviderConfig(
        tool_type="outlook",
        display_name="Outlook",
        auth_url=_MS_AUTH_URL,
        token_url=_MS_TOKEN_URL,
        scopes=("User.Read", "Mail.Read", "Calendars.Read", "offline_access"),
        requires_pkce=True,
        group_id="microsoft",
        extra_auth_params={"response_mode": "query", "prompt": "consent"},
    ),
    ProviderConfig(
        tool_type="teams",
        display_name="Microsoft Teams",
        auth_url=_MS_AUTH_URL,
        token_url=_MS_TOKEN_URL,
        scopes=(
            "User.Read",
            "Team.ReadBasic.All",
            "Channel.ReadBasic.All",
            "Chat.Read",
            "ChannelMessage.Read.All",
            "offline_access",
        ),
        requires_pkce=True,
        group_id="microsoft",
        extra_auth_params={"response_mode": "query", "prompt": "consent"},
    ),
    ProviderConfig(
        tool_type="slack",
        display_name="Slack",
        auth_url="https://slack.com/oauth/v2/authorize",
        token_url="https://slack.com/api/oauth.v2.access",
        revoke_url="https://slack.com/api/auth.revoke",
        scopes=("channels:read", "users:read", "chat:write"),
        scope_param="user_scope",   # user token, not a bot install
    ),
]

# group_id → display name; members are the templates carrying that group_id
GROUP_DISPLAY_NAMES: Dict[str, str] = {
    "atlassian": "Atlassian",
    "microsoft": "Microsoft 365",
}


def group_members(templates: List[ProviderConfig]) -> Dict[str, Tuple[str, ...]]:
    """Map each group_id to the tool types that share its app registration."""
    members: Dict[str, List[str]] = {}
    for template in templates:
        if template.group_id:
            members.setdefault(template.group_id, []).append(template.tool_type)
    return {group_id: tuple(tools) for group_id, tools in members.items()}
