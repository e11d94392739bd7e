"""
ProviderRegistry — immutable, process-lifetime provider configuration.

Built once at startup.  Providers without client credentials are logged and
left out; they are "unavailable", not fatal.
"""

from __future__ import annotations

import dataclasses
import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from config.settings import Settings
from integrations.base import ProviderConfig, ProviderGroup
from integrations.errors import ProviderNotAvailableError
from integrations.providers import GROUP_DISPLAY_NAMES, PROVIDER_TEMPLATES, group_members

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/v1/integrations/callback"


def callback_url(redirect_base: str, target: str) -> str:
    return f"{redirect_base.rstrip('/')}{CALLBACK_PATH}/{target}"


class ProviderRegistry:
    """Read-only lookup of configured providers and provider groups."""

    def __init__(
        self,
        providers: Iterable[ProviderConfig],
        groups: Iterable[ProviderGroup] = (),
    ):
        self._providers: Mapping[str, ProviderConfig] = MappingProxyType(
            {p.tool_type: p for p in providers if p.has_credentials}
        )
        self._groups: Mapping[str, ProviderGroup] = MappingProxyType(
            {g.group_id: g for g in groups if g.config.has_credentials}
        )

    # ── Construction ────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        templates: Optional[List[ProviderConfig]] = None,
    ) -> "ProviderRegistry":
        """
        Resolve credentials for every catalog entry.

        A grouped tool uses its group's client pair when that pair is set,
        otherwise its own, so tokens issued through the group flow are
        always refreshed with the registration that issued them.
        """
        templates = PROVIDER_TEMPLATES if templates is None else templates
        providers: List[ProviderConfig] = []

        for template in templates:
            client_id, client_secret = ("", "")
            if template.group_id:
                client_id, client_secret = settings.client_credentials(template.group_id)
            if not (client_id and client_secret):
                client_id, client_secret = settings.client_credentials(template.tool_type)

            provider = dataclasses.replace(
                template,
                client_id=client_id,
                client_secret=client_secret,
                redirect_uri=callback_url(settings.oauth_redirect_base, template.tool_type),
            )
            if provider.has_credentials:
                logger.info("Provider registered: %s", provider.tool_type)
            else:
                logger.warning(
                    "Provider %s skipped, not configured (missing client_id/secret)",
                    provider.tool_type,
                )
            providers.append(provider)

        groups: List[ProviderGroup] = []
        by_tool = {p.tool_type: p for p in providers}
        for group_id, tool_types in group_members(templates).items():
            client_id, client_secret = settings.client_credentials(group_id)
            members = [by_tool[t] for t in tool_types]
            shared = _merge_group_config(
                group_id,
                members,
                client_id=client_id,
                client_secret=client_secret,
                redirect_uri=callback_url(settings.oauth_redirect_base, group_id),
            )
            if shared.has_credentials:
                logger.info("Provider group registered: %s %s", group_id, list(tool_types))
            groups.append(ProviderGroup(group_id=group_id, tool_types=tool_types, config=shared))

        return cls(providers, groups)

    # ── Lookups ─────────────────────────────────────────────────────────

    def is_tool_available(self, tool_type: str) -> bool:
        return tool_type in self._providers

    def get_available_tools(self) -> List[str]:
        return list(self._providers.keys())

    def config_for(self, tool_type: str) -> ProviderConfig:
        try:
            return self._providers[tool_type]
        except KeyError:
            raise ProviderNotAvailableError(tool_type) from None

    def is_group_available(self, group_id: str) -> bool:
        return group_id in self._groups

    def get_available_groups(self) -> Dict[str, List[str]]:
        return {g.group_id: list(g.tool_types) for g in self._groups.values()}

    def group_for(self, group_id: str) -> ProviderGroup:
        try:
            return self._groups[group_id]
        except KeyError:
            raise ProviderNotAvailableError(group_id) from None


def _merge_group_config(
    group_id: str,
    members: List[ProviderConfig],
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
) -> ProviderConfig:
    """Build the shared flow config: first member's endpoints, union of scopes."""
    first = members[0]
    scopes: List[str] = []
    extra: Dict[str, str] = {}
    for member in members:
        scopes.extend(s for s in member.scopes if s not in scopes)
        extra.update(member.extra_auth_params)

    return dataclasses.replace(
        first,
        tool_type=group_id,
        display_name=GROUP_DISPLAY_NAMES.get(group_id, group_id.title()),
        client_id=client_id,
        client_secret=client_secret,
        scopes=tuple(scopes),
        requires_pkce=any(m.requires_pkce for m in members),
        group_id=group_id,
        redirect_uri=redirect_uri,
        extra_auth_params=extra,
    )
