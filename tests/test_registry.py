"""
Tests for the provider registry — availability, credential resolution, groups.
"""

import pytest

from integrations.base import ProviderConfig
from integrations.errors import ProviderNotAvailableError
from integrations.registry import ProviderRegistry


class TestAvailability:
    def test_configured_tools_are_available(self, registry):
        available = set(registry.get_available_tools())
        assert {"github", "slack", "outlook", "teams", "jira"} <= available

    def test_tool_without_credentials_is_unavailable(self, registry):
        assert not registry.is_tool_available("figma")
        assert "figma" not in registry.get_available_tools()
        assert not registry.is_tool_available("confluence")

    def test_unknown_tool_is_unavailable(self, registry):
        assert not registry.is_tool_available("myspace")

    def test_config_for_unavailable_raises(self, registry):
        with pytest.raises(ProviderNotAvailableError) as exc_info:
            registry.config_for("figma")
        assert exc_info.value.name == "figma"

    def test_missing_credentials_are_not_fatal(self, settings):
        bare = settings.model_copy(
            update={"github_client_id": "", "slack_client_secret": "", "microsoft_client_id": ""}
        )
        registry = ProviderRegistry.from_settings(bare)
        assert not registry.is_tool_available("github")
        assert not registry.is_tool_available("slack")
        assert registry.is_tool_available("jira")


class TestCredentialResolution:
    def test_redirect_uri_uses_callback_base(self, registry):
        github = registry.config_for("github")
        assert github.redirect_uri == "http://testserver/api/v1/integrations/callback/github"

    def test_grouped_tool_uses_group_credentials(self, registry):
        outlook = registry.config_for("outlook")
        teams = registry.config_for("teams")
        assert outlook.client_id == teams.client_id == "ms-id"
        assert outlook.group_id == "microsoft"

    def test_grouped_tool_falls_back_to_own_credentials(self, registry):
        jira = registry.config_for("jira")
        assert jira.client_id == "jira-id"
        assert jira.extra_auth_params["audience"] == "api.atlassian.com"

    def test_group_credentials_win_over_tool_credentials(self, settings):
        both = settings.model_copy(
            update={"atlassian_client_id": "atl-id", "atlassian_client_secret": "atl-secret"}
        )
        registry = ProviderRegistry.from_settings(both)
        assert registry.config_for("jira").client_id == "atl-id"
        assert registry.config_for("confluence").client_id == "atl-id"


class TestGroups:
    def test_group_available_only_with_group_credentials(self, registry):
        assert registry.is_group_available("microsoft")
        assert not registry.is_group_available("atlassian")
        with pytest.raises(ProviderNotAvailableError):
            registry.group_for("atlassian")

    def test_group_config_merges_members(self, registry):
        group = registry.group_for("microsoft")
        assert group.tool_types == ("outlook", "teams")
        scopes = group.config.scopes
        assert "Mail.Read" in scopes and "Chat.Read" in scopes
        assert scopes.count("User.Read") == 1
        assert group.config.requires_pkce is True
        assert group.config.redirect_uri.endswith("/callback/microsoft")

    def test_available_groups_listing(self, registry):
        assert registry.get_available_groups() == {"microsoft": ["outlook", "teams"]}


class TestImmutability:
    def test_mappings_are_read_only(self, registry):
        with pytest.raises(TypeError):
            registry._providers["evil"] = registry.config_for("github")

    def test_provider_config_is_frozen(self, registry):
        github = registry.config_for("github")
        with pytest.raises(AttributeError):
            github.client_id = "other"
        with pytest.raises(TypeError):
            github.extra_auth_params["prompt"] = "none"

    def test_direct_construction_skips_unconfigured(self):
        registry = ProviderRegistry(
            [
                ProviderConfig("a", "A", "https://a/auth", "https://a/token", client_id="x", client_secret="y"),
                ProviderConfig("b", "B", "https://b/auth", "https://b/token"),
            ]
        )
        assert registry.get_available_tools() == ["a"]
