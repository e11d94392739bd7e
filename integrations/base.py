"""
Value types shared by the registry, the OAuth flow and the token manager.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


def _frozen(mapping: Optional[Mapping[str, str]] = None) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ProviderConfig:
    """Everything needed to run OAuth against one tool (or one group)."""

    tool_type: str
    display_name: str
    auth_url: str
    token_url: str
    revoke_url: Optional[str] = None
    client_id: str = ""
    client_secret: str = ""
    scopes: Tuple[str, ...] = ()
    requires_pkce: bool = False
    group_id: Optional[str] = None
    redirect_uri: str = ""
    scope_param: str = "scope"
    extra_auth_params: Mapping[str, str] = field(default_factory=_frozen)
    revoke_method: str = "form"   # "form" (RFC 7009) or "github"

    def __post_init__(self) -> None:
        object.__setattr__(self, "scopes", tuple(self.scopes))
        object.__setattr__(self, "extra_auth_params", _frozen(self.extra_auth_params))

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def scope_string(self) -> str:
        return " ".join(self.scopes)


@dataclass(frozen=True)
class ProviderGroup:
    """One app registration whose single authorization covers several tools."""

    group_id: str
    tool_types: Tuple[str, ...]
    config: ProviderConfig


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    state: str


@dataclass
class TokenSet:
    """Normalized token-endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "TokenSet":
        """
        Build a ``TokenSet`` from a token-endpoint JSON body.

        Slack user-token installs nest the user credential under
        ``authed_user``; that block wins when the top level has no token.
        """
        if not data.get("access_token") and isinstance(data.get("authed_user"), dict):
            data = {**data, **data["authed_user"]}

        expires_in = data.get("expires_in")
        expires_at = None
        if expires_in not in (None, ""):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))

        scope = data.get("scope")
        if isinstance(scope, (list, tuple)):
            scope = " ".join(scope)

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_at=expires_at,
            scope=scope or None,
        )


@dataclass(frozen=True)
class ValidationResult:
    status: str                   # "valid" | "expired" | "invalid"
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.status}
        if self.error:
            result["error"] = self.error
        return result
