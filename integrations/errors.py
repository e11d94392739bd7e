"""
Exception hierarchy for the integration credential lifecycle.

Construction-time problems (``ConfigError``) are raised loudly.  Refresh and
revocation problems are raised internally but resolved to ``None`` / ``False``
at the public boundary, so data-fetch callers degrade instead of crashing.
"""

from __future__ import annotations

from typing import Optional


class IntegrationError(Exception):
    """Base exception for all integration errors."""


class ConfigError(IntegrationError):
    """Raised when mandatory configuration is missing or malformed."""


class ProviderNotAvailableError(IntegrationError):
    """Raised when a tool or group is unknown or has no client credentials."""

    def __init__(self, name: str):
        super().__init__(f"Provider '{name}' not found or not configured")
        self.name = name


class DecryptionError(IntegrationError):
    """Raised when a stored token cannot be decrypted with the current key."""


class AuthError(IntegrationError):
    """Base for callback failures. ``code`` is machine-readable for redirects."""

    code = "auth_failed"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class AuthStateError(AuthError):
    """The ``state`` parameter is missing, forged, malformed or expired."""

    code = "state_invalid"


class ExchangeError(AuthError):
    """The token endpoint rejected the authorization code."""

    code = "exchange_failed"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RefreshError(IntegrationError):
    """Base for refresh failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TransientRefreshError(RefreshError):
    """5xx or network failure; retried with backoff."""


class PermanentRefreshError(RefreshError):
    """Provider rejected the refresh request; not retried."""

    @property
    def needs_reconnect(self) -> bool:
        """400/401 (or an OAuth error body) means the refresh token is dead."""
        return self.status_code in (None, 400, 401)


class RevocationError(IntegrationError):
    """Provider-side revocation failed. Always logged, never propagated."""
