"""
Anti-forgery ``state`` for the authorization redirect.

The state is never stored server-side: everything needed at callback time
travels inside it, signed with ``config.oauth_state_secret``.  A state with
no ``issued_at`` is rejected outright rather than treated as a legacy value.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from integrations.errors import AuthStateError
from utils.signing import sign_payload, verify_payload

STATE_MAX_AGE = timedelta(minutes=10)
_CLOCK_SKEW_SECONDS = 60


@dataclass(frozen=True)
class AuthorizationState:
    user_id: str
    nonce: str
    issued_at: float
    tool_type: Optional[str] = None
    group_id: Optional[str] = None

    @property
    def target(self) -> str:
        """The tool or group the flow was started for."""
        return self.group_id or self.tool_type or ""

    @classmethod
    def new(
        cls,
        user_id: str,
        *,
        tool_type: Optional[str] = None,
        group_id: Optional[str] = None,
        issued_at: Optional[float] = None,
    ) -> "AuthorizationState":
        return cls(
            user_id=user_id,
            nonce=secrets.token_urlsafe(32),
            issued_at=time.time() if issued_at is None else issued_at,
            tool_type=tool_type,
            group_id=group_id,
        )


def encode_state(state: AuthorizationState, secret: str) -> str:
    payload: Dict[str, Any] = {
        "user_id": state.user_id,
        "nonce": state.nonce,
        "issued_at": state.issued_at,
    }
    if state.group_id:
        payload["group_id"] = state.group_id
    else:
        payload["tool_type"] = state.tool_type
    return sign_payload(payload, secret)


def decode_state(
    value: str,
    secret: str,
    *,
    max_age: timedelta = STATE_MAX_AGE,
    now: Optional[float] = None,
) -> AuthorizationState:
    """Verify and decode ``value``. Raises ``AuthStateError`` on any problem."""
    if not value:
        raise AuthStateError("Missing OAuth state", code="state_missing")
    try:
        payload = verify_payload(value, secret)
    except ValueError as exc:
        raise AuthStateError(f"Invalid OAuth state: {exc}", code="state_invalid") from exc

    issued_at = payload.get("issued_at")
    if issued_at is None:
        raise AuthStateError(
            "OAuth state has no issue timestamp", code="state_missing_timestamp"
        )
    if not isinstance(issued_at, (int, float)) or isinstance(issued_at, bool):
        raise AuthStateError("OAuth state timestamp is malformed", code="state_invalid")

    user_id = payload.get("user_id")
    nonce = payload.get("nonce")
    tool_type = payload.get("tool_type")
    group_id = payload.get("group_id")
    if not user_id or not nonce or not (tool_type or group_id):
        raise AuthStateError("OAuth state is missing required fields", code="state_invalid")

    now = time.time() if now is None else now
    age = now - issued_at
    if age > max_age.total_seconds():
        raise AuthStateError("OAuth state expired", code="state_expired")
    if age < -_CLOCK_SKEW_SECONDS:
        raise AuthStateError("OAuth state issued in the future", code="state_invalid")

    return AuthorizationState(
        user_id=str(user_id),
        nonce=str(nonce),
        issued_at=float(issued_at),
        tool_type=tool_type,
        group_id=group_id,
    )
