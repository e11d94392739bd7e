"""
Bearer token creation and verification.

Tokens are signed payloads (see ``utils.signing``) carrying ``user_id`` and
an expiry.  The secret comes from ``config.jwt_secret`` (env var:
``JWT_SECRET``).  Issuing tokens belongs to the host application; this
service only needs to verify them.
"""

from __future__ import annotations

import time

from fastapi import HTTPException, status

from config.settings import config
from utils.signing import sign_payload, verify_payload


def create_token(user_id: str, *, expires_in: int | None = None) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    ttl = config.jwt_expiry_seconds if expires_in is None else expires_in
    return sign_payload(
        {"user_id": user_id, "exp": int(time.time()) + ttl},
        config.jwt_secret,
    )


def verify_token(token: str) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``HTTPException(401)`` on invalid or expired tokens.
    """
    try:
        payload = verify_payload(token, config.jwt_secret)
        if payload.get("exp", 0) < time.time():
            raise ValueError("token expired")
        user_id = payload.get("user_id")
        if not user_id:
            raise ValueError("missing user_id")
        return str(user_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {exc}",
        ) from exc
