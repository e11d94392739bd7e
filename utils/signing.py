"""
Signed payload helpers shared by bearer tokens and OAuth state.

A signed value is ``urlsafe_b64(json(payload)) + "." + hex(hmac_sha256)``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict


def sign_payload(payload: Dict[str, Any], secret: str) -> str:
    """Serialize ``payload`` and append an HMAC-SHA256 signature."""
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
    sig = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    return urlsafe_b64encode(raw).decode() + "." + sig


def verify_payload(value: str, secret: str) -> Dict[str, Any]:
    """
    Check the signature on ``value`` and return the decoded payload.

    Raises ``ValueError`` on bad format, bad signature or a payload that is
    not a JSON object.
    """
    parts = value.split(".", 1)
    if len(parts) != 2:
        raise ValueError("bad format")
    try:
        raw = urlsafe_b64decode(parts[0].encode())
    except (ValueError, TypeError) as exc:
        raise ValueError("bad encoding") from exc
    expected_sig = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(parts[1].encode(), expected_sig.encode()):
        raise ValueError("bad signature")
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("payload is not an object")
    return payload
