"""
PKCE (Proof Key for Code Exchange, RFC 7636) coordination.

Verifiers live in process memory, keyed by the authorization nonce, and are
consumed exactly once at callback time.  Entries that are never consumed are
swept after ``PKCE_TTL``.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

PKCE_TTL = timedelta(minutes=15)


@dataclass(frozen=True)
class PKCEPair:
    code_verifier: str
    code_challenge: str
    code_challenge_method: str = "S256"


@dataclass(frozen=True)
class PKCEEntry:
    code_verifier: str
    created_at: float


def generate_code_verifier() -> str:
    """
    RFC 7636 §4.1: 43–128 characters from the unreserved set.
    64 random bytes give an 86-character URL-safe string.
    """
    return secrets.token_urlsafe(64)


def code_challenge_for(code_verifier: str) -> str:
    """RFC 7636 §4.2 S256: BASE64URL-ENCODE(SHA256(ASCII(code_verifier))), unpadded."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class PKCECoordinator:
    """In-memory nonce → verifier map with delete-on-read semantics."""

    def __init__(
        self,
        ttl: timedelta = PKCE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl.total_seconds()
        self._clock = clock
        self._entries: Dict[str, PKCEEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def create(self, nonce: str) -> PKCEPair:
        """Generate a verifier/challenge pair and register it under ``nonce``."""
        self.sweep()
        verifier = generate_code_verifier()
        self._entries[nonce] = PKCEEntry(code_verifier=verifier, created_at=self._clock())
        return PKCEPair(code_verifier=verifier, code_challenge=code_challenge_for(verifier))

    def consume(self, nonce: str) -> Optional[str]:
        """Pop the verifier for ``nonce``. Missing or stale entries yield None."""
        entry = self._entries.pop(nonce, None)
        if entry is None:
            return None
        if self._clock() - entry.created_at > self._ttl:
            logger.info("PKCE verifier for nonce %s… expired before callback", nonce[:8])
            return None
        return entry.code_verifier

    def sweep(self) -> int:
        """Drop entries older than the TTL. Returns how many were removed."""
        cutoff = self._clock() - self._ttl
        stale = [nonce for nonce, entry in self._entries.items() if entry.created_at < cutoff]
        for nonce in stale:
            del self._entries[nonce]
        if stale:
            logger.debug("Swept %d stale PKCE entries", len(stale))
        return len(stale)
