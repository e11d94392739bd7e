"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key comes from ``config.token_encryption_key`` (env var:
``TOKEN_ENCRYPTION_KEY``) and is mandatory: there is no plaintext mode and
no fallback secret.  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from integrations.errors import ConfigError, DecryptionError


class TokenCipher:
    """Symmetric cipher bound to one key for the life of the process."""

    def __init__(self, key: Optional[Union[str, bytes]]):
        if not key:
            raise ConfigError(
                "TOKEN_ENCRYPTION_KEY is not set, refusing to start without a token "
                "encryption key. Generate one: python -c \"from cryptography.fernet "
                "import Fernet; print(Fernet.generate_key().decode())\""
            )
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as exc:
            raise ConfigError(f"TOKEN_ENCRYPTION_KEY is not a valid Fernet key: {exc}") from exc

    def encrypt(self, plaintext: str) -> str:
        """Return the Fernet ciphertext (URL-safe base64) of ``plaintext``."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored token. Raises ``DecryptionError`` on any mismatch."""
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            raise DecryptionError("Stored token could not be decrypted") from exc
