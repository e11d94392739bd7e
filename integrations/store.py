"""
CredentialStore — encrypted, durable storage of one Integration per
(user, tool).

Both token fields are encrypted independently before they reach the
database.  Every successful write emits exactly one audit event.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config
from database.models import Integration
from integrations.audit import AuditAction, AuditEvent, AuditSink, LoggingAuditSink
from integrations.base import TokenSet
from integrations.encryption import TokenCipher

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Some backends (SQLite) hand back naive datetimes; they are stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore:
    """Encrypts tokens and upserts / reads Integration rows."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        encryption_key: Optional[Union[str, bytes]] = None,
        audit_sink: Optional[AuditSink] = None,
    ):
        # Key first: nothing else is usable without it.
        key = config.token_encryption_key if encryption_key is None else encryption_key
        self._cipher = TokenCipher(key)

        if session_factory is None:
            from database.session import get_session_factory

            session_factory = get_session_factory()
        self._session_factory = session_factory
        self._audit = audit_sink or LoggingAuditSink()

    # ── Encryption ──────────────────────────────────────────────────────

    def encrypt(self, plaintext: str) -> str:
        return self._cipher.encrypt(plaintext)

    def decrypt(self, ciphertext: str) -> str:
        return self._cipher.decrypt(ciphertext)

    # ── Reads ───────────────────────────────────────────────────────────

    async def get_integration(self, user_id: str, tool_type: str) -> Optional[Integration]:
        async with self._session_factory() as session:
            return await self._select_one(session, user_id, tool_type)

    async def list_integrations(
        self, user_id: str, *, active_only: bool = True
    ) -> List[Integration]:
        stmt = select(Integration).where(Integration.user_id == user_id)
        if active_only:
            stmt = stmt.where(Integration.is_active.is_(True))
        async with self._session_factory() as session:
            result = await session.execute(stmt.order_by(Integration.tool_type))
            return list(result.scalars().all())

    async def describe_integrations(self, user_id: str) -> List[Dict[str, Any]]:
        """Token metadata for every row of a user (never the tokens themselves)."""
        now = _utcnow()
        rows = await self.list_integrations(user_id, active_only=False)
        described = []
        for row in rows:
            expires_at = as_utc(row.expires_at)
            described.append(
                {
                    "tool_type": row.tool_type,
                    "is_active": row.is_active,
                    "is_connected": row.is_connected,
                    "connected_at": as_utc(row.connected_at).isoformat() if row.connected_at else None,
                    "updated_at": as_utc(row.updated_at).isoformat() if row.updated_at else None,
                    "expires_at": expires_at.isoformat() if expires_at else None,
                    "expires_in_seconds": int((expires_at - now).total_seconds()) if expires_at else None,
                    "has_refresh_token": bool(row.refresh_token),
                    "scope": row.scope,
                    "error_message": row.error_message,
                }
            )
        return described

    # ── Writes ──────────────────────────────────────────────────────────

    async def store_tokens(
        self,
        user_id: str,
        tool_type: str,
        tokens: TokenSet,
        *,
        action: AuditAction = AuditAction.CONNECT,
    ) -> Integration:
        """
        Upsert the Integration row for ``(user_id, tool_type)``.

        ``action=CONNECT`` (a fresh authorization) reactivates the row and
        replaces every field.  ``action=TOKEN_REFRESHED`` leaves ``is_active``
        alone, so a refresh that lands after a disconnect does not undo it,
        and keeps the stored refresh token / scope when the provider did not
        send new ones.
        """
        is_refresh = action == AuditAction.TOKEN_REFRESHED
        access_ct = self.encrypt(tokens.access_token)
        refresh_ct = self.encrypt(tokens.refresh_token) if tokens.refresh_token else None

        row: Optional[Integration] = None
        for attempt in range(2):
            now = _utcnow()
            async with self._session_factory() as session:
                try:
                    row = await self._select_one(session, user_id, tool_type)
                    if row is None:
                        row = Integration(
                            user_id=user_id,
                            tool_type=tool_type,
                            is_active=True,
                            connected_at=now,
                        )
                        session.add(row)
                    elif not is_refresh:
                        row.is_active = True
                        row.connected_at = now

                    row.is_connected = True
                    row.access_token = access_ct
                    if refresh_ct is not None or not is_refresh:
                        row.refresh_token = refresh_ct
                    if tokens.scope is not None or not is_refresh:
                        row.scope = tokens.scope
                    row.expires_at = tokens.expires_at
                    row.updated_at = now
                    row.error_message = None
                    if is_refresh:
                        row.last_refreshed_at = now

                    await session.commit()
                    break
                except IntegrityError:
                    # Lost an insert race for the unique (user, tool) key, retry as update.
                    await session.rollback()
                    if attempt:
                        raise
                    logger.info("Concurrent insert for %s/%s, retrying as update", user_id, tool_type)

        logger.info(
            "%s %s tokens for user %s",
            "Refreshed" if is_refresh else "Stored",
            tool_type,
            user_id,
        )
        self._emit(AuditEvent(user_id=user_id, tool_type=tool_type, action=action))
        return row

    async def deactivate(self, user_id: str, tool_type: str) -> bool:
        """Set ``is_active=False``. Returns False if no row exists."""
        async with self._session_factory() as session:
            row = await self._select_one(session, user_id, tool_type)
            if row is None:
                return False
            row.is_active = False
            row.updated_at = _utcnow()
            await session.commit()

        logger.info("Deactivated %s for user %s", tool_type, user_id)
        self._emit(
            AuditEvent(user_id=user_id, tool_type=tool_type, action=AuditAction.DISCONNECT)
        )
        return True

    async def mark_needs_reconnect(self, user_id: str, tool_type: str, reason: str) -> None:
        """Flag a row whose refresh token the provider has rejected."""
        async with self._session_factory() as session:
            row = await self._select_one(session, user_id, tool_type)
            if row is None:
                return
            row.is_connected = False
            row.error_message = reason
            row.updated_at = _utcnow()
            await session.commit()
        logger.warning("%s for user %s needs reconnect: %s", tool_type, user_id, reason)

    # ── Internals ───────────────────────────────────────────────────────

    @staticmethod
    async def _select_one(
        session: AsyncSession, user_id: str, tool_type: str
    ) -> Optional[Integration]:
        result = await session.execute(
            select(Integration).where(
                Integration.user_id == user_id,
                Integration.tool_type == tool_type,
            )
        )
        return result.scalar_one_or_none()

    def _emit(self, event: AuditEvent) -> None:
        try:
            self._audit.record(event)
        except Exception:
            # The write already committed; a broken sink must not turn it into a failure.
            logger.exception("Audit sink failed for %s/%s", event.tool_type, event.action.value)
