"""
SQLAlchemy ORM models for the credential store.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Integration(Base):
    """One OAuth credential per (user, tool). Rows are deactivated, never deleted."""

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("user_id", "tool_type", name="uq_integrations_user_tool"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    tool_type = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_connected = Column(Boolean, nullable=False, default=True)
    access_token = Column(Text, nullable=False)       # Fernet ciphertext
    refresh_token = Column(Text)                       # Fernet ciphertext
    expires_at = Column(DateTime(timezone=True))       # NULL = non-expiring
    scope = Column(Text)
    connected_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_refreshed_at = Column(DateTime(timezone=True))
    error_message = Column(Text)

    def __repr__(self) -> str:
        return (
            f"<Integration user={self.user_id} tool={self.tool_type} "
            f"active={self.is_active} connected={self.is_connected}>"
        )
