"""
Credential-lifecycle audit events.

The audit trail itself lives in an external collaborator; this module only
defines the event and the sink interface.  The default sink writes one log
line per event to the ``integrations.audit`` logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

audit_logger = logging.getLogger("integrations.audit")


class AuditAction(str, Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    TOKEN_REFRESHED = "token_refreshed"


@dataclass(frozen=True)
class AuditEvent:
    user_id: str
    tool_type: str
    action: AuditAction
    success: bool = True
    detail: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Default sink: structured log line, no persistence."""

    def record(self, event: AuditEvent) -> None:
        audit_logger.info(
            "audit action=%s user=%s tool=%s success=%s%s",
            event.action.value,
            event.user_id,
            event.tool_type,
            event.success,
            f" detail={event.detail}" if event.detail else "",
        )
