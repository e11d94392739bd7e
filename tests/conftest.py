"""
Shared fixtures: per-test SQLite credential store, scripted provider
endpoints, and a fully wired IntegrationService.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple, Union
from urllib.parse import parse_qs

import httpx
import pytest
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config.settings import Settings
from database.models import Base
from integrations.audit import AuditEvent
from integrations.base import TokenSet
from integrations.registry import ProviderRegistry
from integrations.service import IntegrationService
from integrations.store import CredentialStore

STATE_SECRET = "test-state-secret"


class RecordingAuditSink:
    def __init__(self):
        self.events: List[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)


class FakeProvider:
    """
    Scripted OAuth provider behind ``httpx.MockTransport``.

    Queue responses with ``queue(status, body)`` or ``queue_error(exc)``;
    every request is recorded in ``requests``.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.requests: List[httpx.Request] = []
        self._script: List[Union[Tuple[int, Any], Exception]] = []

    def queue(self, status: int, body: Any = None) -> "FakeProvider":
        self._script.append((status, body if body is not None else {}))
        return self

    def queue_tokens(self, access_token: str, refresh_token: Optional[str] = None,
                     expires_in: Optional[int] = 3600, **extra: Any) -> "FakeProvider":
        body = {"access_token": access_token, "token_type": "Bearer", **extra}
        if refresh_token is not None:
            body["refresh_token"] = refresh_token
        if expires_in is not None:
            body["expires_in"] = expires_in
        return self.queue(200, body)

    def queue_error(self, exc: Exception) -> "FakeProvider":
        self._script.append(exc)
        return self

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self._script:
            return httpx.Response(500, json={"error": "no scripted response"})
        item = self._script.pop(0)
        if isinstance(item, Exception):
            raise item
        status, body = item
        if status == 204:
            return httpx.Response(204)
        return httpx.Response(status, content=json.dumps(body).encode(),
                              headers={"Content-Type": "application/json"})

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def form(self, index: int = -1) -> dict:
        """Decoded form body of a recorded request (single values)."""
        parsed = parse_qs(self.requests[index].content.decode())
        return {k: v[0] for k, v in parsed.items()}


def in_minutes(minutes: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


@pytest.fixture
def encryption_key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
def settings(encryption_key) -> Settings:
    return Settings(
        _env_file=None,
        token_encryption_key=encryption_key,
        oauth_state_secret=STATE_SECRET,
        oauth_redirect_base="http://testserver",
        integrations_ui_url="http://ui.test/settings/integrations",
        oauth_http_timeout_seconds=5.0,
        token_refresh_backoff_seconds=0.0,
        github_client_id="gh-id",
        github_client_secret="gh-secret",
        slack_client_id="slack-id",
        slack_client_secret="slack-secret",
        microsoft_client_id="ms-id",
        microsoft_client_secret="ms-secret",
        jira_client_id="jira-id",
        jira_client_secret="jira-secret",
        figma_client_id="",
        figma_client_secret="",
        atlassian_client_id="",
        atlassian_client_secret="",
        confluence_client_id="",
        confluence_client_secret="",
        outlook_client_id="",
        outlook_client_secret="",
        teams_client_id="",
        teams_client_secret="",
    )


@pytest.fixture
def registry(settings) -> ProviderRegistry:
    return ProviderRegistry.from_settings(settings)


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    # One file per test; each session gets its own connection.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'integrations.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def store(session_factory, encryption_key, audit_sink) -> CredentialStore:
    return CredentialStore(session_factory, encryption_key=encryption_key, audit_sink=audit_sink)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def http_client(provider) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider.handler)) as client:
        yield client


@pytest.fixture
def service(settings, session_factory, http_client, audit_sink) -> IntegrationService:
    return IntegrationService(
        settings,
        session_factory=session_factory,
        http_client=http_client,
        audit_sink=audit_sink,
    )


@pytest.fixture
def seed(store):
    """Insert an integration row directly: ``await seed("u1", "github", expires_at=...)``."""

    async def _seed(
        user_id: str = "user-1",
        tool_type: str = "github",
        *,
        access_token: str = "old-access",
        refresh_token: Optional[str] = "old-refresh",
        expires_at: Optional[datetime] = None,
        scope: Optional[str] = "repo",
    ):
        return await store.store_tokens(
            user_id,
            tool_type,
            TokenSet(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                scope=scope,
            ),
        )

    return _seed
