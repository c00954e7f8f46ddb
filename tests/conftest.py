"""Shared test fixtures for gitlab-chat-relay."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.auth.tokens import WebhookAuthenticator
from src.bootstrap import CallbackRegistrar, RelayServices
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.notify.coalescer import PipelineCoalescer
from src.notify.delivery import DeliveryDriver
from src.notify.dispatcher import EventDispatcher
from src.storage import CachedStateStore
from src.vk.callback import SettingsConversation
from src.vk.client import VKAPIError

TEST_SECRET = "s" * 32
TEST_CALLBACK_SECRET = "callback-secret"
TEST_DOMAIN = "relay.example.com"


class MemoryBackend:
    """In-memory storage backend that counts calls and can be told to fail."""

    def __init__(self, data: dict[tuple[int, str], str] | None = None) -> None:
        self.data = dict(data or {})
        self.reads = 0
        self.writes = 0
        self.fail_reads = False
        self.fail_writes = False

    async def read(self, recipient_id: int, key: str) -> str:
        self.reads += 1
        if self.fail_reads:
            raise RuntimeError("remote read failed")
        return self.data.get((recipient_id, key), "")

    async def write(self, recipient_id: int, key: str, value: str) -> None:
        self.writes += 1
        if self.fail_writes:
            raise RuntimeError("remote write failed")
        self.data[(recipient_id, key)] = value


class FakeTransport:
    """Records sends and edits; message ids start at 101."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, str, str | None]] = []
        self.edits: list[tuple[int, int, str]] = []
        self.messages: dict[int, str] = {}
        self.send_errors: list[Exception] = []
        self._next_id = 100

    async def send_message(self, peer_id: int, text: str, keyboard: str | None = None) -> int:
        if self.send_errors:
            raise self.send_errors.pop(0)
        self._next_id += 1
        self.messages[self._next_id] = text
        self.sent.append((peer_id, text, keyboard))
        return self._next_id

    async def edit_message(self, peer_id: int, message_id: int, text: str) -> None:
        self.messages[message_id] = text
        self.edits.append((peer_id, message_id, text))

    async def get_message_text(self, message_id: int) -> str | None:
        return self.messages.get(message_id)


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(backend: MemoryBackend) -> CachedStateStore:
    return CachedStateStore(backend)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def vk_error(code: int, method: str = "messages.send") -> VKAPIError:
    return VKAPIError(method, code, f"error {code}")


def make_services(
    store: CachedStateStore,
    transport: FakeTransport,
    registrar: Any = None,
) -> RelayServices:
    """Wire relay services around a test store and transport."""
    authenticator = WebhookAuthenticator(TEST_SECRET, store)
    delivery = DeliveryDriver(transport, retry_pause=0)
    if registrar is None:
        registrar = MagicMock(spec=CallbackRegistrar)
        registrar.confirmation_code = AsyncMock(return_value="confirm-me")
    return RelayServices(
        authenticator=authenticator,
        dispatcher=EventDispatcher(delivery, PipelineCoalescer(store, delivery)),
        conversation=SettingsConversation(authenticator, transport, TEST_DOMAIN),
        registrar=registrar,
        callback_secret=TEST_CALLBACK_SECRET,
    )


def make_audit_event(**kwargs: Any) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.WEBHOOK_FORBIDDEN,
        "action": "POST /webhook/1",
        "result": "denied",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)


def make_push_payload(**kwargs: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "object_kind": "push",
        "before": "1234567890abcdef1234567890abcdef12345678",
        "after": "fedcba0987654321fedcba0987654321fedcba09",
        "ref": "refs/heads/feature/login",
        "checkout_sha": "fedcba0987654321fedcba0987654321fedcba09",
        "user_name": "Jane Doe",
        "project": {
            "id": 15,
            "name": "relay",
            "homepage": "https://gitlab.example.com/team/relay",
            "web_url": "https://gitlab.example.com/team/relay",
        },
        "repository": {
            "name": "relay",
            "homepage": "https://gitlab.example.com/team/relay",
        },
        "commits": [
            {
                "id": "fedcba0987654321fedcba0987654321fedcba09",
                "message": "Add login form\n",
                "url": "https://gitlab.example.com/team/relay/-/commit/fedcba09",
            },
        ],
    }
    payload.update(kwargs)
    return payload


def make_pipeline_payload(pipeline_id: int = 7, status: str = "running") -> dict[str, Any]:
    return {
        "object_kind": "pipeline",
        "object_attributes": {"id": pipeline_id, "ref": "main", "status": status},
        "user": {"name": "Jane Doe", "username": "jane"},
        "project": {
            "id": 15,
            "name": "relay",
            "web_url": "https://gitlab.example.com/team/relay",
        },
    }


def make_job_payload(
    pipeline_id: int = 7, status: str = "success", stage: str = "test", name: str = "pytest",
) -> dict[str, Any]:
    return {
        "object_kind": "build",
        "ref": "main",
        "build_id": 300,
        "build_name": name,
        "build_stage": stage,
        "build_status": status,
        "pipeline_id": pipeline_id,
        "project_name": "team / relay",
        "repository": {"name": "relay", "homepage": "https://gitlab.example.com/team/relay"},
    }
