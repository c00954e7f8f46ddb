"""Tests for startup checks and callback server registration."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from src.bootstrap import (
    CallbackRegistrar,
    bootstrap,
    build_store,
    check_permissions,
    register_callback_server,
)
from src.config import RelayConfig
from src.errors import FatalStartupError
from src.storage import KEY_CALLBACK_SECRET, SYSTEM_RECIPIENT_ID, CachedStateStore
from src.vk.client import VKClient
from tests.conftest import MemoryBackend, vk_error

_FULL_MASK = (1 << 12) | (1 << 18)
_CALLBACK_URL = "https://relay.example.com/callback"


@pytest.fixture
def client() -> MagicMock:
    mock = MagicMock(spec=VKClient)
    mock.get_token_permissions.return_value = (_FULL_MASK, ["messages", "manage"])
    mock.get_group_id.return_value = 321
    mock.get_callback_confirmation_code.return_value = "c0nf1rm"
    mock.get_callback_servers.return_value = []
    mock.add_callback_server.return_value = 9
    return mock


@pytest.fixture
def config() -> RelayConfig:
    return RelayConfig(vk_access_token="token", domain="relay.example.com")


class TestPermissions:
    @pytest.mark.asyncio
    async def test_full_permissions_pass(self, client: MagicMock) -> None:
        await check_permissions(client)

    @pytest.mark.asyncio
    async def test_missing_manage_permission_is_fatal(self, client: MagicMock) -> None:
        client.get_token_permissions.return_value = (1 << 12, ["messages"])
        with pytest.raises(FatalStartupError, match="messages"):
            await check_permissions(client)

    @pytest.mark.asyncio
    async def test_api_failure_is_fatal(self, client: MagicMock) -> None:
        client.get_token_permissions.side_effect = vk_error(5, "groups.getTokenPermissions")
        with pytest.raises(FatalStartupError):
            await check_permissions(client)


class TestRegistrar:
    @pytest.mark.asyncio
    async def test_adds_server_when_absent(self, client: MagicMock) -> None:
        registrar = CallbackRegistrar(client, "relay.example.com", "cb-secret")
        assert await registrar.register() == 9
        client.add_callback_server.assert_awaited_once_with(
            321, _CALLBACK_URL, "gitlab-chat-relay", "cb-secret",
        )
        client.edit_callback_server.assert_not_awaited()
        client.set_callback_settings.assert_awaited_once_with(321, 9)

    @pytest.mark.asyncio
    async def test_reuses_existing_server(self, client: MagicMock) -> None:
        client.get_callback_servers.return_value = [
            {"id": 3, "url": "https://other.example.com/callback"},
            {"id": 4, "url": _CALLBACK_URL},
        ]
        registrar = CallbackRegistrar(client, "relay.example.com", "cb-secret")
        assert await registrar.register() == 4
        client.add_callback_server.assert_not_awaited()
        client.edit_callback_server.assert_awaited_once()
        client.set_callback_settings.assert_awaited_once_with(321, 4)

    @pytest.mark.asyncio
    async def test_confirmation_code_is_cached(self, client: MagicMock) -> None:
        registrar = CallbackRegistrar(client, "relay.example.com", "cb-secret")
        await registrar.register()
        assert await registrar.confirmation_code() == "c0nf1rm"
        client.get_callback_confirmation_code.assert_awaited_once_with(321)

    @pytest.mark.asyncio
    async def test_background_failure_is_logged(
        self, client: MagicMock, caplog: pytest.LogCaptureFixture,
    ) -> None:
        client.get_callback_servers.side_effect = vk_error(15, "groups.getCallbackServers")
        registrar = CallbackRegistrar(client, "relay.example.com", "cb-secret")
        with caplog.at_level(logging.CRITICAL):
            await register_callback_server(registrar)
        assert "Callback server registration failed" in caplog.text


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_wires_services_and_persists_secrets(
        self, client: MagicMock, config: RelayConfig, backend: MemoryBackend,
    ) -> None:
        services = await bootstrap(config, client, store=CachedStateStore(backend))
        assert services.callback_secret == backend.data[(SYSTEM_RECIPIENT_ID, KEY_CALLBACK_SECRET)]
        token = await services.authenticator.generate_token(42)
        assert await services.authenticator.check_token(token, 42)

    @pytest.mark.asyncio
    async def test_secret_storage_failure_is_fatal(
        self, client: MagicMock, config: RelayConfig, backend: MemoryBackend,
    ) -> None:
        backend.fail_reads = True
        with pytest.raises(FatalStartupError):
            await bootstrap(config, client, store=CachedStateStore(backend))

    @pytest.mark.asyncio
    async def test_permission_failure_stops_before_storage(
        self, client: MagicMock, config: RelayConfig, backend: MemoryBackend,
    ) -> None:
        client.get_token_permissions.return_value = (0, [])
        with pytest.raises(FatalStartupError):
            await bootstrap(config, client, store=CachedStateStore(backend))
        assert backend.reads == 0


def test_build_store_sqlite(tmp_path: Path, client: MagicMock) -> None:
    config = RelayConfig(
        vk_access_token="token",
        domain="relay.example.com",
        storage_backend="sqlite",
        storage_db_path=str(tmp_path / "relay.db"),
    )
    assert isinstance(build_store(config, client), CachedStateStore)
    assert (tmp_path / "relay.db").exists()
