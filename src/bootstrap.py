"""Process startup: permission check, secret provisioning, callback registration.

This is the only code path allowed to raise :class:`FatalStartupError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.audit.logger import AuditLogger
from src.auth.tokens import (
    WebhookAuthenticator,
    load_or_create_callback_secret,
    load_or_create_secret,
)
from src.config import RelayConfig, callback_url
from src.errors import FatalStartupError
from src.notify.coalescer import PipelineCoalescer
from src.notify.delivery import DeliveryDriver
from src.notify.dispatcher import EventDispatcher
from src.storage import CachedStateStore, SQLiteStorageBackend, StateStore, VKStorageBackend
from src.vk.callback import SettingsConversation
from src.vk.client import VKAPIError, VKClient

logger = logging.getLogger(__name__)

PERMISSION_MESSAGES = 1 << 12
PERMISSION_MANAGE = 1 << 18
REQUIRED_PERMISSIONS = PERMISSION_MESSAGES | PERMISSION_MANAGE

CALLBACK_SERVER_TITLE = "gitlab-chat-relay"


@dataclass
class RelayServices:
    """Everything a request handler needs, wired once at startup."""

    authenticator: WebhookAuthenticator
    dispatcher: EventDispatcher
    conversation: SettingsConversation
    registrar: CallbackRegistrar
    callback_secret: str


def build_store(config: RelayConfig, client: VKClient) -> StateStore:
    if config.storage_backend == "sqlite":
        return CachedStateStore(SQLiteStorageBackend(config.storage_db_path))
    return CachedStateStore(VKStorageBackend(client))


async def check_permissions(client: VKClient) -> None:
    """Fail startup unless the token can send messages and manage the community."""
    try:
        mask, names = await client.get_token_permissions()
    except VKAPIError as exc:
        raise FatalStartupError(f"cannot read token permissions: {exc}") from exc
    if mask & REQUIRED_PERMISSIONS != REQUIRED_PERMISSIONS:
        raise FatalStartupError(
            f"token lacks required permissions (messages, manage); has {names}"
        )


class CallbackRegistrar:
    """Keeps the community's Callback API server pointed at this process."""

    def __init__(self, client: VKClient, domain: str, secret_key: str) -> None:
        self._client = client
        self._url = callback_url(domain)
        self._secret_key = secret_key
        self._group_id: int | None = None
        self._confirmation_code: str | None = None

    async def _get_group_id(self) -> int:
        if self._group_id is None:
            self._group_id = await self._client.get_group_id()
        return self._group_id

    async def confirmation_code(self) -> str:
        if self._confirmation_code is None:
            group_id = await self._get_group_id()
            self._confirmation_code = await self._client.get_callback_confirmation_code(group_id)
        return self._confirmation_code

    async def register(self) -> int:
        """Find or create the callback server for our URL and enable message events."""
        group_id = await self._get_group_id()
        # VK confirms a new server immediately, so the code must be ready first.
        await self.confirmation_code()

        servers = await self._client.get_callback_servers(group_id)
        server_id = next((int(s["id"]) for s in servers if s.get("url") == self._url), None)
        if server_id is None:
            server_id = await self._client.add_callback_server(
                group_id, self._url, CALLBACK_SERVER_TITLE, self._secret_key,
            )
            logger.info("Added callback server %d for %s", server_id, self._url)
        else:
            await self._client.edit_callback_server(
                group_id, server_id, self._url, CALLBACK_SERVER_TITLE, self._secret_key,
            )
            logger.info("Reusing callback server %d for %s", server_id, self._url)

        await self._client.set_callback_settings(group_id, server_id)
        return server_id


async def register_callback_server(registrar: CallbackRegistrar) -> None:
    """Background registration; webhook handling keeps running if it fails."""
    try:
        await registrar.register()
    except VKAPIError as exc:
        logger.critical("Callback server registration failed: %s", exc)


async def bootstrap(
    config: RelayConfig,
    client: VKClient,
    store: StateStore | None = None,
    audit_logger: AuditLogger | None = None,
) -> RelayServices:
    """Verify credentials and wire the relay.

    Raises:
        FatalStartupError: If the token lacks permissions or the secrets
            cannot be read or created.
    """
    await check_permissions(client)
    if store is None:
        store = build_store(config, client)

    secret = await load_or_create_secret(store)
    callback_secret = await load_or_create_callback_secret(store)

    authenticator = WebhookAuthenticator(secret, store)
    delivery = DeliveryDriver(client)
    dispatcher = EventDispatcher(delivery, PipelineCoalescer(store, delivery))
    return RelayServices(
        authenticator=authenticator,
        dispatcher=dispatcher,
        conversation=SettingsConversation(authenticator, client, config.domain, audit_logger),
        registrar=CallbackRegistrar(client, config.domain, callback_secret),
        callback_secret=callback_secret,
    )
