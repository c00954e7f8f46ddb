"""Async VK API client.

Thin wrapper over ``httpx.AsyncClient`` covering the methods the relay needs:
messages, per-user storage, token permissions and Callback API servers.
Every failure surfaces as :class:`VKAPIError` carrying a
:class:`TransportErrorKind` so callers decide retry policy without knowing
VK error codes.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "5.131"
DEFAULT_BASE_URL = "https://api.vk.com/method"

# VK error codes
_ERR_TOO_MANY = 6
_ERR_SERVER = 10
_ERR_MESSAGES_DENY_SEND = 901


class TransportErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    RECIPIENT_DENIES = "recipient_denies"
    OTHER = "other"


def classify_error_code(code: int) -> TransportErrorKind:
    if code == _ERR_TOO_MANY:
        return TransportErrorKind.RATE_LIMITED
    if code == _ERR_SERVER:
        return TransportErrorKind.SERVER
    if code == _ERR_MESSAGES_DENY_SEND:
        return TransportErrorKind.RECIPIENT_DENIES
    return TransportErrorKind.OTHER


class VKAPIError(Exception):
    """A failed VK API call."""

    def __init__(self, method: str, code: int, message: str, kind: TransportErrorKind | None = None) -> None:
        self.method = method
        self.code = code
        self.message = message
        self.kind = kind if kind is not None else classify_error_code(code)
        super().__init__(f"{method}: [{code}] {message}")


def build_link_keyboard(url: str, label: str) -> str:
    """Inline keyboard with a single open_link button, JSON encoded."""
    keyboard = {
        "inline": True,
        "buttons": [[{"action": {"type": "open_link", "link": url, "label": label}}]],
    }
    return json.dumps(keyboard, ensure_ascii=False)


class VKClient:
    """Community-token VK API client."""

    def __init__(
        self,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._access_token = access_token
        self._api_version = api_version
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(verify=True, timeout=timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def call(self, method: str, **params: Any) -> Any:
        """Invoke an API method and return its ``response`` field."""
        data = {k: _encode_param(v) for k, v in params.items() if v is not None}
        data["access_token"] = self._access_token
        data["v"] = self._api_version

        try:
            resp = await self._http.post(f"{self._base_url}/{method}", data=data)
        except httpx.HTTPError as exc:
            raise VKAPIError(method, 0, str(exc), TransportErrorKind.OTHER) from exc

        if resp.status_code >= 500:
            raise VKAPIError(method, resp.status_code, "server error", TransportErrorKind.SERVER)

        try:
            body = resp.json()
        except json.JSONDecodeError as exc:
            raise VKAPIError(method, resp.status_code, "invalid JSON response") from exc

        if "error" in body:
            error = body["error"]
            raise VKAPIError(method, int(error.get("error_code", 0)), error.get("error_msg", ""))
        return body.get("response")

    # --- Messages ---

    async def send_message(self, peer_id: int, text: str, keyboard: str | None = None) -> int:
        response = await self.call(
            "messages.send",
            peer_id=peer_id,
            random_id=0,
            message=text,
            keyboard=keyboard,
            disable_mentions=1,
            dont_parse_links=1,
        )
        return int(response)

    async def edit_message(self, peer_id: int, message_id: int, text: str) -> None:
        await self.call(
            "messages.edit",
            peer_id=peer_id,
            message_id=message_id,
            message=text,
            dont_parse_links=1,
        )

    async def get_message_text(self, message_id: int) -> str | None:
        """Return a message's text, or None when VK returns no item for the id."""
        response = await self.call("messages.getById", message_ids=message_id)
        items = response.get("items", []) if response else []
        if not items:
            return None
        return items[0].get("text", "")

    # --- Storage ---

    async def storage_get(self, user_id: int, key: str) -> str:
        response = await self.call("storage.get", user_id=user_id, key=key)
        # A single key returns a bare string on old API versions, a list of pairs on newer ones.
        if isinstance(response, list):
            return response[0].get("value", "") if response else ""
        return response or ""

    async def storage_set(self, user_id: int, key: str, value: str) -> None:
        await self.call("storage.set", user_id=user_id, key=key, value=value)

    # --- Community settings ---

    async def get_token_permissions(self) -> tuple[int, list[str]]:
        response = await self.call("groups.getTokenPermissions")
        names = [p.get("name", "") for p in response.get("permissions", [])]
        return int(response.get("mask", 0)), names

    async def get_group_id(self) -> int:
        response = await self.call("groups.getById")
        groups = response.get("groups", []) if isinstance(response, dict) else response
        if not groups:
            raise VKAPIError("groups.getById", 0, "token is not bound to a community")
        return int(groups[0]["id"])

    async def get_callback_servers(self, group_id: int) -> list[dict[str, Any]]:
        response = await self.call("groups.getCallbackServers", group_id=group_id)
        return list(response.get("items", []))

    async def add_callback_server(self, group_id: int, url: str, title: str, secret_key: str) -> int:
        response = await self.call(
            "groups.addCallbackServer",
            group_id=group_id,
            url=url,
            title=title,
            secret_key=secret_key,
        )
        return int(response["server_id"])

    async def edit_callback_server(
        self, group_id: int, server_id: int, url: str, title: str, secret_key: str,
    ) -> None:
        await self.call(
            "groups.editCallbackServer",
            group_id=group_id,
            server_id=server_id,
            url=url,
            title=title,
            secret_key=secret_key,
        )

    async def set_callback_settings(self, group_id: int, server_id: int) -> None:
        await self.call(
            "groups.setCallbackSettings",
            group_id=group_id,
            server_id=server_id,
            api_version=self._api_version,
            message_new=1,
        )

    async def get_callback_confirmation_code(self, group_id: int) -> str:
        response = await self.call("groups.getCallbackConfirmationCode", group_id=group_id)
        return str(response["code"])


def _encode_param(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)
