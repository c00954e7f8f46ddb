"""Settings conversation driven by VK Callback API ``message_new`` events.

A user writing to the community gets their webhook URL and secret token
back. Two keyboard buttons let them ask again or rotate the token.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from src.config import webhook_url
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.storage import SYSTEM_RECIPIENT_ID
from src.vk.client import VKAPIError

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.auth.tokens import WebhookAuthenticator
    from src.notify.delivery import MessagingTransport

logger = logging.getLogger(__name__)

# Button payload commands
GET_SETTING = "get_setting"
RESET_TOKEN = "reset_token"
NOT_SUPPORTED_BUTTON = "not_supported_button"


def build_settings_keyboard() -> str:
    keyboard = {
        "one_time": False,
        "buttons": [
            [{
                "action": {
                    "type": "text",
                    "label": "Webhook settings",
                    "payload": json.dumps({"command": GET_SETTING}),
                },
                "color": "primary",
            }],
            [{
                "action": {
                    "type": "text",
                    "label": "Reset access token",
                    "payload": json.dumps({"command": RESET_TOKEN}),
                },
                "color": "negative",
            }],
        ],
    }
    return json.dumps(keyboard)


def parse_command(payload: Any) -> str:
    """Extract ``command`` from a button payload; anything unparsable yields ''."""
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            return ""
    if isinstance(payload, dict):
        return str(payload.get("command", ""))
    return ""


class SettingsConversation:
    """Answers users asking for their webhook settings."""

    def __init__(
        self,
        authenticator: WebhookAuthenticator,
        transport: MessagingTransport,
        domain: str,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._auth = authenticator
        self._transport = transport
        self._domain = domain
        self._audit = audit_logger

    async def settings_text(self, recipient_id: int) -> str:
        token = await self._auth.generate_token(recipient_id)
        return (
            f"URL: {webhook_url(self._domain, recipient_id)}\n"
            f"Secret Token: {token}\n"
        )

    async def reply_text(self, recipient_id: int, command: str) -> str:
        if command == NOT_SUPPORTED_BUTTON:
            logger.info("User %d has a client without button support", recipient_id)
            return "Your client does not support this button"

        if command == RESET_TOKEN:
            logger.info("User %d reset token", recipient_id)
            await self._auth.regenerate_token(recipient_id)
            if self._audit:
                self._audit.log(AuditEvent(
                    event_type=AuditEventType.TOKEN_RESET,
                    recipient_id=recipient_id,
                    action="reset_token",
                    result="success",
                    risk_level=RiskLevel.MEDIUM,
                ))
            return "Token reset. New webhook settings:\n\n" + await self.settings_text(recipient_id)

        if command == GET_SETTING:
            logger.info("User %d requested settings", recipient_id)
        return "Your webhook settings:\n\n" + await self.settings_text(recipient_id)

    async def handle_message(self, message: dict[str, Any]) -> None:
        peer_id = int(message.get("peer_id", 0))
        # Group chats are not recipients.
        if peer_id <= 0 or peer_id > SYSTEM_RECIPIENT_ID:
            return

        recipient_id = int(message.get("from_id", peer_id))
        text = await self.reply_text(recipient_id, parse_command(message.get("payload")))

        try:
            await self._transport.send_message(peer_id, text, build_settings_keyboard())
        except VKAPIError as exc:
            logger.error("Settings reply to %d failed: %s", peer_id, exc)
