"""Outbound chat delivery with bounded retry.

``send`` retries only transient transport failures (rate limiting, server
errors) with a fixed pause. Everything else is terminal: logged and reported
to the caller as message id 0. ``edit`` never retries; the coalescer falls
back to ``send`` when it fails.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from src.errors import EditError
from src.models import LinkButton
from src.vk.client import TransportErrorKind, VKAPIError, build_link_keyboard

logger = logging.getLogger(__name__)

MAX_SEND_ATTEMPTS = 3
RETRY_PAUSE_SECONDS = 1.0

# Returned by send() when no message was delivered.
NO_MESSAGE_ID = 0

_RETRYABLE = frozenset({TransportErrorKind.RATE_LIMITED, TransportErrorKind.SERVER})


class MessagingTransport(Protocol):
    async def send_message(self, peer_id: int, text: str, keyboard: str | None = None) -> int: ...

    async def edit_message(self, peer_id: int, message_id: int, text: str) -> None: ...

    async def get_message_text(self, message_id: int) -> str | None: ...


class DeliveryDriver:
    """Sends and edits chat messages through a messaging transport."""

    def __init__(
        self,
        transport: MessagingTransport,
        max_attempts: int = MAX_SEND_ATTEMPTS,
        retry_pause: float = RETRY_PAUSE_SECONDS,
    ) -> None:
        self._transport = transport
        self._max_attempts = max_attempts
        self._retry_pause = retry_pause

    async def send(self, recipient_id: int, text: str, link: LinkButton | None = None) -> int:
        """Send a new message and return its id, or NO_MESSAGE_ID on failure."""
        keyboard = build_link_keyboard(link.url, link.label) if link else None

        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._transport.send_message(recipient_id, text, keyboard)
            except VKAPIError as exc:
                if exc.kind == TransportErrorKind.RECIPIENT_DENIES:
                    logger.info("Recipient %d does not accept messages: %s", recipient_id, exc)
                    return NO_MESSAGE_ID
                if exc.kind not in _RETRYABLE:
                    logger.error("Message send to %d failed: %s", recipient_id, exc)
                    return NO_MESSAGE_ID
                logger.warning(
                    "Retrying message send to %d (attempt %d/%d): %s",
                    recipient_id, attempt, self._max_attempts, exc,
                )
            if attempt < self._max_attempts:
                await asyncio.sleep(self._retry_pause)

        logger.error(
            "Giving up on message to %d after %d attempts", recipient_id, self._max_attempts,
        )
        return NO_MESSAGE_ID

    async def edit(self, recipient_id: int, message_id: int, appended_text: str) -> None:
        """Append a line to an existing message.

        Raises:
            EditError: If the message id is unset, the message cannot be
                fetched, or the edit call fails.
        """
        if message_id == NO_MESSAGE_ID:
            raise EditError("no message to edit")

        try:
            current = await self._transport.get_message_text(message_id)
        except VKAPIError as exc:
            raise EditError(f"cannot fetch message {message_id}: {exc}") from exc
        if current is None:
            raise EditError(f"message {message_id} not found")

        try:
            await self._transport.edit_message(recipient_id, message_id, f"{current}\n{appended_text}")
        except VKAPIError as exc:
            raise EditError(f"cannot edit message {message_id}: {exc}") from exc
