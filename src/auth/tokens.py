"""Webhook tokens.

Each recipient's token is ``HMAC-SHA256(secret, "{recipient_id}_{salt}")``
hex encoded. The secret is process-wide and persisted under the system
recipient; the salt is per recipient. Rotating the salt invalidates every URL
previously handed out for that recipient.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import string

from src.errors import FatalStartupError, RandomSourceError, StorageError
from src.storage import (
    KEY_CALLBACK_SECRET,
    KEY_SALT,
    KEY_SECRET,
    SYSTEM_RECIPIENT_ID,
    StateStore,
    StoreView,
)

logger = logging.getLogger(__name__)

_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase

SALT_LENGTH = 16
SECRET_LENGTH = 32


def generate_random_string(length: int) -> str:
    """Return ``length`` alphanumeric characters from the OS secure random source."""
    try:
        return "".join(secrets.choice(_ALPHABET) for _ in range(length))
    except (OSError, NotImplementedError) as exc:
        raise RandomSourceError(f"secure random source unavailable: {exc}") from exc


def sign(secret: str, payload: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


class WebhookAuthenticator:
    """Issues and verifies per-recipient webhook tokens."""

    def __init__(self, secret: str, store: StateStore) -> None:
        self._secret = secret
        self._store = store

    async def generate_token(self, recipient_id: int) -> str:
        async with self._store.transaction() as tx:
            salt = await self._get_or_create_salt(tx, recipient_id)
        return sign(self._secret, f"{recipient_id}_{salt}")

    async def check_token(self, candidate: str, recipient_id: int) -> bool:
        """Constant-time comparison against the recipient's current token."""
        if not candidate:
            return False
        expected = await self.generate_token(recipient_id)
        return hmac.compare_digest(candidate.encode(), expected.encode())

    async def regenerate_token(self, recipient_id: int) -> str:
        salt = generate_random_string(SALT_LENGTH)
        await self._store.set(recipient_id, KEY_SALT, salt)
        logger.info("Rotated webhook token for recipient %d", recipient_id)
        return sign(self._secret, f"{recipient_id}_{salt}")

    @staticmethod
    async def _get_or_create_salt(tx: StoreView, recipient_id: int) -> str:
        salt = await tx.get(recipient_id, KEY_SALT)
        if not salt:
            salt = generate_random_string(SALT_LENGTH)
            await tx.set(recipient_id, KEY_SALT, salt)
        return salt


async def _load_or_create(store: StateStore, key: str, length: int) -> str:
    try:
        async with store.transaction() as tx:
            value = await tx.get(SYSTEM_RECIPIENT_ID, key)
            if not value:
                value = generate_random_string(length)
                await tx.set(SYSTEM_RECIPIENT_ID, key, value)
                logger.info("Created %s under system recipient", key)
            return value
    except (StorageError, RandomSourceError) as exc:
        raise FatalStartupError(f"cannot provision {key}: {exc}") from exc


async def load_or_create_secret(store: StateStore) -> str:
    """Fetch the HMAC secret, creating it on first boot."""
    return await _load_or_create(store, KEY_SECRET, SECRET_LENGTH)


async def load_or_create_callback_secret(store: StateStore) -> str:
    """Fetch the Callback API secret key, creating it on first boot."""
    return await _load_or_create(store, KEY_CALLBACK_SECRET, SECRET_LENGTH)
