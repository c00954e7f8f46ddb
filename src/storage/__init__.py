"""Per-recipient durable state."""

from src.storage.backends import KEY_PREFIX, SQLiteStorageBackend, VKStorageBackend
from src.storage.store import CachedStateStore, StateStore, StorageBackend, StoreView

# Recipient id under which process-wide values are kept.
SYSTEM_RECIPIENT_ID = 2_000_000_000

# Stored key names
KEY_SECRET = "secret"
KEY_CALLBACK_SECRET = "callback_secret"
KEY_SALT = "salt"
KEY_PIPELINE_LAST_ID = "pipeline_last_id"
KEY_PIPELINE_MESSAGE_ID = "pipeline_message_id"

__all__ = [
    "KEY_CALLBACK_SECRET",
    "KEY_PIPELINE_LAST_ID",
    "KEY_PIPELINE_MESSAGE_ID",
    "KEY_PREFIX",
    "KEY_SALT",
    "KEY_SECRET",
    "SYSTEM_RECIPIENT_ID",
    "CachedStateStore",
    "SQLiteStorageBackend",
    "StateStore",
    "StorageBackend",
    "StoreView",
    "VKStorageBackend",
]
