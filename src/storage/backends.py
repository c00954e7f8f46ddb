"""Durable backends for the per-recipient state store."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.vk.client import VKClient

# Namespaces relay keys among other values stored under the same VK user.
KEY_PREFIX = "glrelay_"


class VKStorageBackend:
    """Keeps values in VK's per-user ``storage.*`` API."""

    def __init__(self, client: VKClient, prefix: str = KEY_PREFIX) -> None:
        self._client = client
        self._prefix = prefix

    async def read(self, recipient_id: int, key: str) -> str:
        return await self._client.storage_get(recipient_id, self._prefix + key)

    async def write(self, recipient_id: int, key: str, value: str) -> None:
        await self._client.storage_set(recipient_id, self._prefix + key, value)


class SQLiteStorageBackend:
    """SQLite-backed storage for local runs without VK storage."""

    def __init__(self, db_path: str) -> None:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS recipient_keys (
                recipient_id INTEGER NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (recipient_id, key)
            )"""
        )
        self._conn.commit()

    async def read(self, recipient_id: int, key: str) -> str:
        row = self._conn.execute(
            "SELECT value FROM recipient_keys WHERE recipient_id = ? AND key = ?",
            (recipient_id, key),
        ).fetchone()
        return row[0] if row else ""

    async def write(self, recipient_id: int, key: str, value: str) -> None:
        self._conn.execute(
            """INSERT INTO recipient_keys (recipient_id, key, value) VALUES (?, ?, ?)
               ON CONFLICT(recipient_id, key) DO UPDATE SET value=excluded.value""",
            (recipient_id, key, value),
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
