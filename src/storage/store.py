"""Per-recipient state store with a process-local read-through cache.

The cache is shared by every recipient and guarded by a single
``asyncio.Lock``. Compound read-then-write sequences (salt creation, pipeline
claims) run inside :meth:`CachedStateStore.transaction` so two concurrent
webhooks for the same recipient cannot interleave. Sharding the lock by
recipient id is the natural next step if webhook volume grows.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from src.errors import StorageError

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Durable key-value store. Missing keys read as an empty string."""

    async def read(self, recipient_id: int, key: str) -> str: ...

    async def write(self, recipient_id: int, key: str, value: str) -> None: ...


class StoreView(Protocol):
    async def get(self, recipient_id: int, key: str) -> str: ...

    async def set(self, recipient_id: int, key: str, value: str) -> None: ...


class StateStore(StoreView, Protocol):
    def transaction(self) -> AbstractAsyncContextManager[StoreView]: ...


class _LockedView:
    """Store access for code that already holds the store lock."""

    def __init__(self, store: CachedStateStore) -> None:
        self._store = store

    async def get(self, recipient_id: int, key: str) -> str:
        return await self._store._get_locked(recipient_id, key)

    async def set(self, recipient_id: int, key: str, value: str) -> None:
        await self._store._set_locked(recipient_id, key, value)


class CachedStateStore:
    """Read-through cache in front of a :class:`StorageBackend`."""

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend
        self._lock = asyncio.Lock()
        self._cache: dict[tuple[int, str], str] = {}

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreView]:
        """Hold the store lock for a sequence of get/set calls."""
        async with self._lock:
            yield _LockedView(self)

    async def get(self, recipient_id: int, key: str) -> str:
        async with self.transaction() as tx:
            return await tx.get(recipient_id, key)

    async def set(self, recipient_id: int, key: str, value: str) -> None:
        async with self.transaction() as tx:
            await tx.set(recipient_id, key, value)

    async def _get_locked(self, recipient_id: int, key: str) -> str:
        cache_key = (recipient_id, key)
        if cache_key in self._cache:
            return self._cache[cache_key]

        try:
            value = await self._backend.read(recipient_id, key)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError("read", recipient_id, key, exc) from exc

        self._cache[cache_key] = value
        return value

    async def _set_locked(self, recipient_id: int, key: str, value: str) -> None:
        if await self._get_locked(recipient_id, key) == value:
            return

        try:
            await self._backend.write(recipient_id, key, value)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError("write", recipient_id, key, exc) from exc

        # Only a confirmed write reaches the cache.
        self._cache[(recipient_id, key)] = value
        logger.debug("Stored %s for recipient %d", key, recipient_id)
