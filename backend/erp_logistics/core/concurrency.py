"""Process-local keyed locks serialising writers per document and per stock key."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable

import anyio
from loguru import logger

from erp_logistics.core.config import settings
from erp_logistics.core.errors import ConcurrencyConflict


def document_key(do_id: str) -> str:
    return f"do:{do_id}"


def stock_key(product_id: str, warehouse_id: str) -> str:
    return f"stock:{product_id}@{warehouse_id}"


def so_line_key(so_line_id: str) -> str:
    return f"so-line:{so_line_id}"


def sequence_key(seq_name: str) -> str:
    return f"seq:{seq_name}"


class KeyedLocks:
    """A family of ``anyio.Lock`` objects created on demand and dropped when idle.

    ``hold`` acquires every requested key in sorted order so two callers asking
    for overlapping key sets can never deadlock each other.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, anyio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def _checkout(self, key: Hashable) -> anyio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = anyio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: Hashable) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, *keys: str, timeout: float | None = None) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        timeout = settings.LOCK_TIMEOUT_SEC if timeout is None else timeout
        checked_out: list[str] = []
        acquired: list[str] = []
        try:
            try:
                with anyio.fail_after(timeout):
                    for key in ordered:
                        lock = self._checkout(key)
                        checked_out.append(key)
                        await lock.acquire()
                        acquired.append(key)
            except TimeoutError as exc:
                logger.bind(keys=ordered, timeout=timeout).warning("lock_wait_timeout")
                raise ConcurrencyConflict(
                    "Resource is locked by another request. Please retry shortly."
                ) from exc
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
            for key in checked_out:
                self._checkin(key)


locks = KeyedLocks()
