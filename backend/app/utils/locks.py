"""In-process per-ledger locks.

Each (theater, product) ledger gets its own asyncio.Lock so two requests
handled by the same worker never interleave their read-modify-write of a
ledger.  Acquisition is bounded: an admin screen waiting on a busy ledger
gets a LEDGER_BUSY error instead of hanging.

Cross-worker exclusion is the database row lock taken by the store
(`SELECT ... FOR UPDATE` on the ledger header); this registry only keeps
one worker's coroutines from queueing on that row lock.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from app.middleware.exceptions import StockLockTimeoutError

logger = logging.getLogger(__name__)

LedgerKey = tuple[str, str]  # (theater_id, product_id)


@dataclass
class LedgerLockRegistry:
    """asyncio.Lock per ledger key, kept only while someone holds or awaits it."""
    _locks: dict[LedgerKey, asyncio.Lock] = field(default_factory=dict)
    _users: dict[LedgerKey, int] = field(default_factory=dict)

    def lock_for(self, theater_id: str, product_id: str) -> asyncio.Lock:
        key = (theater_id, product_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, theater_id: str, product_id: str) -> bool:
        lock = self._locks.get((theater_id, product_id))
        return bool(lock and lock.locked())

    @property
    def active_count(self) -> int:
        """Ledgers that currently have a holder or a waiter."""
        return len(self._locks)

    def clear(self) -> None:
        self._locks.clear()
        self._users.clear()

    @asynccontextmanager
    async def hold(
        self, theater_id: str, product_id: str, timeout: float,
    ) -> AsyncIterator[None]:
        """Hold the ledger's lock, or raise StockLockTimeoutError after `timeout`."""
        key = (theater_id, product_id)
        lock = self.lock_for(theater_id, product_id)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Ledger lock timeout for theater=%s product=%s after %.1fs",
                    theater_id, product_id, timeout,
                )
                raise StockLockTimeoutError(theater_id, product_id, timeout) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._release_user(key)

    def _release_user(self, key: LedgerKey) -> None:
        remaining = self._users.get(key, 1) - 1
        if remaining > 0:
            self._users[key] = remaining
            return
        # Nobody holds or awaits this ledger any more
        self._users.pop(key, None)
        self._locks.pop(key, None)


ledger_locks = LedgerLockRegistry()
