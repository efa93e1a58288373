"""Per-order mutual exclusion for closure and rollback within one process.

Cross-process exclusion comes from the row lock taken on the order and the
conditional status update; this registry only keeps coroutines in the same
worker from racing each other.
"""

import asyncio
import logging
import threading
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from solar_tracker.core.config import settings
from solar_tracker.core.errors import ConcurrentModificationError

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0  # holders plus waiters


class OrderLockRegistry:
    """Hands out one asyncio.Lock per order id.

    An entry lives only while someone holds or waits on it.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._guard = threading.Lock()

    def _acquire_entry(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _release_entry(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, order_id: uuid.UUID) -> bool:
        entry = self._entries.get(str(order_id))
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, order_id: uuid.UUID, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the order's lock; raise ConcurrentModificationError on timeout."""
        if timeout is None:
            timeout = settings.ORDER_LOCK_TIMEOUT_SECONDS
        key = str(order_id)
        entry = self._acquire_entry(key)
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError as exc:
                logger.warning("Timed out after %.1fs waiting for order %s", timeout, order_id)
                raise ConcurrentModificationError(
                    f"Order {order_id} is being modified by another request",
                    {"order_id": key},
                ) from exc
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._release_entry(key, entry)


order_locks = OrderLockRegistry()
