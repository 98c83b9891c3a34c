import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from clinic_scheduler.core.exceptions import Busy

logger = logging.getLogger(__name__)


class ProviderLocks:
    """One asyncio.Lock per provider, acquired with a bounded wait.

    Serializes check-then-write sequences (reserve, reschedule, cancel, availability
    edits) for a single provider within this process. Cross-process safety comes from
    the row lock and exclusion constraint taken inside the same transaction.
    """

    def __init__(self, timeout_seconds: float = 2.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, provider_id: int) -> asyncio.Lock:
        lock = self._locks.get(provider_id)
        if lock is None:
            lock = self._locks.setdefault(provider_id, asyncio.Lock())
        return lock

    @asynccontextmanager
    async def hold(self, provider_id: int, timeout: float | None = None) -> AsyncIterator[None]:
        lock = self._lock_for(provider_id)
        wait = self.timeout_seconds if timeout is None else timeout
        try:
            await asyncio.wait_for(lock.acquire(), timeout=wait)
        except asyncio.TimeoutError:
            logger.warning("Provider %s schedule lock not acquired within %.2fs", provider_id, wait)
            raise Busy() from None
        try:
            yield
        finally:
            lock.release()
