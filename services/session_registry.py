import asyncio
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Dict

from .session_store import SessionStore

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], Awaitable[SessionStore]]

DEFAULT_MAX_STORES = 1000
DEFAULT_IDLE_TIMEOUT = 1800.0


class SessionRegistry:
    """One SessionStore per browser session, created on first use.

    Stores unused for ``idle_timeout`` seconds are closed, and once more than
    ``max_stores`` are held the least recently used ones go first. A store
    still being built is never evicted.
    """

    def __init__(
        self,
        factory: StoreFactory,
        max_stores: int = DEFAULT_MAX_STORES,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self.max_stores = max_stores
        self.idle_timeout = idle_timeout
        self._clock = clock
        # ordered oldest use first
        self._stores: "OrderedDict[str, asyncio.Future[SessionStore]]" = OrderedDict()
        self._last_used: Dict[str, float] = {}

    async def get(self, session_id: str) -> SessionStore:
        future = self._stores.get(session_id)
        if future is None:
            # concurrent first requests share the same pending store
            future = asyncio.ensure_future(self._factory())
            self._stores[session_id] = future
        else:
            self._stores.move_to_end(session_id)
        self._last_used[session_id] = self._clock()
        await self._evict(keep=session_id)

        try:
            return await asyncio.shield(future)
        except Exception:
            if self._stores.get(session_id) is future:
                self._stores.pop(session_id, None)
                self._last_used.pop(session_id, None)
            raise

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._stores

    def __len__(self) -> int:
        return len(self._stores)

    async def _evict(self, keep: str) -> None:
        now = self._clock()
        idle = [
            session_id
            for session_id, used in self._last_used.items()
            if session_id != keep and now - used >= self.idle_timeout
        ]
        over = len(self._stores) - len(idle) - self.max_stores
        lru = [
            session_id
            for session_id in self._stores
            if session_id != keep and session_id not in idle
        ][: max(over, 0)]

        evicted = 0
        for session_id in idle + lru:
            future = self._stores.get(session_id)
            if future is not None and future.done():
                await self.discard(session_id)
                evicted += 1
        if evicted:
            logger.info("Evicted %d session store(s), %d held", evicted, len(self))

    async def discard(self, session_id: str) -> None:
        future = self._stores.pop(session_id, None)
        self._last_used.pop(session_id, None)
        if future is None or not future.done() or future.cancelled():
            return
        if future.exception() is None:
            await future.result().close()

    async def close_all(self) -> None:
        for session_id in list(self._stores):
            await self.discard(session_id)
        logger.info("Closed all session stores")
