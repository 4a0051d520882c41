"""Background eviction of expired in-memory store entries.

asyncio background task started from the FastAPI lifespan. Redis expires
keys server-side, so only in-memory deployments run it.
"""

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60


class SweepableStore(Protocol):
    def cleanup_expired(self) -> int: ...


class StoreSweeper:
    """Periodically calls cleanup_expired() on each store.

    Lifecycle:
    - start() creates an asyncio task that runs the sweep loop.
    - stop() cancels the task and waits for it to finish.
    - run_once() executes a single sweep (for testing).

    Args:
        stores: Stores to sweep.
        interval_seconds: Seconds between sweeps.
    """

    def __init__(
        self,
        stores: Sequence[SweepableStore],
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self._stores = list(stores)
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Whether the background task is currently active."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop. No-op if already running."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Store sweeper started (interval=%ss)", self._interval_seconds)

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to exit."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    def run_once(self) -> int:
        """Sweep every store once.

        Returns:
            Total number of expired entries removed.
        """
        return sum(store.cleanup_expired() for store in self._stores)

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                removed = self.run_once()
            except Exception:  # noqa: BLE001
                logger.exception("Error in store sweep")
                continue
            if removed:
                logger.debug("Evicted %d expired store entries", removed)
