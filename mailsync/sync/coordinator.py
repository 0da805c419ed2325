"""Detached, single-flight scheduling of background syncs."""

import asyncio
import logging
from enum import Enum
from functools import partial

from mailsync.providers.types import ProviderType, RemoteProvider
from mailsync.sync.worker import SyncResult, SyncWorker

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_SYNCS = 4

_SyncKey = tuple[str, ProviderType]


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class SyncCoordinator:
    """Starts SyncWorker runs as detached tasks, one per (user, provider).

    ``trigger`` never awaits the run.  The task is owned here, not by the
    caller, so cancelling the read that triggered it leaves it running.
    While a run for a key is in flight, further triggers for that key return
    the same task instead of starting another.  A semaphore caps how many
    runs talk to providers at once; the rest queue.

    Usage::

        coordinator = SyncCoordinator(worker)
        coordinator.trigger("user-1", ProviderType.GMAIL, gmail)
        ...
        await coordinator.drain()
    """

    def __init__(
        self,
        worker: SyncWorker,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_SYNCS,
        enabled: bool = True,
    ) -> None:
        self._worker = worker
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent))
        self._inflight: dict[_SyncKey, asyncio.Task[SyncResult | None]] = {}
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def state(self, user_id: str, provider_type: ProviderType) -> SyncState:
        task = self._inflight.get((user_id, provider_type))
        if task is not None and not task.done():
            return SyncState.SYNCING
        return SyncState.IDLE

    def trigger(
        self,
        user_id: str,
        provider_type: ProviderType,
        provider: RemoteProvider,
        continuation: str | None = None,
    ) -> asyncio.Task[SyncResult | None] | None:
        """Start a sync for (user, provider) unless one is already running.

        Returns the in-flight task, or None when syncing is disabled.
        Must be called from a running event loop.
        """
        if not self._enabled:
            return None
        key = (user_id, provider_type)
        existing = self._inflight.get(key)
        if existing is not None and not existing.done():
            logger.debug("Sync %s/%s already in flight; coalescing", user_id, provider_type.value)
            return existing

        task = asyncio.create_task(
            self._run(user_id, provider_type, provider, continuation),
            name=f"sync:{user_id}:{provider_type.value}",
        )
        self._inflight[key] = task
        task.add_done_callback(partial(self._finished, key))
        return task

    async def drain(self) -> None:
        """Wait for every in-flight sync to finish."""
        tasks = [t for t in self._inflight.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _run(
        self,
        user_id: str,
        provider_type: ProviderType,
        provider: RemoteProvider,
        continuation: str | None,
    ) -> SyncResult | None:
        async with self._semaphore:
            try:
                return await self._worker.sync(user_id, provider_type, provider, continuation)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Background sync failed for %s/%s: %s",
                    user_id,
                    provider_type.value,
                    exc,
                    exc_info=True,
                )
                return None

    def _finished(self, key: _SyncKey, task: asyncio.Task[SyncResult | None]) -> None:
        # Only drop the entry if a newer run hasn't replaced it.
        if self._inflight.get(key) is task:
            del self._inflight[key]
