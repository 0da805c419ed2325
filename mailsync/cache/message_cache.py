"""Read-through message cache on top of the SQLite store."""

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from mailsync.cache.pagination import CursorPaginator, PaginationCursor
from mailsync.errors import InternalError
from mailsync.providers.types import ProviderType
from mailsync.storage.db import MessageStore
from mailsync.storage.models import CachedMessage

logger = logging.getLogger(__name__)

#: How long a cached message is considered usable without a refresh.
CACHE_TTL = timedelta(seconds=60)

_T = TypeVar("_T")


def is_fresh(
    message: CachedMessage,
    now: datetime | None = None,
    ttl: timedelta = CACHE_TTL,
) -> bool:
    """True while ``now - message.cached_at < ttl``.

    Freshness is advisory: the store never expires rows, callers use this to
    decide whether to go back to the provider.
    """
    now = now or datetime.now(timezone.utc)
    return now - message.cached_at < ttl


class MessageCache:
    """Async facade over ``MessageStore``.

    Store calls run in worker threads so a caller's ``asyncio.timeout`` scope
    can abandon a slow call.  Any ``sqlite3.Error`` surfaces as
    ``InternalError``; retrying is the caller's decision.

    Usage::

        cache = MessageCache(MessageStore(db_path))
        await cache.upsert(msg)
        page = await cache.get_page("user-1", PaginationCursor(limit=20))
    """

    def __init__(self, store: MessageStore, paginator: CursorPaginator | None = None) -> None:
        self._store = store
        self._paginator = paginator or CursorPaginator(store)

    async def get(
        self, user_id: str, provider: ProviderType, message_id: str
    ) -> CachedMessage | None:
        """Return the cached message, or None when it was never cached."""
        return await self._run(self._store.get_message_by_id, user_id, provider, message_id)

    async def get_page(
        self,
        user_id: str,
        cursor: PaginationCursor,
        provider: ProviderType | None = None,
    ) -> list[CachedMessage]:
        """Return the page after ``cursor``, newest first."""
        return await self._run(self._paginator.page, user_id, cursor, provider)

    async def upsert(self, message: CachedMessage) -> None:
        """Insert or fully replace a message. Safe under any interleaving."""
        await self._run(self._store.upsert_message, message)

    async def purge_user(self, user_id: str) -> int:
        """Irreversibly delete every cached message for a user."""
        return await self._run(self._store.delete_all_for_user, user_id)

    async def _run(self, fn: Callable[..., _T], *args: object) -> _T:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            logger.error("Message store failure in %s: %s", getattr(fn, "__name__", fn), exc)
            raise InternalError(f"message store failure: {exc}") from exc
