"""ProviderAggregator — one paginated view across every linked provider."""

import logging
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import timedelta

from mailsync.cache.message_cache import CACHE_TTL, MessageCache, is_fresh
from mailsync.cache.pagination import (
    DEFAULT_LIMIT,
    PaginationCursor,
    next_cursor,
    paginate,
)
from mailsync.errors import InvalidError, MailSyncError, NotFoundError, UpstreamError
from mailsync.providers.registry import ProviderRegistry
from mailsync.providers.types import ProviderLink
from mailsync.service.context import RequestContext
from mailsync.storage.models import CachedMessage, EmailSummary
from mailsync.sync.coordinator import SyncCoordinator
from mailsync.sync.flags import SyncFlags
from mailsync.sync.worker import to_cached_message

logger = logging.getLogger(__name__)

AGGREGATE_CACHE_TTL_SECONDS = 60.0


@dataclass(frozen=True)
class SummaryPage:
    """One page of the merged inbox plus the cursor for the next page."""

    items: list[EmailSummary]
    next_cursor: PaginationCursor | None


# ── Dedup policy ───────────────────────────────────────────────────────────────


def dedupe_by_provider_key(messages: Iterable[CachedMessage]) -> list[CachedMessage]:
    """Collapse duplicates keyed by (provider, message_id).

    Message ids are provider-local, so the same id under two providers is
    two messages and both are kept.  Repeats of one (provider, id) pair keep
    the copy with the newest ``(cached_at, internal_date)``.
    """
    newest: dict[tuple[str, str], CachedMessage] = {}
    for msg in messages:
        key = (msg.provider.value, msg.message_id)
        current = newest.get(key)
        if current is None or (msg.cached_at, msg.internal_date) > (
            current.cached_at,
            current.internal_date,
        ):
            newest[key] = msg
    return list(newest.values())


# ── Aggregate result cache ─────────────────────────────────────────────────────


class AggregateResultCache:
    """Short-lived memo of merged pages, keyed by user, limit and cursor position.

    Expired entries are dropped on every write.  Entries are never
    invalidated by sync completion, so a hit may be up to ``ttl_seconds``
    stale.
    """

    def __init__(self, ttl_seconds: float = AGGREGATE_CACHE_TTL_SECONDS) -> None:
        self._ttl = ttl_seconds
        self._entries: dict[tuple[object, ...], tuple[float, SummaryPage]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(user_id: str, cursor: PaginationCursor) -> tuple[object, ...]:
        return (
            user_id,
            cursor.limit,
            cursor.after_internal_date,
            cursor.after_message_id,
            cursor.after_provider,
        )

    def get(self, key: tuple[object, ...], now: float | None = None) -> SummaryPage | None:
        now = time.monotonic() if now is None else now
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, page = entry
        return page if now - stored_at < self._ttl else None

    def put(self, key: tuple[object, ...], page: SummaryPage, now: float | None = None) -> None:
        now = time.monotonic() if now is None else now
        with self._lock:
            expired = [
                k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self._ttl
            ]
            for k in expired:
                del self._entries[k]
            self._entries[key] = (now, page)


# ── Aggregator ─────────────────────────────────────────────────────────────────


class ProviderAggregator:
    """Fans reads out over a user's linked providers and merges the results.

    Reads are served from the cache only.  Each read also asks the
    ``SyncCoordinator`` to refresh every provider that has a valid credential
    in the request context; those writes show up in later reads, never the
    current one.

    Usage::

        aggregator = ProviderAggregator(registry, cache, coordinator, flags)
        page = await aggregator.fetch_summaries(ctx, "user-1", PaginationCursor(limit=20))
        msg = await aggregator.fetch_message(ctx, "user-1", page.items[0].id)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: MessageCache,
        coordinator: SyncCoordinator,
        flags: SyncFlags,
        result_cache: AggregateResultCache | None = None,
        default_limit: int = DEFAULT_LIMIT,
        ttl: timedelta = CACHE_TTL,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._coordinator = coordinator
        self._flags = flags
        self._result_cache = result_cache
        self._default_limit = default_limit
        self._ttl = ttl

    # ── Public API ─────────────────────────────────────────────────────────────

    async def fetch_summaries(
        self, ctx: RequestContext, user_id: str, cursor: PaginationCursor
    ) -> SummaryPage:
        """Return one merged page of summaries, newest first.

        Every provider contributes its own page after ``cursor``; the union is
        deduplicated, re-sorted and cut to the limit (merge, then paginate).
        """
        links = self._links_or_raise(user_id)
        cursor = cursor.normalized(self._default_limit)

        for link in links:
            self._trigger_sync(ctx, link)

        cache_key = AggregateResultCache.key(user_id, cursor)
        if self._result_cache is not None:
            cached_page = self._result_cache.get(cache_key)
            if cached_page is not None:
                logger.debug("Aggregate cache hit for user %s", user_id)
                return cached_page

        merged: list[CachedMessage] = []
        async with ctx.scope():
            for link in links:
                merged.extend(
                    await self._cache.get_page(user_id, cursor, provider=link.provider_type)
                )

        ordered = paginate(dedupe_by_provider_key(merged), cursor)
        page = SummaryPage(
            items=[m.summary() for m in ordered],
            next_cursor=next_cursor(ordered, cursor.limit),
        )
        if ctx.debug:
            logger.info(
                "fetch_summaries user=%s providers=%d merged=%d returned=%d",
                user_id,
                len(links),
                len(merged),
                len(page.items),
            )
        if self._result_cache is not None:
            self._result_cache.put(cache_key, page)
        return page

    async def fetch_message(
        self, ctx: RequestContext, user_id: str, message_id: str
    ) -> CachedMessage:
        """Resolve one message id, trying linked providers in link order.

        A fresh cached copy wins outright.  Otherwise the provider is asked
        directly (when the context holds a valid credential) and the result
        cached; a stale copy is served if the provider can't be reached.
        Store failures propagate immediately as InternalError.
        """
        links = self._links_or_raise(user_id)
        last_error: MailSyncError | None = None
        upstream_failed = False

        for link in links:
            async with ctx.scope():
                cached = await self._cache.get(user_id, link.provider_type, message_id)
            if cached is not None and is_fresh(cached, ttl=self._ttl):
                return cached

            credential = ctx.credential_for(link.provider_type)
            if credential is None:
                if cached is not None:
                    return cached
                last_error = NotFoundError(
                    f"message {message_id!r} not cached for {link.provider_type.value}"
                )
                continue

            try:
                provider = self._registry.create(link, credential)
                async with ctx.scope():
                    remote = await provider.get(message_id)
            except (NotFoundError, UpstreamError, InvalidError) as exc:
                logger.debug(
                    "Provider %s could not resolve %s: %s",
                    link.provider_type.value,
                    message_id,
                    exc,
                )
                upstream_failed = upstream_failed or isinstance(exc, UpstreamError)
                if cached is not None:
                    return cached
                last_error = exc
                continue

            msg = to_cached_message(user_id, link.provider_type, remote)
            if cached is not None:
                # Keep the original position so open cursors stay valid.
                msg = replace(msg, internal_date=cached.internal_date)
            async with ctx.scope():
                await self._cache.upsert(msg)
            return msg

        if upstream_failed:
            raise UpstreamError(
                f"no provider could fetch message {message_id!r}"
            ) from last_error
        raise NotFoundError(f"message {message_id!r} not found") from last_error

    def poll_sync_status(self, user_id: str) -> bool:
        """Read-and-clear the user's "new data" flag."""
        return self._flags.check_and_clear(user_id)

    # ── Internal ───────────────────────────────────────────────────────────────

    def _links_or_raise(self, user_id: str) -> list[ProviderLink]:
        links = self._registry.links(user_id)
        if not links:
            raise NotFoundError(f"no providers linked for user {user_id!r}")
        return links

    def _trigger_sync(self, ctx: RequestContext, link: ProviderLink) -> None:
        credential = ctx.credential_for(link.provider_type)
        if credential is None or not self._coordinator.enabled:
            return
        try:
            provider = self._registry.create(link, credential)
        except MailSyncError as exc:
            logger.warning("Not syncing %s for user %s: %s", link.provider_type.value, link.user_id, exc)
            return
        except Exception:  # noqa: BLE001
            logger.error(
                "Provider factory for %s failed for user %s",
                link.provider_type.value,
                link.user_id,
                exc_info=True,
            )
            return
        self._coordinator.trigger(link.user_id, link.provider_type, provider)
