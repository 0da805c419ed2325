"""MailSyncEngine — wires the store, cache, sync scheduler and aggregator together."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from mailsync.cache.message_cache import MessageCache
from mailsync.cache.pagination import CursorPaginator
from mailsync.config import Settings
from mailsync.providers.registry import ProviderRegistry
from mailsync.providers.types import ProviderLink, ProviderType
from mailsync.service.aggregator import AggregateResultCache, ProviderAggregator
from mailsync.storage.db import MessageStore
from mailsync.sync.coordinator import SyncCoordinator
from mailsync.sync.flags import SyncFlags
from mailsync.sync.worker import SyncWorker

logger = logging.getLogger(__name__)


@dataclass
class MailSyncEngine:
    """Every long-lived component, built once per process.

    All parts are public so callers (the CLI, an HTTP layer) can reach the
    worker or the cache directly without building duplicates.

    Usage::

        engine = MailSyncEngine.build(Settings.from_env())
        engine.registry.register(ProviderType.GMAIL, gmail_provider_factory(session))
        page = await engine.aggregator.fetch_summaries(ctx, user_id, cursor)
        engine.close()
    """

    store: MessageStore
    cache: MessageCache
    flags: SyncFlags
    worker: SyncWorker
    coordinator: SyncCoordinator
    registry: ProviderRegistry
    aggregator: ProviderAggregator

    @classmethod
    def build(cls, settings: Settings, registry: ProviderRegistry | None = None) -> "MailSyncEngine":
        store = MessageStore(db_path=settings.db_path)
        cache = MessageCache(store, CursorPaginator(store, settings.default_page_limit))
        flags = SyncFlags()
        worker = SyncWorker(cache, flags, page_size=settings.sync_page_size)
        coordinator = SyncCoordinator(
            worker,
            max_concurrent=settings.max_concurrent_syncs,
            enabled=settings.sync_enabled,
        )
        registry = registry or ProviderRegistry()
        aggregator = ProviderAggregator(
            registry,
            cache,
            coordinator,
            flags,
            result_cache=AggregateResultCache(settings.aggregate_cache_ttl_seconds),
            default_limit=settings.default_page_limit,
            ttl=timedelta(seconds=settings.cache_ttl_seconds),
        )
        logger.debug("Engine built (db=%s)", settings.db_path)
        return cls(store, cache, flags, worker, coordinator, registry, aggregator)

    def link_gmail(self, user_id: str, email: str) -> None:
        """Link a Gmail account to a user, keyed by the account email."""
        self.registry.link(ProviderLink(user_id, ProviderType.GMAIL, {"email": email}))

    def close(self) -> None:
        """Release the underlying store."""
        self.store.close()
