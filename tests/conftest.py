"""Shared pytest fixtures."""

from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path

import pytest

from mailsync.cache.message_cache import MessageCache
from mailsync.providers.types import ProviderType
from mailsync.storage.db import MessageStore
from mailsync.storage.models import CachedMessage

T0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

MessageFactory = Callable[..., CachedMessage]


@pytest.fixture
def store(tmp_path: Path) -> Iterator[MessageStore]:
    s = MessageStore(db_path=tmp_path / "test.db")
    yield s
    s.close()


@pytest.fixture
def cache(store: MessageStore) -> MessageCache:
    return MessageCache(store)


@pytest.fixture
def make_message() -> MessageFactory:
    """Factory for CachedMessage rows with sensible defaults."""

    def _make(
        message_id: str = "msg_1",
        internal_date: int = 1_000,
        user_id: str = "user_1",
        provider: ProviderType = ProviderType.GMAIL,
        cached_at: datetime = T0,
        **overrides: object,
    ) -> CachedMessage:
        fields: dict[str, object] = {
            "thread_id": f"thread_{message_id}",
            "subject": f"Subject {message_id}",
            "sender": "alice@example.com",
            "recipient": "bob@example.com",
            "snippet": "snippet...",
            "plain_body": "Full email body.",
            "display_date": "Sun, 1 Mar 2026 09:00:00 +0000",
        }
        fields.update(overrides)
        return CachedMessage(
            user_id=user_id,
            provider=provider,
            message_id=message_id,
            internal_date=internal_date,
            cached_at=cached_at,
            **fields,  # type: ignore[arg-type]
        )

    return _make
