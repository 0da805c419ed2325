"""SQLite table schema and typed row types for the message cache."""

from dataclasses import dataclass
from datetime import datetime

from mailsync.providers.types import ProviderType


# ── DDL ────────────────────────────────────────────────────────────────────────

_CREATE_CACHED_MESSAGES = """
CREATE TABLE IF NOT EXISTS cached_messages (
    user_id              TEXT NOT NULL,
    provider             TEXT NOT NULL,
    message_id           TEXT NOT NULL,
    thread_id            TEXT NOT NULL DEFAULT '',
    subject              TEXT NOT NULL DEFAULT '',
    sender               TEXT NOT NULL DEFAULT '',
    recipient            TEXT NOT NULL DEFAULT '',
    snippet              TEXT NOT NULL DEFAULT '',
    plain_body           TEXT NOT NULL DEFAULT '',
    html_body            TEXT NOT NULL DEFAULT '',
    internal_date        INTEGER NOT NULL,
    display_date         TEXT NOT NULL DEFAULT '',
    provider_revision    TEXT NOT NULL DEFAULT '',
    cached_at            TEXT NOT NULL,
    last_fetched_at      TEXT,
    category             TEXT,
    category_confidence  REAL,
    raw_payload          TEXT NOT NULL DEFAULT '{}',
    PRIMARY KEY (user_id, provider, message_id)
)
"""

# Serves both the per-user page query and the per-provider page query.
_CREATE_RECENCY_INDEX = """
CREATE INDEX IF NOT EXISTS idx_cached_messages_recency
    ON cached_messages (user_id, internal_date DESC, message_id DESC, provider DESC)
"""

#: All DDL statements in creation order.
ALL_TABLES: list[str] = [
    _CREATE_CACHED_MESSAGES,
    _CREATE_RECENCY_INDEX,
]

#: Column order shared by every SELECT and the upsert.
COLUMNS: tuple[str, ...] = (
    "user_id",
    "provider",
    "message_id",
    "thread_id",
    "subject",
    "sender",
    "recipient",
    "snippet",
    "plain_body",
    "html_body",
    "internal_date",
    "display_date",
    "provider_revision",
    "cached_at",
    "last_fetched_at",
    "category",
    "category_confidence",
    "raw_payload",
)


# ── Row types ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EmailSummary:
    """List-view projection of a cached message. Derived, never persisted."""

    id: str
    thread_id: str
    subject: str
    sender: str
    snippet: str
    internal_date: int
    display_date: str
    provider: ProviderType


@dataclass(frozen=True)
class CachedMessage:
    """One cached copy of a remote message.

    ``(user_id, provider, message_id)`` is the primary key; ``message_id`` is
    provider-local and not unique across providers.  ``internal_date`` (epoch
    ms) together with ``message_id`` is the ordering key and never changes
    after the first write.
    """

    user_id: str
    provider: ProviderType
    message_id: str
    internal_date: int
    cached_at: datetime
    thread_id: str = ""
    subject: str = ""
    sender: str = ""
    recipient: str = ""
    snippet: str = ""
    plain_body: str = ""
    html_body: str = ""
    display_date: str = ""
    provider_revision: str = ""
    last_fetched_at: datetime | None = None
    category: str | None = None
    category_confidence: float | None = None
    raw_payload: str = "{}"  # JSON-encoded provider payload

    def summary(self) -> EmailSummary:
        """Project to the list-view summary (no bodies, no payload)."""
        return EmailSummary(
            id=self.message_id,
            thread_id=self.thread_id,
            subject=self.subject,
            sender=self.sender,
            snippet=self.snippet,
            internal_date=self.internal_date,
            display_date=self.display_date,
            provider=self.provider,
        )
