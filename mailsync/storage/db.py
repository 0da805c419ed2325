"""SQLite persistent store for cached messages."""

import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from mailsync.providers.types import ProviderType
from mailsync.storage.models import ALL_TABLES, COLUMNS, CachedMessage

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/mailsync.db")

_SELECT = f"SELECT {', '.join(COLUMNS)} FROM cached_messages"

# Full replace of every attribute except internal_date, which is the
# immutable half of the ordering key and keeps its first-written value.
_UPSERT = f"""
INSERT INTO cached_messages ({', '.join(COLUMNS)})
VALUES ({', '.join('?' for _ in COLUMNS)})
ON CONFLICT(user_id, provider, message_id) DO UPDATE SET
    {', '.join(f'{c} = excluded.{c}' for c in COLUMNS[3:] if c != 'internal_date')}
"""


class MessageStore:
    """Wraps SQLite for the message cache table.

    Calls are blocking; the async layer (``MessageCache``) runs them in worker
    threads, so the connection is shared across threads behind a lock.

    Usage::

        store = MessageStore()
        store.upsert_message(msg)
        page = store.get_page_by_cursor("user-1", 50, None, "")
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._lock = threading.Lock()
        self._create_tables()

    def close(self) -> None:
        """Close the underlying database connection."""
        with self._lock:
            self._conn.close()

    # ── Write API ───────────────────────────────────────────────────────────────

    def upsert_message(self, msg: CachedMessage) -> None:
        """Insert or replace a message keyed by (user_id, provider, message_id).

        Idempotent: writing the same message twice leaves the row unchanged.
        """
        with self._lock, self._conn:
            self._conn.execute(_UPSERT, _to_params(msg))

    def delete_all_for_user(self, user_id: str) -> int:
        """Delete every cached message for a user. Returns the row count."""
        with self._lock, self._conn:
            cur = self._conn.execute(
                "DELETE FROM cached_messages WHERE user_id = ?", (user_id,)
            )
        logger.info("Purged %d cached message(s) for user %s", cur.rowcount, user_id)
        return cur.rowcount

    # ── Read API ────────────────────────────────────────────────────────────────

    def get_message_by_id(
        self, user_id: str, provider: ProviderType, message_id: str
    ) -> CachedMessage | None:
        """Return the cached message, or None if not found."""
        with self._lock:
            row = self._conn.execute(
                f"{_SELECT} WHERE user_id = ? AND provider = ? AND message_id = ?",
                (user_id, provider.value, message_id),
            ).fetchone()
        return _from_row(row) if row else None

    def get_page_by_cursor(
        self,
        user_id: str,
        limit: int,
        after_internal_date: int | None,
        after_message_id: str,
        provider: ProviderType | None = None,
        after_provider: str = "",
    ) -> list[CachedMessage]:
        """Return up to ``limit`` messages, newest first by (internal_date, message_id, provider).

        With a position, only rows whose key is strictly less than
        ``(after_internal_date, after_message_id, after_provider)`` are
        returned.  An empty ``after_provider`` sorts below every provider, so
        it excludes all rows sharing the date and id.  Callers normalize the
        cursor; this method trusts its arguments.
        """
        clauses = ["user_id = ?"]
        params: list[object] = [user_id]
        if provider is not None:
            clauses.append("provider = ?")
            params.append(provider.value)
        if after_message_id and after_internal_date is not None:
            clauses.append("(internal_date, message_id, provider) < (?, ?, ?)")
            params.extend([after_internal_date, after_message_id, after_provider])
        params.append(limit)

        with self._lock:
            rows = self._conn.execute(
                f"{_SELECT} WHERE {' AND '.join(clauses)} "
                "ORDER BY internal_date DESC, message_id DESC, provider DESC LIMIT ?",
                params,
            ).fetchall()
        return [_from_row(r) for r in rows]

    def count_for_user(self, user_id: str) -> int:
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM cached_messages WHERE user_id = ?", (user_id,)
            ).fetchone()[0]

    # ── Private ─────────────────────────────────────────────────────────────────

    def _create_tables(self) -> None:
        with self._lock, self._conn:
            for ddl in ALL_TABLES:
                self._conn.execute(ddl)


def _to_params(msg: CachedMessage) -> tuple[object, ...]:
    return (
        msg.user_id,
        msg.provider.value,
        msg.message_id,
        msg.thread_id,
        msg.subject,
        msg.sender,
        msg.recipient,
        msg.snippet,
        msg.plain_body,
        msg.html_body,
        msg.internal_date,
        msg.display_date,
        msg.provider_revision,
        msg.cached_at.isoformat(),
        msg.last_fetched_at.isoformat() if msg.last_fetched_at else None,
        msg.category,
        msg.category_confidence,
        msg.raw_payload,
    )


def _from_row(row: sqlite3.Row) -> CachedMessage:
    d = dict(row)
    d["provider"] = ProviderType(d["provider"])
    d["cached_at"] = datetime.fromisoformat(d["cached_at"])
    if d["last_fetched_at"] is not None:
        d["last_fetched_at"] = datetime.fromisoformat(d["last_fetched_at"])
    return CachedMessage(**d)
