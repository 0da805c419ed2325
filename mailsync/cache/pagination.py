"""Cursor pagination over cached messages, newest first.

Ordering is always descending by the composite key ``(internal_date,
message_id, provider)``.  Because no part of the key changes after a message
is first cached, a cursor built from a previously returned item stays valid
under concurrent inserts: no gaps, no duplicates.

Cursor policy:

- ``limit <= 0`` becomes ``DEFAULT_LIMIT``.
- An empty ``after_message_id`` means "start from the most recent item".
- A cursor carrying only one of the two position fields is treated as no
  cursor at all rather than as a partial filter.
- An empty ``after_provider`` skips every message sharing the position's
  date and id.
"""

import base64
import binascii
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace

from mailsync.providers.types import ProviderType
from mailsync.storage.db import MessageStore
from mailsync.storage.models import CachedMessage

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50


@dataclass(frozen=True)
class PaginationCursor:
    """Continuation position round-tripped by the client between pages."""

    after_message_id: str = ""
    after_internal_date: int | None = None
    limit: int = 0
    after_provider: str = ""

    @property
    def has_position(self) -> bool:
        """True only when both position fields are present."""
        return bool(self.after_message_id) and self.after_internal_date is not None

    def normalized(self, default_limit: int = DEFAULT_LIMIT) -> "PaginationCursor":
        """Apply the default limit and drop half-specified positions."""
        limit = self.limit if self.limit > 0 else default_limit
        if self.has_position:
            return replace(self, limit=limit)
        if self.after_message_id or self.after_internal_date is not None:
            logger.debug(
                "Ignoring partial cursor (after_message_id=%r, after_internal_date=%r)",
                self.after_message_id,
                self.after_internal_date,
            )
        return PaginationCursor(limit=limit)

    # ── Opaque token form ──────────────────────────────────────────────────────

    def to_token(self) -> str:
        """Encode as a URL-safe opaque token."""
        payload = json.dumps(
            {
                "id": self.after_message_id,
                "ts": self.after_internal_date,
                "n": self.limit,
                "p": self.after_provider,
            },
            separators=(",", ":"),
        )
        return base64.urlsafe_b64encode(payload.encode()).decode().rstrip("=")

    @classmethod
    def from_token(cls, token: str | None, limit: int = 0) -> "PaginationCursor":
        """Decode a token from ``to_token``.

        Empty or malformed tokens decode to the empty cursor. ``limit``
        overrides the token's own limit when positive.
        """
        if not token:
            return cls(limit=limit)
        try:
            padded = token + "=" * (-len(token) % 4)
            data = json.loads(base64.urlsafe_b64decode(padded.encode()))
            ts = data.get("ts")
            cursor = cls(
                after_message_id=str(data.get("id") or ""),
                after_internal_date=int(ts) if ts is not None else None,
                limit=int(data.get("n") or 0),
                after_provider=str(data.get("p") or ""),
            )
        except (ValueError, TypeError, AttributeError, binascii.Error) as exc:
            logger.warning("Malformed pagination token %r (%s); starting from the top", token, exc)
            return cls(limit=limit)
        return replace(cursor, limit=limit) if limit > 0 else cursor


# ── Ordering ───────────────────────────────────────────────────────────────────


def ordering_key(msg: CachedMessage) -> tuple[int, str, str]:
    """Composite recency key. Sort descending on this everywhere."""
    return msg.internal_date, msg.message_id, msg.provider.value


def paginate(messages: Iterable[CachedMessage], cursor: PaginationCursor) -> list[CachedMessage]:
    """Order, filter by cursor and cut to the limit, in memory.

    Used for merged multi-provider sets; the store applies the same rules
    in SQL for single-provider reads.
    """
    cursor = cursor.normalized()
    ordered = sorted(messages, key=ordering_key, reverse=True)
    if cursor.has_position:
        bound = (cursor.after_internal_date, cursor.after_message_id, cursor.after_provider)
        ordered = [m for m in ordered if ordering_key(m) < bound]
    return ordered[: cursor.limit]


def next_cursor(page: list[CachedMessage], limit: int) -> PaginationCursor | None:
    """Cursor for the page after ``page``, or None when ``page`` was the last one."""
    if not page or len(page) < limit:
        return None
    last = page[-1]
    return PaginationCursor(
        after_message_id=last.message_id,
        after_internal_date=last.internal_date,
        limit=limit,
        after_provider=last.provider.value,
    )


class CursorPaginator:
    """Stable keyset pagination over the persistent store."""

    def __init__(self, store: MessageStore, default_limit: int = DEFAULT_LIMIT) -> None:
        self._store = store
        self._default_limit = default_limit

    def page(
        self,
        user_id: str,
        cursor: PaginationCursor,
        provider: ProviderType | None = None,
    ) -> list[CachedMessage]:
        """Return the page after ``cursor`` for a user, optionally one provider only."""
        cursor = cursor.normalized(self._default_limit)
        return self._store.get_page_by_cursor(
            user_id,
            cursor.limit,
            cursor.after_internal_date if cursor.has_position else None,
            cursor.after_message_id if cursor.has_position else "",
            provider=provider,
            after_provider=cursor.after_provider if cursor.has_position else "",
        )
