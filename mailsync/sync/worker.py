"""SyncWorker — refills the message cache from one remote provider."""

import base64
import binascii
import json
import logging
import quopri
from dataclasses import dataclass, field
from datetime import datetime, timezone

from mailsync.cache.message_cache import MessageCache
from mailsync.providers.types import BodyPart, ProviderType, RemoteMessage, RemoteProvider
from mailsync.storage.models import CachedMessage
from mailsync.sync.flags import SyncFlags

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync run. A run with failed ids is still a success."""

    user_id: str
    provider: ProviderType
    listed: int
    upserted: int
    failed_ids: list[str] = field(default_factory=list)


class SyncWorker:
    """Lists recent ids on a provider, fetches each one and upserts it.

    A fetch failure for one id is logged and skipped; the run carries on
    with the rest.  When the run finishes the user's sync flag is raised.
    Failures listing ids or writing to the store propagate.

    Usage::

        worker = SyncWorker(cache, flags)
        result = await worker.sync("user-1", ProviderType.GMAIL, gmail)
    """

    def __init__(
        self,
        cache: MessageCache,
        flags: SyncFlags,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._cache = cache
        self._flags = flags
        self._page_size = page_size

    async def sync(
        self,
        user_id: str,
        provider_type: ProviderType,
        provider: RemoteProvider,
        continuation: str | None = None,
    ) -> SyncResult:
        """Run one list → fetch → upsert cycle for a (user, provider) pair."""
        ids = await provider.list(self._page_size, continuation)
        logger.debug("Sync %s/%s: listed %d id(s)", user_id, provider_type.value, len(ids))

        upserted = 0
        failed: list[str] = []
        for message_id in ids:
            try:
                remote = await provider.get(message_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Sync %s/%s: skipping message %s: %s",
                    user_id,
                    provider_type.value,
                    message_id,
                    exc,
                )
                failed.append(message_id)
                continue
            await self._cache.upsert(to_cached_message(user_id, provider_type, remote))
            upserted += 1

        self._flags.set(user_id)
        logger.info(
            "Sync %s/%s: %d upserted, %d failed",
            user_id,
            provider_type.value,
            upserted,
            len(failed),
        )
        return SyncResult(
            user_id=user_id,
            provider=provider_type,
            listed=len(ids),
            upserted=upserted,
            failed_ids=failed,
        )


# ── Translation ────────────────────────────────────────────────────────────────


def to_cached_message(
    user_id: str,
    provider_type: ProviderType,
    remote: RemoteMessage,
    now: datetime | None = None,
) -> CachedMessage:
    """Translate a provider message into a cache row stamped with ``now``."""
    now = now or datetime.now(timezone.utc)
    return CachedMessage(
        user_id=user_id,
        provider=provider_type,
        message_id=remote.id,
        thread_id=remote.thread_id,
        subject=remote.header("Subject"),
        sender=remote.header("From"),
        recipient=remote.header("To"),
        snippet=remote.snippet,
        plain_body=_first_body(remote.body_parts, "text/plain"),
        html_body=_first_body(remote.body_parts, "text/html"),
        internal_date=remote.internal_date,
        display_date=remote.header("Date"),
        provider_revision=remote.revision,
        cached_at=now,
        last_fetched_at=now,
        raw_payload=json.dumps(remote.raw_payload),
    )


def decode_part(part: BodyPart) -> str:
    """Undo a body part's content-transfer encoding. Undecodable data → ''."""
    try:
        if part.encoding == "base64url":
            padded = part.data + "=" * (-len(part.data) % 4)
            raw = base64.urlsafe_b64decode(padded)
        elif part.encoding == "base64":
            raw = base64.b64decode(part.data)
        elif part.encoding == "quoted-printable":
            raw = quopri.decodestring(part.data.encode())
        else:
            return part.data
    except (binascii.Error, ValueError) as exc:
        logger.debug("Could not decode %s part (%s): %s", part.mime_type, part.encoding, exc)
        return ""
    return raw.decode("utf-8", errors="replace")


def _first_body(parts: list[BodyPart], mime_type: str) -> str:
    for part in parts:
        if part.mime_type.lower() == mime_type and part.data:
            return decode_part(part)
    return ""
