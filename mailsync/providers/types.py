"""Provider-facing types: provider tags, links, credentials and remote messages."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class ProviderType(str, Enum):
    """Remote mail source kind. Each value has its own message-id namespace."""

    GMAIL = "gmail"
    OUTLOOK = "outlook"


@dataclass(frozen=True)
class Capabilities:
    """What a provider adapter supports beyond list/get."""

    supports_search: bool = False
    supports_folders: bool = False
    supports_labels: bool = False
    supports_threading: bool = False


@dataclass(frozen=True)
class ProviderLink:
    """A user's linked provider account (at most one per provider type)."""

    user_id: str
    provider_type: ProviderType
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Credential:
    """Opaque bearer credential handed in by the caller. Never refreshed here."""

    access_token: str
    expires_at: datetime | None = None

    def is_valid(self, now: datetime | None = None) -> bool:
        """True when the token is present and not yet expired."""
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now < self.expires_at


@dataclass(frozen=True)
class BodyPart:
    """One body part of a remote message, still content-transfer-encoded.

    ``encoding`` is one of ``"base64url"`` (Gmail API), ``"base64"``,
    ``"quoted-printable"`` or ``None`` for data that is already plain text.
    """

    mime_type: str
    data: str
    encoding: str | None = None


@dataclass(frozen=True)
class RemoteMessage:
    """A message as returned by a provider adapter, before translation.

    ``internal_date`` is the provider's recency timestamp in epoch
    milliseconds; ``revision`` is its opaque version token (Gmail historyId).
    """

    id: str
    thread_id: str
    headers: list[tuple[str, str]] = field(default_factory=list)
    snippet: str = ""
    body_parts: list[BodyPart] = field(default_factory=list)
    internal_date: int = 0
    revision: str = ""
    raw_payload: dict[str, Any] = field(default_factory=dict)

    def header(self, name: str) -> str:
        """Case-insensitive header lookup; first match wins, '' when absent."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return ""


# ── Adapter interface ──────────────────────────────────────────────────────────


@runtime_checkable
class RemoteProvider(Protocol):
    """Wire-level contract every provider adapter implements."""

    async def list(self, page_size: int, continuation: str | None = None) -> Sequence[str]:
        """Return up to page_size message ids, newest first."""
        ...

    async def get(self, message_id: str) -> RemoteMessage:
        """Return one message. Raises NotFoundError or UpstreamError."""
        ...
