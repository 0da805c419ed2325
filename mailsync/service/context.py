"""Explicit per-request parameters for the read path."""

import asyncio
import time
from dataclasses import dataclass, field

from mailsync.providers.types import Credential, ProviderType


@dataclass(frozen=True)
class RequestContext:
    """Deadline and credentials for one read request, passed by value.

    ``deadline`` is on the ``time.monotonic()`` clock; ``None`` means no
    deadline.  Credentials are keyed by provider type; a provider without a
    valid credential is served from cache only.
    """

    deadline: float | None = None
    credentials: dict[ProviderType, Credential] = field(default_factory=dict)
    debug: bool = False

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        credentials: dict[ProviderType, Credential] | None = None,
        debug: bool = False,
    ) -> "RequestContext":
        return cls(
            deadline=time.monotonic() + seconds,
            credentials=dict(credentials or {}),
            debug=debug,
        )

    def remaining(self) -> float | None:
        """Seconds left before the deadline (never negative), or None."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def scope(self) -> asyncio.Timeout:
        """``async with ctx.scope():`` aborts the block once the deadline passes."""
        return asyncio.timeout(self.remaining())

    def credential_for(self, provider_type: ProviderType) -> Credential | None:
        """The provider's credential if present and unexpired, else None."""
        credential = self.credentials.get(provider_type)
        if credential is not None and credential.is_valid():
            return credential
        return None
