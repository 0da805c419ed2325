"""Provider adapter registry and per-user provider links."""

import logging
import threading
from collections.abc import Callable

from mailsync.errors import UnsupportedProviderError
from mailsync.providers.types import (
    Capabilities,
    Credential,
    ProviderLink,
    ProviderType,
    RemoteProvider,
)

logger = logging.getLogger(__name__)

#: Builds an adapter for one linked account using the caller's credential.
ProviderFactory = Callable[[ProviderLink, Credential], RemoteProvider]


class ProviderRegistry:
    """Maps provider types to adapter factories and users to their links.

    New providers are added by registering a factory, never by branching on
    ``ProviderType`` elsewhere.  Links keep registration order, which is the
    order ``fetch_message`` tries providers in.

    Usage::

        registry = ProviderRegistry()
        registry.register(ProviderType.GMAIL, gmail_factory, Capabilities(supports_labels=True))
        registry.link(ProviderLink("u1", ProviderType.GMAIL, {"email": "me@example.com"}))
        adapter = registry.create(registry.links("u1")[0], credential)
    """

    def __init__(self) -> None:
        self._factories: dict[ProviderType, ProviderFactory] = {}
        self._capabilities: dict[ProviderType, Capabilities] = {}
        self._links: dict[str, list[ProviderLink]] = {}
        self._lock = threading.Lock()

    # ── Adapter factories ──────────────────────────────────────────────────────

    def register(
        self,
        provider_type: ProviderType,
        factory: ProviderFactory,
        capabilities: Capabilities | None = None,
    ) -> None:
        """Register (or replace) the adapter factory for a provider type."""
        self._factories[provider_type] = factory
        self._capabilities[provider_type] = capabilities or Capabilities()
        logger.debug("Registered provider adapter: %s", provider_type.value)

    def is_registered(self, provider_type: ProviderType) -> bool:
        return provider_type in self._factories

    def capabilities(self, provider_type: ProviderType) -> Capabilities:
        """Return the capability descriptor for a registered provider type."""
        try:
            return self._capabilities[provider_type]
        except KeyError:
            raise UnsupportedProviderError(
                f"No adapter registered for provider {provider_type.value!r}"
            ) from None

    def create(self, link: ProviderLink, credential: Credential) -> RemoteProvider:
        """Build the adapter for a linked account."""
        factory = self._factories.get(link.provider_type)
        if factory is None:
            raise UnsupportedProviderError(
                f"No adapter registered for provider {link.provider_type.value!r}"
            )
        return factory(link, credential)

    # ── User links ─────────────────────────────────────────────────────────────

    def link(self, link: ProviderLink) -> None:
        """Link a provider account to a user.

        Re-linking a provider type replaces its config in place, keeping the
        original registration position.
        """
        with self._lock:
            links = self._links.setdefault(link.user_id, [])
            for i, existing in enumerate(links):
                if existing.provider_type == link.provider_type:
                    links[i] = link
                    return
            links.append(link)
        logger.info("Linked %s for user %s", link.provider_type.value, link.user_id)

    def unlink(self, user_id: str, provider_type: ProviderType) -> bool:
        """Remove a link. Returns False if the user had no such link."""
        with self._lock:
            links = self._links.get(user_id, [])
            kept = [lnk for lnk in links if lnk.provider_type != provider_type]
            if len(kept) == len(links):
                return False
            self._links[user_id] = kept
        logger.info("Unlinked %s for user %s", provider_type.value, user_id)
        return True

    def links(self, user_id: str) -> list[ProviderLink]:
        """Return a snapshot of the user's links in registration order."""
        with self._lock:
            return list(self._links.get(user_id, []))
