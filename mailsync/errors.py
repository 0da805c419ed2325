"""Error taxonomy shared by the cache, sync and aggregation layers."""


class MailSyncError(Exception):
    """Base class for every error raised by mailsync."""

    #: Whether a caller may reasonably retry the same request later.
    retryable = False


class NotFoundError(MailSyncError):
    """No linked provider, or no provider resolves the requested message."""


class UpstreamError(MailSyncError):
    """A remote provider call failed (network, timeout, rejected request)."""

    retryable = True


class InvalidError(MailSyncError):
    """Malformed input that could not be normalized."""


class UnsupportedProviderError(InvalidError):
    """No adapter factory is registered for the requested provider type."""


class InternalError(MailSyncError):
    """The persistent store failed."""

    retryable = True
