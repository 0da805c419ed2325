"""Per-user "new data" hint raised by background syncs."""

import logging
import threading

logger = logging.getLogger(__name__)


class SyncFlags:
    """One single-bit event per user.

    ``set`` raises the bit when a sync finishes; ``check_and_clear`` is the
    only way to read it and lowers it in the same critical section, so a set
    that lands between a read and a clear is never lost.  The bit is a
    "poll me again" hint, not a record of which syncs completed.
    """

    def __init__(self) -> None:
        self._raised: set[str] = set()
        self._lock = threading.Lock()

    def set(self, user_id: str) -> None:
        with self._lock:
            self._raised.add(user_id)
        logger.debug("Sync flag raised for user %s", user_id)

    def check_and_clear(self, user_id: str) -> bool:
        """Return whether the flag was raised, lowering it atomically."""
        with self._lock:
            if user_id in self._raised:
                self._raised.discard(user_id)
                return True
            return False
