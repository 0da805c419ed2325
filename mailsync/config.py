"""Runtime settings read from the environment (and .env via python-dotenv)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %s", name, raw, default)
        return default


@dataclass
class Settings:
    """Tunables for the cache, the sync scheduler and the CLI."""

    db_path: Path = field(default_factory=lambda: Path("data/mailsync.db"))
    cache_ttl_seconds: float = 60.0
    default_page_limit: int = 50
    sync_page_size: int = 50
    aggregate_cache_ttl_seconds: float = 60.0
    max_concurrent_syncs: int = 4
    sync_enabled: bool = True
    log_level: str = "INFO"
    user_email: str = ""

    @classmethod
    def from_env(cls) -> Settings:
        """Build Settings from environment variables."""
        return cls(
            db_path=Path(os.environ.get("MAILSYNC_DB_PATH", "data/mailsync.db")),
            cache_ttl_seconds=_env_float("CACHE_TTL_SECONDS", 60.0),
            default_page_limit=_env_int("DEFAULT_PAGE_LIMIT", 50),
            sync_page_size=_env_int("SYNC_PAGE_SIZE", 50),
            aggregate_cache_ttl_seconds=_env_float("AGGREGATE_CACHE_TTL_SECONDS", 60.0),
            max_concurrent_syncs=_env_int("MAX_CONCURRENT_SYNCS", 4),
            sync_enabled=os.environ.get("SYNC_ENABLED", "true").lower() == "true",
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            user_email=os.environ.get("USER_GOOGLE_EMAIL", ""),
        )
