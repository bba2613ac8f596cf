"""
Rate Limiter - Per-identity, per-action attempt counter.

Fixed window with reset on expiry: the first attempt after a window ends
opens a new window. Bursts straddling a window boundary are accepted
behavior (up to 2 * max_attempts in a short span).
"""

import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from structlog import get_logger

from giftcards.models.api import RateLimitAction
from giftcards.models.domain import RateLimitEntry

logger = get_logger(__name__)

DEFAULT_WINDOW = timedelta(hours=1)
CLEANUP_INTERVAL = timedelta(minutes=5)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class RateLimiter:
    """Thread-safe fixed-window counter keyed by (identity, action)."""

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        self._clock = clock
        self._entries: dict[tuple[str, RateLimitAction], RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._last_cleanup: datetime | None = None

    def check_and_consume(
        self,
        identity: str,
        action: RateLimitAction,
        max_attempts: int,
        window: timedelta = DEFAULT_WINDOW,
    ) -> bool:
        """
        Record one attempt and report whether it is allowed.

        Denied attempts are not counted.
        """
        key = (identity, action)
        now = self._clock()

        with self._lock:
            self._cleanup_if_needed(now)
            entry = self._entries.get(key)

            if entry is None or now > entry.window_reset_at:
                self._entries[key] = RateLimitEntry(
                    identity=identity,
                    action=action,
                    attempts=1,
                    window_reset_at=now + window,
                )
                return True

            if entry.attempts >= max_attempts:
                logger.warning(
                    "rate_limit_exceeded",
                    identity=identity,
                    action=action.value,
                    attempts=entry.attempts,
                    window_reset_at=entry.window_reset_at.isoformat(),
                )
                return False

            self._entries[key] = replace(entry, attempts=entry.attempts + 1)
            return True

    def _cleanup_if_needed(self, now: datetime) -> None:
        """Drop entries whose window has ended. Runs at most once per CLEANUP_INTERVAL."""
        if self._last_cleanup is not None and now - self._last_cleanup < CLEANUP_INTERVAL:
            return
        self._last_cleanup = now

        expired = [key for key, entry in self._entries.items() if now > entry.window_reset_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("rate_limit_entries_pruned", count=len(expired))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def entry(self, identity: str, action: RateLimitAction) -> RateLimitEntry | None:
        """Current entry for an identity/action pair, if any."""
        with self._lock:
            return self._entries.get((identity, action))

    def reset(self, identity: str | None = None) -> None:
        """Drop entries for one identity, or all entries."""
        with self._lock:
            if identity is None:
                self._entries.clear()
                return
            for key in [k for k in self._entries if k[0] == identity]:
                del self._entries[key]
