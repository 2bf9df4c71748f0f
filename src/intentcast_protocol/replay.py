"""Single-use key tracking for authentication nonces and payment authorizations."""
from __future__ import annotations

import threading
import time
from typing import Optional


class ReplayCache:
    """Thread-safe set of consumed keys with optional expiry.

    Keys stored without an expiry are kept for the life of the process.
    Keys with an expiry are dropped by periodic cleanup once it passes;
    an ERC-3009 authorization cannot be replayed after ``validBefore`` anyway.
    """

    CLEANUP_INTERVAL_SECONDS = 5 * 60
    MAX_ENTRIES = 100000

    def __init__(
        self,
        cleanup_interval_seconds: int = CLEANUP_INTERVAL_SECONDS,
        max_entries: int = MAX_ENTRIES,
    ):
        self._seen: dict[str, Optional[int]] = {}
        self._cleanup_interval = cleanup_interval_seconds
        self._max_entries = max_entries
        self._last_cleanup = time.time()
        self._lock = threading.RLock()

    def check_and_store(
        self,
        key: str,
        expires_at: Optional[int] = None,
        now: Optional[int] = None,
    ) -> bool:
        """Record ``key``; False when it was already consumed.

        ``now`` must be on the same clock as ``expires_at``; it defaults to
        the wall clock.
        """
        with self._lock:
            if now is None:
                now = int(time.time())
            self._maybe_cleanup(now)

            if key in self._seen:
                deadline = self._seen[key]
                if deadline is None or deadline > now:
                    return False

            self._seen[key] = expires_at
            return True

    def contains(self, key: str, now: Optional[int] = None) -> bool:
        with self._lock:
            if key not in self._seen:
                return False
            deadline = self._seen[key]
            if now is None:
                now = int(time.time())
            return deadline is None or deadline > now

    def _maybe_cleanup(self, now: int) -> None:
        should_cleanup = (
            (now - self._last_cleanup) >= self._cleanup_interval
            or len(self._seen) >= self._max_entries
        )
        if should_cleanup:
            self.cleanup(now)

    def cleanup(self, now: Optional[int] = None) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            if now is None:
                now = int(time.time())
            expired = [
                key for key, deadline in self._seen.items()
                if deadline is not None and deadline <= now
            ]
            for key in expired:
                del self._seen[key]
            self._last_cleanup = now
            return len(expired)

    def __len__(self) -> int:
        return len(self._seen)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()
            self._last_cleanup = time.time()


__all__ = ["ReplayCache"]
