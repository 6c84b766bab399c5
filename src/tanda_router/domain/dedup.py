"""Time-windowed set of recently seen message ids."""

from __future__ import annotations

import time
from collections.abc import Callable

DEFAULT_TTL_SECONDS = 10 * 60


class DeduplicationCache:
    """
    In-process, non-durable. Entries are inserted once and evicted after
    `ttl_seconds`; pruning happens on every lookup. `clock` is injectable
    for tests and defaults to a monotonic clock.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._seen: dict[str, float] = {}

    def is_duplicate(self, message_id: str | None) -> bool:
        """True if message_id was seen within the TTL; otherwise record it and return False."""
        if not message_id:
            return False
        now = self._clock()
        self._prune(now)
        if message_id in self._seen:
            return True
        self._seen[message_id] = now
        return False

    def evict(self, message_id: str | None) -> None:
        """Drop an entry early, e.g. when processing it failed and a retry is welcome."""
        if message_id:
            self._seen.pop(message_id, None)

    def _prune(self, reference: float) -> None:
        expired = [k for k, seen_at in self._seen.items() if reference - seen_at > self.ttl_seconds]
        for k in expired:
            del self._seen[k]

    def __len__(self) -> int:
        return len(self._seen)
