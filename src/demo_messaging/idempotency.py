"""IdempotencyFilter: skip envelopes a queue has already acknowledged."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from .ports import ICacheService


class IdempotencyFilter:
    """Remember acknowledged envelope ids per queue so redeliveries are not reprocessed.

    Keys are ``<prefix><queue>:<message_id>`` and are forgotten after
    ``ttl_seconds``. With an ICacheService (e.g. Redis) the memory is shared
    between workers and the cache expires keys; without one an in-process map
    of expiry deadlines is used, pruned on every call.
    """

    def __init__(
        self,
        cache: ICacheService | None = None,
        *,
        key_prefix: str = "acked:",
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")
        self._cache = cache
        self._key_prefix = key_prefix
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        # key -> expiry deadline; insertion order is deadline order
        self._seen: dict[str, float] = {}

    def _key(self, queue: str, message_id: str) -> str:
        return f"{self._key_prefix}{queue}:{message_id}"

    def _prune(self, now: float) -> None:
        for key, deadline in list(self._seen.items()):
            if deadline > now:
                break
            del self._seen[key]

    async def is_duplicate(self, queue: str, message_id: str) -> bool:
        """Return True if ``message_id`` was acknowledged on ``queue`` within the TTL."""
        key = self._key(queue, message_id)
        if self._cache is not None:
            return await self._cache.get(key) is not None
        self._prune(self._clock())
        return key in self._seen

    async def mark_processed(self, queue: str, message_id: str) -> None:
        key = self._key(queue, message_id)
        if self._cache is not None:
            await self._cache.set(key, "1", ttl=self._ttl_seconds)
            return
        now = self._clock()
        self._prune(now)
        self._seen.pop(key, None)
        self._seen[key] = now + self._ttl_seconds

    @property
    def remembered(self) -> int:
        """Number of ids held in process (0 for the cache-backed store)."""
        return len(self._seen)

    def clear_memory(self) -> None:
        """Forget in-process ids. No-op for the cache-backed store."""
        self._seen.clear()
