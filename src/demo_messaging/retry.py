"""RetryPolicy: redelivery ceiling and backoff for nack-requeued envelopes."""

from __future__ import annotations

import asyncio
import random


class RetryPolicy:
    """Decides whether a failed delivery is requeued and how long to wait first.

    ``max_attempts=None`` requeues forever (every failure is nacked with
    requeue, no ceiling); any other value bounds delivery attempts per
    envelope, after which the consumer dead-letters it.
    """

    def __init__(
        self,
        *,
        max_attempts: int | None = 5,
        base_delay: float = 0.1,
        max_delay: float = 30.0,
        jitter: bool = True,
    ) -> None:
        """Configure redelivery.

        Args:
            max_attempts: Maximum delivery attempts (including the first), or
                None for unbounded redelivery.
            base_delay: Seconds to wait before the first requeue.
            max_delay: Cap on the wait in seconds.
            jitter: Multiply waits by a random factor in [0.5, 1.5].
        """
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be >= 1 or None")
        if base_delay < 0 or max_delay < 0:
            raise ValueError("base_delay and max_delay must be >= 0")
        if base_delay > max_delay:
            raise ValueError("base_delay must be <= max_delay")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

    @classmethod
    def unbounded(cls) -> RetryPolicy:
        """Requeue every failure immediately, with no ceiling."""
        return cls(max_attempts=None, base_delay=0.0, max_delay=0.0, jitter=False)

    @property
    def is_bounded(self) -> bool:
        return self.max_attempts is not None

    def should_retry(self, attempt: int) -> bool:
        """Return True if a failed 1-based ``attempt`` may be requeued."""
        if attempt < 1:
            return False
        return self.max_attempts is None or attempt < self.max_attempts

    def delay_for_attempt(self, attempt: int) -> float:
        """Seconds to wait after the failed 1-based ``attempt``.

        ``base_delay * 2^(attempt-1)`` capped by ``max_delay``, then jittered.
        """
        if attempt < 1:
            return 0.0
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random())  # noqa: S311
        return float(max(0.0, delay))

    async def wait_before_retry(self, attempt: int) -> None:
        d = self.delay_for_attempt(attempt)
        if d > 0:
            await asyncio.sleep(d)
