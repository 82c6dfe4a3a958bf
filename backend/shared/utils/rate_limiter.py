"""
Per-feed request pacing with a token bucket and Retry-After backoff.
Single-process asyncio; no shared state across workers.
"""
from __future__ import annotations

import asyncio
import time
from typing import Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)


class TokenBucket:
    """
    In-process token bucket.
    Refills at rpm / 60 tokens per second; max burst = burst.
    """

    def __init__(self, rpm: int, burst: int = 1) -> None:
        self._rpm = max(1, rpm)
        self._burst = max(1, burst)
        self._tokens = float(self._burst)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> bool:
        """Consume one token if available. Returns True if allowed, False if rate limited."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_refill
            self._tokens = min(self._burst, self._tokens + elapsed * (self._rpm / 60.0))
            self._last_refill = now
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    async def wait_until_available(self, timeout_s: Optional[float] = None) -> bool:
        """Wait until a token is available or timeout. Returns True if token acquired."""
        deadline = (time.monotonic() + timeout_s) if timeout_s else None
        while True:
            if await self.acquire():
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            await asyncio.sleep(60.0 / self._rpm)


class FeedRateLimiter:
    """Token bucket for one feed plus a backoff window after a 429."""

    def __init__(self, feed: str, rpm: int, burst: int = 2, max_wait_s: float = 30.0) -> None:
        self._feed = feed
        self._bucket = TokenBucket(rpm=rpm, burst=burst)
        self._max_wait_s = max_wait_s
        self._backoff_until = 0.0

    async def wait_for_slot(self) -> bool:
        """Block until a request may go out. False if the wait would exceed max_wait_s."""
        wait = self._backoff_until - time.monotonic()
        if wait > 0:
            if wait > self._max_wait_s:
                return False
            await asyncio.sleep(wait)
        return await self._bucket.wait_until_available(self._max_wait_s)

    def record_429(self, retry_after_s: float) -> None:
        """Record a rate-limit response; hold requests back for retry_after_s."""
        self._backoff_until = time.monotonic() + retry_after_s
        logger.warning("rate_limit_backoff", feed=self._feed, backoff_s=retry_after_s)
