"""
Async HTTP client wrapper for upstream feed requests.
Includes retry logic, timeout management, anti-bot detection and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_LATENCY, FEED_REQUESTS
from shared.utils.rate_limiter import FeedRateLimiter

logger = get_logger(__name__)

_CHALLENGE_MARKERS = ("turnstile", "verification required", "cf-chl", "cloudflare", "challenge-platform")


class FeedError(Exception):
    """Base class for upstream feed failures."""

    def __init__(self, feed: str, message: str) -> None:
        self.feed = feed
        super().__init__(f"{feed}: {message}")


class FeedUnavailableError(FeedError):
    """Network failure, timeout, 5xx, or an exhausted retry budget."""


class FeedBlockedError(FeedError):
    """The feed answered with an anti-bot challenge instead of data."""


def looks_like_challenge(body: str) -> bool:
    lowered = body[:4000].lower()
    return any(marker in lowered for marker in _CHALLENGE_MARKERS)


class ProviderHTTPClient:
    """
    Async HTTP client tailored for sports data feeds.
    Handles timeouts, retries, pacing, and records metrics per request.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        rate_limiter: FeedRateLimiter | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._max_retries = max_retries or settings.provider_max_retries
        self._default_headers = headers or {}
        self._rate_limiter = rate_limiter
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        operation: str = "unknown",
    ) -> Any:
        """
        GET a JSON document.

        Raises:
            FeedBlockedError: The body is an anti-bot challenge (403 page, HTML, or a
                JSON challenge marker).
            FeedUnavailableError: Network failure, timeout or 5xx after retries.
            httpx.HTTPStatusError: Non-retryable 4xx.
        """
        resp = await self._get(path, params=params, operation=operation)
        content_type = resp.headers.get("content-type", "")
        if "json" not in content_type and looks_like_challenge(resp.text):
            raise FeedBlockedError(self._provider, f"challenge page for {path}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise FeedUnavailableError(self._provider, f"non-JSON response for {path}") from exc
        if data is None:
            raise FeedUnavailableError(self._provider, f"null body for {path}")
        if isinstance(data, dict) and (
            data.get("code") == "TURNSTILE_REQUIRED" or data.get("error") == "Verification required"
        ):
            raise FeedBlockedError(self._provider, f"challenge marker in JSON for {path}")
        return data

    async def get_text(self, path: str, operation: str = "unknown") -> str:
        """GET an HTML/text document (server-rendered page scrape)."""
        resp = await self._get(path, operation=operation)
        return resp.text

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        operation: str = "unknown",
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        last_exc: Optional[Exception] = None

        for attempt in range(1, self._max_retries + 1):
            if self._rate_limiter and not await self._rate_limiter.wait_for_slot():
                raise FeedUnavailableError(self._provider, "rate limit window exceeds wait budget")

            start_time = time.perf_counter()
            status = "unknown"
            try:
                resp = await self._client.get(path, params=params)
                status = str(resp.status_code)

                if resp.status_code == 403 and looks_like_challenge(resp.text):
                    raise FeedBlockedError(self._provider, f"403 challenge for {path}")

                if resp.status_code == 429:
                    retry_after = float(resp.headers.get("Retry-After", "2") or 2)
                    if self._rate_limiter:
                        self._rate_limiter.record_429(retry_after)
                    logger.warning(
                        "provider_rate_limited",
                        provider=self._provider,
                        path=path,
                        attempt=attempt,
                    )
                    if attempt < self._max_retries:
                        await asyncio.sleep(min(retry_after, 10.0))
                        continue
                    raise FeedUnavailableError(self._provider, f"rate limited on {path}")

                if resp.status_code >= 500:
                    logger.warning(
                        "provider_server_error",
                        provider=self._provider,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    last_exc = FeedUnavailableError(self._provider, f"{resp.status_code} on {path}")
                    if attempt < self._max_retries:
                        await asyncio.sleep(1.0 * attempt)
                        continue
                    raise last_exc

                resp.raise_for_status()

                logger.debug(
                    "provider_request_success",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                return resp

            except httpx.TimeoutException as exc:
                status = "timeout"
                last_exc = exc
                logger.warning("provider_timeout", provider=self._provider, path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)
                    continue

            except httpx.TransportError as exc:
                status = "error"
                last_exc = exc
                logger.warning(
                    "provider_transport_error",
                    provider=self._provider,
                    path=path,
                    error=str(exc),
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)
                    continue

            finally:
                FEED_REQUESTS.labels(feed=self._provider, operation=operation, status=status).inc()
                FEED_LATENCY.labels(feed=self._provider).observe(time.perf_counter() - start_time)

        raise FeedUnavailableError(
            self._provider, f"request to {path} failed after {self._max_retries} attempts: {last_exc}"
        )
