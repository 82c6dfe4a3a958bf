"""
Abstract base class for all match feeds.
Defines the contract that every feed adapter implements.

Every public query returns None when the feed failed or does not support it.
Adapters raise freely inside their _fetch_* methods; the public wrappers time
the call, route it through the feed's circuit breaker, log the failure class
and convert it to None so one feed can never abort a reconciliation step.
"""
from __future__ import annotations

import abc
import time
from datetime import date
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from shared.models.domain import Fixture, ManualMatch, MatchDetail, PlayerMatch, TeamOverview
from shared.models.enums import FeedName
from shared.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from shared.utils.http_client import (
    FeedBlockedError,
    FeedError,
    FeedUnavailableError,
    ProviderHTTPClient,
)
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_FAILURES

logger = get_logger(__name__)

__all__ = [
    "FeedBlockedError",
    "FeedError",
    "FeedUnavailableError",
    "MatchFeed",
]

T = TypeVar("T")


class MatchFeed(abc.ABC):
    """
    Base class for match feeds.

    Subclasses override the _fetch_* hooks they support. Unsupported queries
    keep the default hook, which answers None.
    """

    def __init__(
        self,
        name: FeedName,
        http_client: Optional[ProviderHTTPClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self._name = name
        self._http = http_client
        self._breaker = breaker

    @property
    def name(self) -> FeedName:
        return self._name

    @property
    def breaker(self) -> Optional[CircuitBreaker]:
        return self._breaker

    async def start(self) -> None:
        """Initialize the feed HTTP client."""
        if self._http:
            await self._http.start()

    async def close(self) -> None:
        """Shutdown the feed HTTP client."""
        if self._http:
            await self._http.close()

    # ── Public queries ──────────────────────────────────────────────────

    async def get_fixtures(
        self,
        date_from: date,
        date_to: date,
        competitions: list[str],
        *,
        bypass_cache: bool = False,
    ) -> Optional[list[Fixture]]:
        """Fixtures in [date_from, date_to] for the given competitions."""
        return await self._guarded(
            "fixtures", self._fetch_fixtures, date_from, date_to, competitions, bypass_cache=bypass_cache
        )

    async def get_match_detail(self, fixture_id: str, *, live: bool = False) -> Optional[MatchDetail]:
        """Goals, substitutions, bookings and (when published) lineups for one fixture."""
        return await self._guarded("match_detail", self._fetch_match_detail, fixture_id, live=live)

    async def get_team_overview(self, team_id: int, *, live: bool = False) -> Optional[TeamOverview]:
        """Next match, last match and last lineup snapshot for one team."""
        return await self._guarded("team_overview", self._fetch_team_overview, team_id, live=live)

    async def get_player_recent_matches(self, player_feed_id: int) -> Optional[list[PlayerMatch]]:
        """A player's own recent history, most recent first."""
        return await self._guarded("player_history", self._fetch_player_recent_matches, player_feed_id)

    async def load_manual_overrides(self) -> dict[int, list[ManualMatch]]:
        """Operator-entered corrections keyed by roster player id."""
        result = await self._guarded("manual_overrides", self._fetch_manual_overrides)
        return result or {}

    def resolve_team_id(self, team_name: str) -> Optional[int]:
        """Feed-native id for a roster team name, if this feed knows one."""
        return None

    # ── Hooks (feeds override what they support) ────────────────────────

    async def _fetch_fixtures(
        self, date_from: date, date_to: date, competitions: list[str], *, bypass_cache: bool = False
    ) -> Optional[list[Fixture]]:
        return None

    async def _fetch_match_detail(self, fixture_id: str, *, live: bool = False) -> Optional[MatchDetail]:
        return None

    async def _fetch_team_overview(self, team_id: int, *, live: bool = False) -> Optional[TeamOverview]:
        return None

    async def _fetch_player_recent_matches(self, player_feed_id: int) -> Optional[list[PlayerMatch]]:
        return None

    async def _fetch_manual_overrides(self) -> Optional[dict[int, list[ManualMatch]]]:
        return None

    # ── Failure isolation ───────────────────────────────────────────────

    async def _guarded(
        self, operation: str, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> Optional[T]:
        start = time.perf_counter()
        reason: Optional[str] = None
        try:
            if self._breaker is not None:
                return await self._breaker.call(func, *args, **kwargs)
            return await func(*args, **kwargs)
        except CircuitBreakerOpen as exc:
            reason = "circuit_open"
            logger.warning(
                "feed_circuit_open",
                feed=self._name.value,
                operation=operation,
                retry_after_s=round(exc.retry_after, 1),
            )
        except FeedBlockedError as exc:
            reason = "blocked"
            logger.warning("feed_blocked", feed=self._name.value, operation=operation, error=str(exc))
        except (FeedError, httpx.HTTPError) as exc:
            reason = "unavailable"
            logger.warning("feed_unavailable", feed=self._name.value, operation=operation, error=str(exc))
        except (KeyError, TypeError, ValueError) as exc:
            reason = "parse_error"
            logger.warning(
                "feed_parse_error",
                feed=self._name.value,
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            if reason is not None:
                FEED_FAILURES.labels(feed=self._name.value, operation=operation, reason=reason).inc()
                logger.debug(
                    "feed_query_failed",
                    feed=self._name.value,
                    operation=operation,
                    latency_ms=round((time.perf_counter() - start) * 1000, 2),
                )
        return None
