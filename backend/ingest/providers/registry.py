"""
Feed registry: builds the feed set for the current configuration and owns
its lifecycle.

Precedence is fixed rather than health-scored: the primary fixture feed, the
secondary per-team/per-player feed, then the operator override store.
Without primary credentials the registry swaps in the offline demo feed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import httpx

from shared.config import Settings, get_settings
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.logging import get_logger

from ingest.providers.base import MatchFeed
from ingest.providers.demo import DemoFeed
from ingest.providers.football_data import FootballDataFeed
from ingest.providers.fotmob import FotMobFeed
from ingest.providers.manual import ManualOverrideFeed

logger = get_logger(__name__)


@dataclass
class FeedSet:
    primary: MatchFeed
    manual: MatchFeed
    secondary: Optional[MatchFeed] = None
    demo: bool = False
    _started: bool = field(default=False, repr=False)

    @property
    def all(self) -> list[MatchFeed]:
        return [f for f in (self.primary, self.secondary, self.manual) if f is not None]

    async def start(self) -> None:
        if self._started:
            return
        for feed in self.all:
            await feed.start()
        self._started = True

    async def close(self) -> None:
        for feed in self.all:
            await feed.close()
        self._started = False

    def breaker_stats(self) -> list[dict[str, object]]:
        return [f.breaker.stats for f in self.all if f.breaker is not None]


def _breaker(name: str, settings: Settings) -> CircuitBreaker:
    return CircuitBreaker(
        name=name,
        failure_threshold=settings.circuit_failure_threshold,
        recovery_timeout_s=settings.circuit_recovery_s,
        ignore=(httpx.HTTPStatusError,),
    )


def build_feeds(settings: Settings | None = None) -> FeedSet:
    """Create the feed set. Demo mode when no primary API key is configured."""
    settings = settings or get_settings()
    manual = ManualOverrideFeed(settings.data_path(settings.manual_overrides_file))

    if settings.demo_mode:
        logger.warning("demo_mode_enabled", reason="no football-data API key configured")
        return FeedSet(primary=DemoFeed(), manual=manual, secondary=None, demo=True)

    primary = FootballDataFeed(settings, breaker=_breaker("football_data", settings))
    secondary: Optional[MatchFeed] = None
    if settings.fotmob_enabled:
        secondary = FotMobFeed(settings, breaker=_breaker("fotmob", settings))

    logger.info(
        "feeds_built",
        primary=primary.name.value,
        secondary=secondary.name.value if secondary else None,
    )
    return FeedSet(primary=primary, manual=manual, secondary=secondary)
