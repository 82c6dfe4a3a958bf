"""
Memoized feed lookups shared by the today / last-game / next-game stages.

Every lookup goes through the cycle's CycleContext, so players on the same
team share one request per cycle, and every secondary team overview is
checked against the roster team before anything downstream trusts it.
"""
from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Optional

from ingest.normalization.identity import team_matches
from ingest.providers.base import MatchFeed
from ingest.providers.registry import FeedSet
from shared.config import Settings
from shared.models.domain import Fixture, MatchDetail, TeamOverview
from shared.utils.cache_store import CycleContext
from shared.utils.logging import get_logger
from shared.utils.metrics import RESPONSES_REJECTED

logger = get_logger(__name__)


def reject(check: str, **fields: Any) -> None:
    """Record a response rejected as inconsistent with other data."""
    RESPONSES_REJECTED.labels(check=check).inc()
    logger.warning("data_inconsistency", check=check, **fields)


class FeedLookups:
    def __init__(self, feeds: FeedSet, settings: Settings) -> None:
        self.feeds = feeds
        self._settings = settings

    async def pause(self) -> None:
        if self._settings.inter_request_delay_s > 0:
            await asyncio.sleep(self._settings.inter_request_delay_s)

    async def primary_fixtures(
        self,
        ctx: CycleContext,
        date_from: date,
        date_to: date,
        competitions: list[str],
        bypass_cache: bool = False,
    ) -> Optional[list[Fixture]]:
        primary = self.feeds.primary
        key = (primary.name.value, "fixtures", date_from, date_to, tuple(competitions), bypass_cache)
        return await ctx.get_or_fetch(
            key,
            lambda: primary.get_fixtures(date_from, date_to, competitions, bypass_cache=bypass_cache),
        )

    async def detail(
        self, ctx: CycleContext, feed: MatchFeed, fixture_id: str, live: bool = False
    ) -> Optional[MatchDetail]:
        key = (feed.name.value, "detail", fixture_id)
        if key not in ctx:
            await self.pause()
        return await ctx.get_or_fetch(key, lambda: feed.get_match_detail(fixture_id, live=live))

    def secondary_team_id(self, team: str) -> Optional[int]:
        secondary = self.feeds.secondary
        if secondary is None:
            return None
        team_id = secondary.resolve_team_id(team)
        if team_id is None:
            logger.debug("no_data", reason="no_secondary_team_id", team=team)
        return team_id

    async def overview(self, ctx: CycleContext, team: str) -> Optional[TeamOverview]:
        """Secondary team overview, rejected when it reports a different team."""
        secondary = self.feeds.secondary
        team_id = self.secondary_team_id(team)
        if secondary is None or team_id is None:
            return None

        key = (secondary.name.value, "overview", team_id)
        if key not in ctx:
            await self.pause()
        overview = await ctx.get_or_fetch(key, lambda: secondary.get_team_overview(team_id, live=ctx.live))
        if overview is None:
            return None
        if not team_matches(overview.team_name, team):
            reject("team_identity", team=team, team_id=team_id, reported=overview.team_name)
            return None
        return overview
