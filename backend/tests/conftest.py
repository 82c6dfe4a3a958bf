"""
Shared fixtures: an in-memory feed, a fixed clock and a small roster.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

import pytest

from ingest.providers.base import FeedUnavailableError, MatchFeed
from ingest.providers.manual import ManualOverrideFeed
from ingest.providers.registry import FeedSet
from shared.config import Settings
from shared.models.domain import (
    Fixture,
    ManualMatch,
    MatchDetail,
    Player,
    PlayerMatch,
    TeamOverview,
)
from shared.models.enums import FeedName, MatchStatus
from tracker.clock import VenueClock
from tracker.engine import MatchTracker
from tracker.roster import Roster

# Sunday evening in Europe, early afternoon in New York.
NOW = datetime(2026, 10, 18, 18, 0, tzinfo=timezone.utc)


class FakeFeed(MatchFeed):
    """In-memory feed. Queries listed in `fail` raise like an unreachable upstream."""

    def __init__(
        self,
        name: FeedName = FeedName.FOOTBALL_DATA,
        *,
        fixtures: Iterable[Fixture] = (),
        details: Optional[dict[str, MatchDetail]] = None,
        overviews: Optional[dict[int, TeamOverview]] = None,
        histories: Optional[dict[int, list[PlayerMatch]]] = None,
        team_ids: Optional[dict[str, int]] = None,
        manual: Optional[dict[int, list[ManualMatch]]] = None,
        fail: Iterable[str] = (),
    ) -> None:
        super().__init__(name=name)
        self.fixtures = list(fixtures)
        self.details = details or {}
        self.overviews = overviews or {}
        self.histories = histories or {}
        self.team_ids = team_ids or {}
        self.manual = manual
        self.fail = set(fail)
        self.calls: list[tuple[str, Any]] = []

    def _check(self, operation: str) -> None:
        if operation in self.fail:
            raise FeedUnavailableError(self.name.value, f"{operation} down")

    def resolve_team_id(self, team_name: str) -> Optional[int]:
        return self.team_ids.get(team_name)

    async def _fetch_fixtures(
        self, date_from: date, date_to: date, competitions: list[str], *, bypass_cache: bool = False
    ) -> Optional[list[Fixture]]:
        self.calls.append(("fixtures", bypass_cache))
        self._check("fixtures")
        return [f for f in self.fixtures if date_from <= f.kickoff.date() <= date_to]

    async def _fetch_match_detail(self, fixture_id: str, *, live: bool = False) -> Optional[MatchDetail]:
        self.calls.append(("detail", fixture_id))
        self._check("detail")
        return self.details.get(fixture_id)

    async def _fetch_team_overview(self, team_id: int, *, live: bool = False) -> Optional[TeamOverview]:
        self.calls.append(("overview", team_id))
        self._check("overview")
        return self.overviews.get(team_id)

    async def _fetch_player_recent_matches(self, player_feed_id: int) -> Optional[list[PlayerMatch]]:
        self.calls.append(("history", player_feed_id))
        self._check("history")
        return self.histories.get(player_feed_id)

    async def _fetch_manual_overrides(self) -> Optional[dict[int, list[ManualMatch]]]:
        return self.manual

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


def make_fixture(
    fixture_id: str,
    home: str,
    away: str,
    kickoff: datetime,
    status: MatchStatus = MatchStatus.FINISHED,
    score: tuple[Optional[int], Optional[int]] = (None, None),
    feed: FeedName = FeedName.FOOTBALL_DATA,
    minute: Optional[int] = None,
    home_id: Optional[int] = None,
    away_id: Optional[int] = None,
) -> Fixture:
    return Fixture(
        fixture_id=fixture_id,
        feed=feed,
        kickoff=kickoff,
        home_team=home,
        away_team=away,
        home_team_id=home_id,
        away_team_id=away_id,
        home_score=score[0],
        away_score=score[1],
        competition="League",
        status=status,
        minute=minute,
    )


def make_detail(fixture: Fixture, **kwargs: Any) -> MatchDetail:
    return MatchDetail(
        fixture_id=fixture.fixture_id,
        feed=fixture.feed,
        home_team=fixture.home_team,
        away_team=fixture.away_team,
        home_score=fixture.home_score,
        away_score=fixture.away_score,
        status=fixture.status,
        minute=fixture.minute,
        **kwargs,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=tmp_path,
        football_data_api_key="test-key",
        inter_request_delay_s=0,
        metrics_enabled=False,
    )


@pytest.fixture
def clock(settings: Settings) -> VenueClock:
    return VenueClock(settings, now=lambda: NOW)


@pytest.fixture
def players() -> list[Player]:
    return [
        Player(id=1, name="Christian Pulisic", team="AC Milan", league="Serie A", fotmobId=422685),
        Player(id=5, name="Giovanni Reyna", team="Borussia Monchengladbach", league="Bundesliga", fotmobId=849811),
        Player(id=20, name="Quinn Sullivan", team="Philadelphia Union", league="MLS"),
        Player(id=21, name="Cavan Sullivan", team="Philadelphia Union", league="MLS"),
    ]


@pytest.fixture
def roster(players: list[Player]) -> Roster:
    return Roster(players)


@pytest.fixture
def build_tracker(settings: Settings, roster: Roster, clock: VenueClock, tmp_path: Path):
    def _build(primary: MatchFeed, secondary: Optional[MatchFeed] = None) -> MatchTracker:
        feeds = FeedSet(
            primary=primary,
            secondary=secondary,
            manual=ManualOverrideFeed(tmp_path / "playerStats.json"),
        )
        return MatchTracker(settings, feeds=feeds, roster=roster, clock=clock)

    return _build


def hours_ago(hours: float) -> datetime:
    return NOW - timedelta(hours=hours)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)
