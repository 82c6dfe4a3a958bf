"""
TodayMatch derivation.

Primary pass: the fixture feed's matches for the venue-local day, with the
status query bypassing every response cache. Gap-fill pass: teams the primary
feed had nothing for are looked up in the secondary team overview, accepted
only when the match is today and both the overview's team and one side of
the match agree with the roster team.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional

from ingest.normalization.events import (
    lineup_snapshot_consistent,
    normalize_participation,
    participation_from_lineup_snapshot,
)
from ingest.normalization.identity import resolve_side, team_matches
from ingest.providers.football_data import competition_codes
from shared.config import Settings
from shared.models.domain import (
    Fixture,
    LineupSnapshot,
    MatchDetail,
    ParticipationFact,
    Player,
    TeamOverview,
    TodayMatch,
)
from shared.models.enums import DataSource, MatchStatus
from shared.utils.cache_store import CycleContext
from shared.utils.logging import get_logger
from shared.utils.metrics import TIER_SELECTIONS

from tracker.clock import VenueClock
from tracker.lookups import FeedLookups, reject
from tracker.records import RecordStore, same_match, source_for_feed
from tracker.roster import Roster

logger = get_logger(__name__)


class TodayReconciler:
    def __init__(
        self,
        roster: Roster,
        store: RecordStore,
        lookups: FeedLookups,
        clock: VenueClock,
        settings: Settings,
    ) -> None:
        self._roster = roster
        self._store = store
        self._lookups = lookups
        self._clock = clock
        self._settings = settings
        self._primary_answered = False

    # ── Primary pass ────────────────────────────────────────────────────

    async def reconcile_primary(self, ctx: CycleContext) -> set[str]:
        """Derive today matches from the primary feed. Returns the roster teams it covered."""
        leagues = self._roster.leagues()
        days = [self._clock.today(l) for l in leagues] or [self._clock.today("")]
        fixtures = await self._lookups.primary_fixtures(
            ctx,
            min(days) - timedelta(days=1),
            max(days) + timedelta(days=1),
            competition_codes(leagues),
            bypass_cache=True,
        )
        self._primary_answered = fixtures is not None
        if fixtures is None:
            logger.warning("today_primary_unavailable", feed=self._lookups.feeds.primary.name.value)
            return set()

        covered: set[str] = set()
        for team, players in self._roster.by_team().items():
            try:
                if await self._reconcile_team_primary(ctx, team, players, fixtures):
                    covered.add(team)
            except Exception as exc:
                logger.error("today_team_failed", team=team, stage="primary", error=str(exc), exc_info=True)
        return covered

    async def _reconcile_team_primary(
        self, ctx: CycleContext, team: str, players: list[Player], fixtures: list[Fixture]
    ) -> bool:
        league = players[0].league
        candidates: list[tuple[Fixture, str]] = []
        for f in fixtures:
            if not self._clock.is_today(f.kickoff, league):
                continue
            side = resolve_side(team, f.home_team, f.away_team)
            if side is not None:
                candidates.append((f, side))
        if not candidates:
            return False

        now = self._clock.now()
        fixture, side = min(
            candidates, key=lambda c: (c[0].status != MatchStatus.LIVE, abs((c[0].kickoff - now).total_seconds()))
        )
        primary = self._lookups.feeds.primary
        source = source_for_feed(primary.name)

        detail: Optional[MatchDetail] = None
        if fixture.status.has_detail:
            detail = await self._lookups.detail(ctx, primary, fixture.fixture_id, live=fixture.status.is_live)

        for player in players:
            fact: Optional[ParticipationFact] = None
            if detail is not None:
                fact = self._fact_from_detail(detail, player, side, source)
            if fixture.status.has_detail and (fact is None or fact.is_unknown):
                enriched = await self._secondary_fact_for(ctx, team, player, fixture)
                if enriched is not None and not enriched.is_unknown:
                    fact = enriched
            record = self._build(
                fixture, side, source, fact, player, minute=fixture.minute or (detail.minute if detail else None)
            )
            await self._store.set_today(player.id, record)
        return True

    async def _secondary_fact_for(
        self, ctx: CycleContext, team: str, player: Player, fixture: Fixture
    ) -> Optional[ParticipationFact]:
        """Participation for a primary-feed match, taken from the secondary feed's copy of it."""
        overview = await self._lookups.overview(ctx, team)
        if overview is None:
            return None
        for match in (overview.next_match, overview.last_match):
            if match is None or not self._is_same_fixture(match, fixture, player.league):
                continue
            side = resolve_side(
                team, match.home_team, match.away_team, overview.team_id, match.home_team_id, match.away_team_id
            )
            if side is None:
                return None
            detail, snapshot = await self._team_sources(ctx, team, overview, match, side)
            return self._fact(detail, snapshot, player, side, DataSource.FOTMOB_MATCH_DETAIL)
        return None

    def _is_same_fixture(self, match: Fixture, fixture: Fixture, league: str) -> bool:
        return (
            self._clock.local_date(match.kickoff, league) == self._clock.local_date(fixture.kickoff, league)
            and team_matches(match.home_team, fixture.home_team)
            and team_matches(match.away_team, fixture.away_team)
        )

    # ── Gap-fill pass ───────────────────────────────────────────────────

    async def gap_fill(self, ctx: CycleContext, covered: set[str]) -> None:
        """Secondary-feed lookup for every roster team the primary pass did not cover."""
        for team, players in self._roster.by_team().items():
            if team in covered:
                continue
            try:
                await self._gap_fill_team(ctx, team, players)
            except Exception as exc:
                logger.error("today_team_failed", team=team, stage="gap_fill", error=str(exc), exc_info=True)

    async def _gap_fill_team(self, ctx: CycleContext, team: str, players: list[Player]) -> None:
        league = players[0].league
        if self._lookups.feeds.secondary is None or self._lookups.secondary_team_id(team) is None:
            if self._primary_answered:
                await self._clear(players)
            else:
                await self._drop_outdated(players, league)
            return

        overview = await self._lookups.overview(ctx, team)
        if overview is None:
            await self._drop_outdated(players, league)
            return

        match: Optional[Fixture] = None
        nxt, last = overview.next_match, overview.last_match
        if nxt is not None and self._clock.is_today(nxt.kickoff, league):
            match = nxt
        elif last is not None and self._clock.is_today(last.kickoff, league) and last.status.has_detail:
            match = last
        if match is None:
            await self._clear(players)
            return

        side = resolve_side(
            team, match.home_team, match.away_team, overview.team_id, match.home_team_id, match.away_team_id
        )
        if side is None:
            reject(
                "fixture_identity",
                team=team,
                fixture_id=match.fixture_id,
                home=match.home_team,
                away=match.away_team,
            )
            return

        detail: Optional[MatchDetail] = None
        snapshot: Optional[LineupSnapshot] = None
        if match.status.has_detail:
            detail, snapshot = await self._team_sources(ctx, team, overview, match, side)

        for player in players:
            fact = None
            if match.status.has_detail:
                fact = self._fact(detail, snapshot, player, side, DataSource.FOTMOB_MATCH_DETAIL)
            record = self._build(
                match,
                side,
                DataSource.FOTMOB_TEAM_OVERVIEW,
                fact,
                player,
                minute=match.minute or (detail.minute if detail else None),
            )
            await self._store.set_today(player.id, record)

    # ── Shared helpers ──────────────────────────────────────────────────

    async def _team_sources(
        self, ctx: CycleContext, team: str, overview: TeamOverview, match: Fixture, side: str
    ) -> tuple[Optional[MatchDetail], Optional[LineupSnapshot]]:
        """Match detail, or when it is unavailable a lineup snapshot that passed the staleness check."""
        secondary = self._lookups.feeds.secondary
        detail = await self._lookups.detail(ctx, secondary, match.fixture_id, live=match.status.is_live)
        if detail is not None:
            return detail, None

        snapshot = overview.last_lineup
        if snapshot is None or snapshot.is_empty:
            return None, None
        team_score = match.home_score if side == "home" else match.away_score
        if not lineup_snapshot_consistent(snapshot, team_score, match.fixture_id):
            reject(
                "lineup_snapshot",
                team=team,
                fixture_id=match.fixture_id,
                team_score=team_score,
                snapshot_fixture_id=snapshot.fixture_id,
            )
            return None, None
        return None, snapshot

    def _fact_from_detail(
        self, detail: MatchDetail, player: Player, side: str, source: DataSource
    ) -> ParticipationFact:
        return normalize_participation(
            detail,
            player.name,
            side,
            self._roster.resolver,
            source=source,
            match_duration=self._settings.match_duration_min,
        )

    def _fact(
        self,
        detail: Optional[MatchDetail],
        snapshot: Optional[LineupSnapshot],
        player: Player,
        side: str,
        source: DataSource,
    ) -> Optional[ParticipationFact]:
        if detail is not None:
            return self._fact_from_detail(detail, player, side, source)
        if snapshot is not None:
            return participation_from_lineup_snapshot(snapshot, player.name, self._roster.resolver)
        return None

    def _build(
        self,
        fixture: Fixture,
        side: str,
        source: DataSource,
        fact: Optional[ParticipationFact],
        player: Player,
        minute: Optional[int],
    ) -> TodayMatch:
        record = TodayMatch(
            fixture_id=fixture.fixture_id,
            kickoff=fixture.kickoff,
            home_team=fixture.home_team,
            away_team=fixture.away_team,
            home_score=fixture.home_score,
            away_score=fixture.away_score,
            competition=fixture.competition,
            is_home=side == "home",
            status=fixture.status,
            source=source,
            minute=minute if fixture.status.is_live else None,
            venue=fixture.venue,
        )
        if fact is None:
            previous = self._store.today(player.id)
            if previous is not None and same_match(previous, record) and fixture.status.has_detail:
                fact = previous.participation
            else:
                fact = ParticipationFact.unknown(source)
        record.participation = fact
        TIER_SELECTIONS.labels(kind="today", source=source.value).inc()
        return record

    async def _clear(self, players: list[Player]) -> None:
        for player in players:
            await self._store.set_today(player.id, None)

    async def _drop_outdated(self, players: list[Player], league: str) -> None:
        for player in players:
            held = self._store.today(player.id)
            if held is not None and not self._clock.is_today(held.kickoff, league):
                await self._store.set_today(player.id, None)
