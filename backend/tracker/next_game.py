"""
NextGame derivation.

The secondary team overview answers first. Otherwise the earliest upcoming
primary fixture inside the look-ahead window. Results persist in the
next-game cache, which stays valid until each entry's kickoff passes.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional

from ingest.normalization.identity import resolve_side
from ingest.providers.football_data import competition_codes
from shared.config import Settings
from shared.models.domain import NextGame, Player
from shared.models.enums import DataSource, MatchStatus
from shared.utils.cache_store import CycleContext, JsonFileCache
from shared.utils.logging import get_logger
from shared.utils.metrics import TIER_SELECTIONS

from tracker.clock import VenueClock
from tracker.lookups import FeedLookups, reject
from tracker.records import RecordStore, involves_team, source_for_feed
from tracker.roster import Roster

logger = get_logger(__name__)


class NextGameReconciler:
    def __init__(
        self,
        roster: Roster,
        store: RecordStore,
        lookups: FeedLookups,
        clock: VenueClock,
        settings: Settings,
        cache: JsonFileCache[NextGame],
    ) -> None:
        self._roster = roster
        self._store = store
        self._lookups = lookups
        self._clock = clock
        self._settings = settings
        self._cache = cache

    async def restore(self) -> int:
        """Seed the record store from cached entries that still fit the roster."""
        restored = 0
        for player_id, game in self._cache.fresh_items().items():
            player = self._roster.get(player_id)
            if player is None or not involves_team(game, player.team):
                continue
            await self._store.set_next_game(player_id, game)
            restored += 1
        return restored

    async def run(self, ctx: CycleContext) -> None:
        changed = False
        for team, players in self._roster.by_team().items():
            try:
                changed = await self._reconcile_team(ctx, team, players) or changed
            except Exception as exc:
                logger.error("next_game_failed", team=team, error=str(exc), exc_info=True)
        if changed:
            self._cache.flush()

    async def _reconcile_team(self, ctx: CycleContext, team: str, players: list[Player]) -> bool:
        """Returns True when the cache was modified."""
        cached = [self._cache.get(p.id) for p in players]
        if all(game is not None and involves_team(game, team) for game in cached):
            for player, game in zip(players, cached):
                await self._store.set_next_game(player.id, game)
            logger.debug("next_game_cache_hit", team=team, players=len(players))
            return False

        game, overview_answered = await self._from_overview(ctx, team)
        primary_answered = False
        if game is None:
            game, primary_answered = await self._from_primary(ctx, team, players[0].league)

        if game is None:
            if not (overview_answered or primary_answered):
                return False
            # Every feed answered and none reports a next match.
            for player in players:
                await self._store.set_next_game(player.id, None)
                self._cache.delete(player.id, flush=False)
            return True

        TIER_SELECTIONS.labels(kind="next_game", source=game.source.value).inc()
        for player in players:
            await self._store.set_next_game(player.id, game)
            self._cache.put(player.id, game, flush=False)
        return True

    async def _from_overview(self, ctx: CycleContext, team: str) -> tuple[Optional[NextGame], bool]:
        overview = await self._lookups.overview(ctx, team)
        if overview is None:
            return None, False
        match = overview.next_match
        if match is None or match.kickoff <= self._clock.now() or match.status != MatchStatus.UPCOMING:
            return None, True
        side = resolve_side(
            team, match.home_team, match.away_team, overview.team_id, match.home_team_id, match.away_team_id
        )
        if side is None:
            reject("fixture_identity", team=team, fixture_id=match.fixture_id, home=match.home_team, away=match.away_team)
            return None, False
        return (
            NextGame(
                fixture_id=match.fixture_id,
                kickoff=match.kickoff,
                home_team=match.home_team,
                away_team=match.away_team,
                competition=match.competition,
                is_home=side == "home",
                status=match.status,
                source=DataSource.FOTMOB_TEAM_OVERVIEW,
            ),
            True,
        )

    async def _from_primary(self, ctx: CycleContext, team: str, league: str) -> tuple[Optional[NextGame], bool]:
        today = self._clock.today(league)
        fixtures = await self._lookups.primary_fixtures(
            ctx,
            today,
            today + timedelta(days=self._settings.next_game_lookahead_days),
            competition_codes(self._roster.leagues()),
        )
        if fixtures is None:
            return None, False

        now = self._clock.now()
        best: Optional[NextGame] = None
        for f in fixtures:
            if f.status != MatchStatus.UPCOMING or f.kickoff <= now:
                continue
            side = resolve_side(team, f.home_team, f.away_team, None, f.home_team_id, f.away_team_id)
            if side is None or (best is not None and f.kickoff >= best.kickoff):
                continue
            best = NextGame(
                fixture_id=f.fixture_id,
                kickoff=f.kickoff,
                home_team=f.home_team,
                away_team=f.away_team,
                competition=f.competition,
                is_home=side == "home",
                status=f.status,
                source=source_for_feed(f.feed),
            )
        return best, True
