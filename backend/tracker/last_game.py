"""
LastGame / MissedGame derivation.

Tiers, first success wins:
  1. secondary per-player history (refined from match detail)
  2. secondary team overview: last match detail, else its lineup snapshot
  3. primary fixtures over the look-back window
  4. operator overrides
"""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Any, Optional

from ingest.normalization.events import (
    lineup_snapshot_consistent,
    normalize_participation,
    participation_from_history,
    participation_from_lineup_snapshot,
    participation_from_manual,
    refine_with_detail,
)
from ingest.normalization.identity import resolve_side
from ingest.providers.football_data import competition_codes
from shared.config import Settings
from shared.models.domain import (
    Fixture,
    LastGame,
    ManualMatch,
    MissedGame,
    ParticipationFact,
    Player,
    PlayerMatch,
    TeamOverview,
)
from shared.models.enums import DataSource, MatchStatus, SquadRole, TriState
from shared.utils.cache_store import CycleContext, JsonFileCache
from shared.utils.logging import get_logger
from shared.utils.metrics import TIER_SELECTIONS

from tracker.clock import VenueClock
from tracker.lookups import FeedLookups, reject
from tracker.records import RecordStore, involves_team, same_match, source_for_feed
from tracker.roster import Roster

logger = get_logger(__name__)


# ── Record builders ─────────────────────────────────────────────────────

def _fixture_fields(fixture: Fixture, side: str, source: DataSource) -> dict[str, Any]:
    return {
        "fixture_id": fixture.fixture_id,
        "kickoff": fixture.kickoff,
        "home_team": fixture.home_team,
        "away_team": fixture.away_team,
        "home_score": fixture.home_score,
        "away_score": fixture.away_score,
        "competition": fixture.competition,
        "is_home": side == "home",
        "status": fixture.status,
        "source": source,
    }


def _history_fields(entry: PlayerMatch) -> dict[str, Any]:
    return {
        "fixture_id": entry.fixture_id,
        "kickoff": entry.kickoff,
        "home_team": entry.home_team,
        "away_team": entry.away_team,
        "home_score": entry.home_score,
        "away_score": entry.away_score,
        "competition": entry.competition,
        "is_home": entry.is_home,
        "status": MatchStatus.FINISHED,
        "source": DataSource.FOTMOB_PLAYER_API,
    }


def _manual_fields(player: Player, entry: ManualMatch) -> dict[str, Any]:
    home, away = (player.team, entry.opponent) if entry.is_home else (entry.opponent, player.team)
    return {
        "fixture_id": f"manual-{player.id}-{entry.match_date.isoformat()}",
        "kickoff": datetime.combine(entry.match_date, time(0, 0), tzinfo=timezone.utc),
        "home_team": home,
        "away_team": away,
        "home_score": entry.home_score,
        "away_score": entry.away_score,
        "competition": entry.competition,
        "is_home": entry.is_home,
        "status": MatchStatus.FINISHED,
        "source": DataSource.MANUAL,
    }


def _missed_reason(fact: ParticipationFact) -> SquadRole:
    return fact.squad_role if fact.squad_role != SquadRole.STARTER else SquadRole.UNKNOWN


class LastGameReconciler:
    def __init__(
        self,
        roster: Roster,
        store: RecordStore,
        lookups: FeedLookups,
        clock: VenueClock,
        settings: Settings,
        history_cache: JsonFileCache[list[PlayerMatch]],
    ) -> None:
        self._roster = roster
        self._store = store
        self._lookups = lookups
        self._clock = clock
        self._settings = settings
        self._history = history_cache

    # ── Per-player stats stage ──────────────────────────────────────────

    async def refresh_history(self) -> int:
        """Refill expired secondary-feed player histories. Returns the number refreshed."""
        secondary = self._lookups.feeds.secondary
        if secondary is None:
            return 0

        refreshed = 0
        for player in self._roster.players:
            if player.fotmob_id is None or self._history.entry(player.id) is not None:
                continue
            await self._lookups.pause()
            history = await secondary.get_player_recent_matches(player.fotmob_id)
            if history is None:
                continue
            self._history.put(player.id, history[: self._settings.player_history_limit])
            refreshed += 1

        if refreshed:
            logger.info("player_history_refreshed", players=refreshed, cached=len(self._history))
        return refreshed

    # ── Derivation ──────────────────────────────────────────────────────

    async def run(self, ctx: CycleContext) -> None:
        try:
            manual = await self._lookups.feeds.manual.load_manual_overrides()
        except Exception as exc:
            logger.error("manual_overrides_failed", error=str(exc), exc_info=True)
            manual = {}
        for player in self._roster.players:
            try:
                await self._reconcile_player(ctx, player, manual.get(player.id, []))
            except Exception as exc:
                logger.error("last_game_failed", player_id=player.id, error=str(exc), exc_info=True)

    async def _reconcile_player(self, ctx: CycleContext, player: Player, manual: list[ManualMatch]) -> None:
        overview = await self._lookups.overview(ctx, player.team)
        last: Optional[LastGame] = None
        missed: Optional[MissedGame] = None

        history = self._history.get(player.id)
        if history:
            last, missed = await self._from_history(ctx, player, history)
            if last is not None and overview is not None:
                synthesized = self._missed_from_overview(player, overview, last)
                if synthesized is not None and (missed is None or synthesized.kickoff > missed.kickoff):
                    missed = synthesized

        if last is None and overview is not None:
            last, candidate = await self._from_overview(ctx, player, overview)
            missed = missed or candidate

        if last is None:
            last, candidate = await self._from_primary(ctx, player, manual)
            missed = missed or candidate

        if last is None and manual:
            last, candidate = self._from_manual(player, manual)
            missed = missed or candidate

        if missed is not None and not involves_team(missed, player.team):
            logger.info(
                "missed_game_rejected_transfer",
                player_id=player.id,
                team=player.team,
                fixture_id=missed.fixture_id,
            )
            missed = None

        if last is None and missed is None:
            logger.debug("no_data", reason="no_last_game", player_id=player.id, team=player.team)
            return

        if last is not None:
            TIER_SELECTIONS.labels(kind="last_game", source=last.source.value).inc()
            await self._store.set_last_game(player.id, last)
        await self._store.set_missed_game(player.id, missed)

    # ── Tier 1: player history ──────────────────────────────────────────

    async def _from_history(
        self, ctx: CycleContext, player: Player, history: list[PlayerMatch]
    ) -> tuple[Optional[LastGame], Optional[MissedGame]]:
        now = self._clock.now()
        entries = sorted((e for e in history if e.kickoff <= now), key=lambda e: e.kickoff, reverse=True)
        if not entries:
            return None, None

        missed: Optional[MissedGame] = None
        newest = participation_from_history(entries[0])
        if newest.participated == TriState.NO:
            missed = MissedGame(**_history_fields(entries[0]), reason=_missed_reason(newest))

        for entry in entries:
            fact = participation_from_history(entry)
            if fact.participated != TriState.YES:
                continue
            fact = await self._refine(ctx, player, entry, fact)
            return LastGame(**_history_fields(entry), participation=fact), missed
        return None, missed

    async def _refine(
        self, ctx: CycleContext, player: Player, entry: PlayerMatch, fact: ParticipationFact
    ) -> ParticipationFact:
        secondary = self._lookups.feeds.secondary
        if secondary is None:
            return fact
        detail = await self._lookups.detail(ctx, secondary, entry.fixture_id)
        if detail is None:
            return fact
        detail_fact = normalize_participation(
            detail,
            player.name,
            "home" if entry.is_home else "away",
            self._roster.resolver,
            source=DataSource.FOTMOB_MATCH_DETAIL,
            match_duration=self._settings.match_duration_min,
        )
        return refine_with_detail(fact, detail_fact)

    def _missed_from_overview(
        self, player: Player, overview: TeamOverview, last: LastGame
    ) -> Optional[MissedGame]:
        """A newer completed team match missing from the player's own history."""
        match = overview.last_match
        if match is None or match.status != MatchStatus.FINISHED:
            return None
        if match.kickoff <= last.kickoff:
            return None
        side = resolve_side(
            player.team, match.home_team, match.away_team, overview.team_id, match.home_team_id, match.away_team_id
        )
        if side is None:
            return None
        candidate = MissedGame(**_fixture_fields(match, side, DataSource.FOTMOB_TEAM_OVERVIEW))
        if same_match(candidate, last):
            return None

        snapshot = overview.last_lineup
        if snapshot is not None and not snapshot.is_empty:
            team_score = match.home_score if side == "home" else match.away_score
            if lineup_snapshot_consistent(snapshot, team_score, match.fixture_id):
                fact = participation_from_lineup_snapshot(snapshot, player.name, self._roster.resolver)
                if fact.participated == TriState.YES:
                    # History has not caught up with the match yet.
                    return None
                candidate.reason = _missed_reason(fact)
        return candidate

    # ── Tier 2: team overview ───────────────────────────────────────────

    async def _from_overview(
        self, ctx: CycleContext, player: Player, overview: TeamOverview
    ) -> tuple[Optional[LastGame], Optional[MissedGame]]:
        match = overview.last_match
        if match is None or match.status != MatchStatus.FINISHED:
            return None, None
        side = resolve_side(
            player.team, match.home_team, match.away_team, overview.team_id, match.home_team_id, match.away_team_id
        )
        if side is None:
            return None, None

        fact: Optional[ParticipationFact] = None
        source = DataSource.FOTMOB_TEAM_LINEUP
        detail = await self._lookups.detail(ctx, self._lookups.feeds.secondary, match.fixture_id)
        if detail is not None and detail.has_lineups:
            source = DataSource.FOTMOB_MATCH_DETAIL
            fact = normalize_participation(
                detail,
                player.name,
                side,
                self._roster.resolver,
                source=source,
                match_duration=self._settings.match_duration_min,
            )
        else:
            snapshot = overview.last_lineup
            if snapshot is None or snapshot.is_empty:
                return None, None
            team_score = match.home_score if side == "home" else match.away_score
            if not lineup_snapshot_consistent(snapshot, team_score, match.fixture_id):
                reject(
                    "lineup_snapshot",
                    team=player.team,
                    player_id=player.id,
                    fixture_id=match.fixture_id,
                    team_score=team_score,
                )
                return None, None
            fact = participation_from_lineup_snapshot(snapshot, player.name, self._roster.resolver)

        fields = _fixture_fields(match, side, source)
        if fact.participated == TriState.YES:
            return LastGame(**fields, participation=fact), None
        if fact.participated == TriState.NO:
            return None, MissedGame(**fields, reason=_missed_reason(fact))
        return None, None

    # ── Tier 3: primary fixtures ────────────────────────────────────────

    async def _from_primary(
        self, ctx: CycleContext, player: Player, manual: list[ManualMatch]
    ) -> tuple[Optional[LastGame], Optional[MissedGame]]:
        today = self._clock.today(player.league)
        fixtures = await self._lookups.primary_fixtures(
            ctx,
            today - timedelta(days=self._settings.last_game_lookback_days),
            today,
            competition_codes(self._roster.leagues()),
        )
        if not fixtures:
            return None, None

        finished: list[tuple[Fixture, str]] = []
        for f in fixtures:
            if f.status != MatchStatus.FINISHED:
                continue
            side = resolve_side(player.team, f.home_team, f.away_team, None, f.home_team_id, f.away_team_id)
            if side is not None:
                finished.append((f, side))
        finished.sort(key=lambda c: c[0].kickoff, reverse=True)

        primary = self._lookups.feeds.primary
        source = source_for_feed(primary.name)
        window = timedelta(hours=self._settings.recent_detail_window_h)
        now = self._clock.now()
        missed: Optional[MissedGame] = None

        for fixture, side in finished:
            fact = ParticipationFact.unknown(source)
            if now - fixture.kickoff <= window:
                detail = await self._lookups.detail(ctx, primary, fixture.fixture_id)
                if detail is not None:
                    fact = normalize_participation(
                        detail,
                        player.name,
                        side,
                        self._roster.resolver,
                        source=source,
                        match_duration=self._settings.match_duration_min,
                    )
            if fact.is_unknown:
                local_day = self._clock.local_date(fixture.kickoff, player.league)
                override = next((m for m in manual if m.match_date == local_day), None)
                if override is not None:
                    fact = participation_from_manual(override)

            fields = _fixture_fields(fixture, side, source)
            if fact.participated == TriState.NO:
                if missed is None:
                    missed = MissedGame(**fields, reason=_missed_reason(fact))
                continue
            return LastGame(**fields, participation=fact), missed
        return None, missed

    # ── Tier 4: operator overrides ──────────────────────────────────────

    def _from_manual(
        self, player: Player, manual: list[ManualMatch]
    ) -> tuple[Optional[LastGame], Optional[MissedGame]]:
        entry = max(manual, key=lambda m: m.match_date)
        fact = participation_from_manual(entry)
        fields = _manual_fields(player, entry)
        if fact.participated == TriState.NO:
            return None, MissedGame(**fields, reason=_missed_reason(fact))
        return LastGame(**fields, participation=fact), None
