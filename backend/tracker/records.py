"""
Per-kind record maps for the roster.

All writes go through RecordStore under one asyncio.Lock. Reads are plain
dict lookups and never block.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

from ingest.normalization.identity import team_matches
from shared.models.domain import LastGame, MatchRecord, MissedGame, NextGame, Player, PlayerRecord, TodayMatch
from shared.models.enums import DataSource, FeedName, MatchStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import LIVE_MATCHES, RECORDS_HELD

logger = get_logger(__name__)

NO_MATCH_TODAY = "no_match_today"

_FEED_SOURCES = {
    FeedName.FOOTBALL_DATA: DataSource.FOOTBALL_DATA,
    FeedName.FOTMOB: DataSource.FOTMOB_TEAM_OVERVIEW,
    FeedName.MANUAL: DataSource.MANUAL,
    FeedName.DEMO: DataSource.DEMO,
}


def source_for_feed(feed: FeedName) -> DataSource:
    return _FEED_SOURCES.get(feed, DataSource.UNKNOWN)


def involves_team(record: MatchRecord, team: str) -> bool:
    return team_matches(record.home_team, team) or team_matches(record.away_team, team)


def same_match(a: MatchRecord, b: MatchRecord) -> bool:
    """Same fixture, even when two feeds use different ids for it."""
    if a.fixture_id == b.fixture_id:
        return True
    if abs(a.kickoff - b.kickoff) > timedelta(hours=36):
        return False
    return team_matches(a.home_team, b.home_team) and team_matches(a.away_team, b.away_team)


def merge_last_game(current: Optional[LastGame], incoming: LastGame) -> LastGame:
    """
    Deterministic tier merge.

    A higher (or equal) tier always replaces the held record. A lower tier
    replaces it only with a strictly newer match, never the same one.
    """
    if current is None:
        return incoming
    if incoming.source.rank <= current.source.rank:
        return incoming
    if same_match(current, incoming):
        return current
    return incoming if incoming.kickoff > current.kickoff else current


class RecordStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._today: dict[int, TodayMatch] = {}
        self._last: dict[int, LastGame] = {}
        self._missed: dict[int, MissedGame] = {}
        self._next: dict[int, NextGame] = {}

    # ── Reads ───────────────────────────────────────────────────────────

    def today(self, player_id: int) -> Optional[TodayMatch]:
        return self._today.get(player_id)

    def last_game(self, player_id: int) -> Optional[LastGame]:
        return self._last.get(player_id)

    def missed_game(self, player_id: int) -> Optional[MissedGame]:
        return self._missed.get(player_id)

    def next_game(self, player_id: int) -> Optional[NextGame]:
        return self._next.get(player_id)

    def has_live(self) -> bool:
        return any(r.status == MatchStatus.LIVE for r in self._today.values())

    def record(self, player_id: int) -> Optional[PlayerRecord]:
        today = self._today.get(player_id)
        last = self._last.get(player_id)
        nxt = self._next.get(player_id)
        if today is not None:
            status = today.status.value
        elif last is not None or nxt is not None:
            status = NO_MATCH_TODAY
        else:
            return None
        return PlayerRecord(
            player_id=player_id,
            status=status,
            today=today,
            last_game=last,
            missed_game=self._missed.get(player_id),
            next_game=nxt,
        )

    # ── Writes ──────────────────────────────────────────────────────────

    async def set_today(self, player_id: int, record: Optional[TodayMatch]) -> None:
        async with self._lock:
            if record is None:
                self._today.pop(player_id, None)
            else:
                self._today[player_id] = record
            self._update_gauges()

    async def set_last_game(self, player_id: int, record: LastGame) -> LastGame:
        async with self._lock:
            merged = merge_last_game(self._last.get(player_id), record)
            if merged is not record:
                logger.debug(
                    "last_game_kept_higher_tier",
                    player_id=player_id,
                    held=merged.source.value,
                    offered=record.source.value,
                )
            self._last[player_id] = merged
            missed = self._missed.get(player_id)
            if missed is not None and missed.kickoff <= merged.kickoff:
                del self._missed[player_id]
            self._update_gauges()
            return merged

    async def set_missed_game(self, player_id: int, record: Optional[MissedGame]) -> None:
        async with self._lock:
            last = self._last.get(player_id)
            if record is not None and last is not None and record.kickoff <= last.kickoff:
                record = None
            if record is None:
                self._missed.pop(player_id, None)
            else:
                self._missed[player_id] = record
            self._update_gauges()

    async def set_next_game(self, player_id: int, record: Optional[NextGame]) -> None:
        async with self._lock:
            if record is None:
                self._next.pop(player_id, None)
            else:
                self._next[player_id] = record
            self._update_gauges()

    async def prune_stale(self, players: list[Player]) -> int:
        """
        Drop today/next/missed records whose teams no longer include the
        player's current team. Returns the number of records dropped.
        """
        dropped = 0
        async with self._lock:
            for player in players:
                for kind, records in (("today", self._today), ("next", self._next), ("missed", self._missed)):
                    held = records.get(player.id)
                    if held is not None and not involves_team(held, player.team):
                        del records[player.id]
                        dropped += 1
                        logger.info(
                            "stale_team_record_dropped",
                            player_id=player.id,
                            kind=kind,
                            team=player.team,
                            fixture_id=held.fixture_id,
                        )
            roster_ids = {p.id for p in players}
            for records in (self._today, self._last, self._missed, self._next):
                for player_id in [pid for pid in records if pid not in roster_ids]:
                    del records[player_id]
                    dropped += 1
            self._update_gauges()
        return dropped

    def _update_gauges(self) -> None:
        RECORDS_HELD.labels(kind="today").set(len(self._today))
        RECORDS_HELD.labels(kind="last_game").set(len(self._last))
        RECORDS_HELD.labels(kind="missed_game").set(len(self._missed))
        RECORDS_HELD.labels(kind="next_game").set(len(self._next))
        LIVE_MATCHES.set(sum(1 for r in self._today.values() if r.status == MatchStatus.LIVE))
