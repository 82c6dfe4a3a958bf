"""
Event normalization: feed-native match detail -> canonical events + participation.

Every function here is pure. Events are rebuilt from scratch on each call and
sorted by minute, so normalizing the same payload twice gives identical output.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional

from ingest.normalization.identity import IdentityResolver, player_name_matches
from shared.models.domain import (
    CanonicalEvent,
    Lineup,
    LineupPlayer,
    LineupSnapshot,
    ManualMatch,
    MatchDetail,
    ParticipationFact,
    PlayerMatch,
)
from shared.models.enums import CardType, DataSource, EventType, MatchStatus, SquadRole, TriState
from shared.utils.logging import get_logger

logger = get_logger(__name__)

NameMatcher = Callable[[Optional[str], str], bool]

DEFAULT_MATCH_DURATION = 90


def _matcher(resolver: Optional[IdentityResolver]) -> NameMatcher:
    if resolver is not None:
        return resolver.player_matches
    return lambda feed, roster: player_name_matches(feed, roster)


def _other_side(entry_side: Optional[str], side: Optional[str]) -> bool:
    return side is not None and entry_side is not None and entry_side != side


def _sorted(events: Iterable[CanonicalEvent]) -> list[CanonicalEvent]:
    return sorted(events, key=lambda e: e.sort_key)


def _find(players: Iterable[LineupPlayer], player_name: str, matches: NameMatcher) -> Optional[LineupPlayer]:
    for p in players:
        if matches(p.name, player_name):
            return p
    return None


def _count_events(player: LineupPlayer | PlayerMatch) -> list[CanonicalEvent]:
    events: list[CanonicalEvent] = []
    events += [CanonicalEvent(type=EventType.GOAL) for _ in range(player.goals)]
    events += [CanonicalEvent(type=EventType.ASSIST) for _ in range(player.assists)]
    events += [CanonicalEvent(type=EventType.YELLOW) for _ in range(player.yellow_cards)]
    events += [CanonicalEvent(type=EventType.RED) for _ in range(player.red_cards)]
    return events


def _unused_sub(rating: Optional[float], source: DataSource) -> ParticipationFact:
    return ParticipationFact(
        participated=TriState.NO,
        started=TriState.NO,
        minutes_played=0,
        rating=rating,
        squad_role=SquadRole.BENCH,
        source=source,
    )


def _not_in_squad(source: DataSource) -> ParticipationFact:
    return ParticipationFact(
        participated=TriState.NO,
        started=TriState.NO,
        minutes_played=0,
        squad_role=SquadRole.NOT_IN_SQUAD,
        source=source,
    )


# ── Match detail ────────────────────────────────────────────────────────

def extract_events(
    detail: MatchDetail,
    player_name: str,
    side: Optional[str],
    resolver: Optional[IdentityResolver] = None,
) -> list[CanonicalEvent]:
    """Canonical events for one player. Own goals are never credited as goals."""
    matches = _matcher(resolver)
    events: list[CanonicalEvent] = []

    for goal in detail.goals:
        if _other_side(goal.side, side):
            continue
        if not goal.own_goal and matches(goal.scorer, player_name):
            events.append(CanonicalEvent(type=EventType.GOAL, minute=goal.minute))
        if goal.assist and matches(goal.assist, player_name):
            events.append(CanonicalEvent(type=EventType.ASSIST, minute=goal.minute))

    for sub in detail.substitutions:
        if _other_side(sub.side, side):
            continue
        if matches(sub.player_out, player_name):
            events.append(CanonicalEvent(type=EventType.SUB_OUT, minute=sub.minute))
        if matches(sub.player_in, player_name):
            events.append(CanonicalEvent(type=EventType.SUB_IN, minute=sub.minute))

    for booking in detail.bookings:
        if _other_side(booking.side, side):
            continue
        if not matches(booking.player_name, player_name):
            continue
        card = EventType.YELLOW if booking.card == CardType.YELLOW else EventType.RED
        events.append(CanonicalEvent(type=card, minute=booking.minute))

    return _sorted(events)


def _first_minute(events: list[CanonicalEvent], kind: EventType) -> tuple[bool, Optional[int]]:
    for e in events:
        if e.type == kind:
            return True, e.minute
    return False, None


def _minutes_played(
    events: list[CanonicalEvent],
    in_starters: bool,
    end_minute: int,
) -> Optional[int]:
    has_in, sub_in = _first_minute(events, EventType.SUB_IN)
    has_out, sub_out = _first_minute(events, EventType.SUB_OUT)
    has_red, red = _first_minute(events, EventType.RED)
    if has_red and red is not None and not has_out:
        has_out, sub_out = True, red

    if has_in and has_out:
        if sub_in is None or sub_out is None:
            return None
        return max(0, sub_out - sub_in)
    if has_in:
        return None if sub_in is None else max(0, end_minute - sub_in)
    if has_out:
        return sub_out
    if events or in_starters:
        return end_minute
    return None


def normalize_participation(
    detail: MatchDetail,
    player_name: str,
    side: Optional[str],
    resolver: Optional[IdentityResolver] = None,
    *,
    source: DataSource = DataSource.UNKNOWN,
    match_duration: int = DEFAULT_MATCH_DURATION,
) -> ParticipationFact:
    """
    Derive a participation fact for one player from one match detail.

    Args:
        detail: Feed match detail (goals, substitutions, bookings, optional lineups).
        player_name: Roster display name.
        side: "home"/"away" when the player's team side is known, else None.
        resolver: Roster-bound player matcher; plain matching when omitted.
        source: Tier recorded on the fact.
        match_duration: Full-match minutes used for a finished match.

    Returns:
        A fact whose fields stay UNKNOWN when the detail says nothing about the player.
    """
    matches = _matcher(resolver)
    events = extract_events(detail, player_name, side, resolver)

    if side is not None:
        lineups = [detail.lineup_for(side)]
    else:
        lineups = [detail.home_lineup, detail.away_lineup]
    known_lineups: list[Lineup] = [l for l in lineups if l is not None and not l.is_empty]

    starter: Optional[LineupPlayer] = None
    bench: Optional[LineupPlayer] = None
    for lineup in known_lineups:
        starter = starter or _find(lineup.starters, player_name, matches)
        bench = bench or _find(lineup.bench, player_name, matches)
    in_starters = starter is not None
    on_bench = bench is not None and not in_starters
    rating = (starter or bench).rating if (starter or bench) else None

    if not events and not in_starters and not on_bench:
        if known_lineups:
            return _not_in_squad(source)
        return ParticipationFact.unknown(source)

    if on_bench and not events and rating is None:
        return _unused_sub(rating, source)

    has_sub_in = any(e.type == EventType.SUB_IN for e in events)
    if in_starters:
        started = TriState.YES
    elif on_bench or has_sub_in:
        started = TriState.NO
    else:
        started = TriState.YES

    if detail.status == MatchStatus.LIVE and detail.minute is not None:
        end_minute = detail.minute
    else:
        end_minute = match_duration

    minutes = _minutes_played(events, in_starters, end_minute)
    if on_bench and not events:
        # Rated bench player whose substitution the feed did not record.
        minutes = None

    if started == TriState.YES:
        role = SquadRole.STARTER
    elif on_bench or has_sub_in:
        role = SquadRole.BENCH
    else:
        role = SquadRole.UNKNOWN

    return ParticipationFact(
        participated=TriState.YES,
        started=started,
        minutes_played=minutes,
        rating=rating,
        events=events,
        squad_role=role,
        source=source,
    )


# ── Team lineup snapshot ────────────────────────────────────────────────

def lineup_snapshot_consistent(
    snapshot: LineupSnapshot,
    team_score: Optional[int],
    fixture_id: Optional[str] = None,
) -> bool:
    """
    Staleness check for a team-level lineup snapshot.

    The overview and its lineup snapshot refresh at different rates. The snapshot
    is trusted only if its goal tally (net of own goals, or gross) equals the
    team's reported score for the match it is being used for.
    """
    if fixture_id is not None and snapshot.fixture_id is not None and snapshot.fixture_id != fixture_id:
        return False
    if team_score is None:
        return True
    players = [*snapshot.starters, *snapshot.bench]
    goals = sum(p.goals for p in players)
    own_goals = sum(p.own_goals for p in players)
    return team_score in (goals - own_goals, goals)


def participation_from_lineup_snapshot(
    snapshot: LineupSnapshot,
    player_name: str,
    resolver: Optional[IdentityResolver] = None,
    *,
    source: DataSource = DataSource.FOTMOB_TEAM_LINEUP,
) -> ParticipationFact:
    """Snapshots carry per-player event counts but no substitution minutes."""
    if snapshot.is_empty:
        return ParticipationFact.unknown(source)

    matches = _matcher(resolver)
    starter = _find(snapshot.starters, player_name, matches)
    if starter is not None:
        return ParticipationFact(
            participated=TriState.YES,
            started=TriState.YES,
            rating=starter.rating,
            events=_count_events(starter),
            squad_role=SquadRole.STARTER,
            source=source,
        )

    bench = _find(snapshot.bench, player_name, matches)
    if bench is None:
        return _not_in_squad(source)
    if bench.rating is None:
        return _unused_sub(None, source)
    return ParticipationFact(
        participated=TriState.YES,
        started=TriState.NO,
        rating=bench.rating,
        events=_count_events(bench),
        squad_role=SquadRole.BENCH,
        source=source,
    )


# ── Player history / manual overrides ───────────────────────────────────

def participation_from_history(
    entry: PlayerMatch,
    source: DataSource = DataSource.FOTMOB_PLAYER_API,
) -> ParticipationFact:
    minutes = entry.minutes_played
    if minutes is not None and minutes > 0:
        participated = TriState.YES
    elif minutes == 0:
        participated = TriState.NO
    else:
        participated = TriState.YES if entry.rating is not None else TriState.UNKNOWN

    if entry.on_bench and participated == TriState.NO:
        return _unused_sub(entry.rating, source)

    started = TriState.NO if entry.on_bench else TriState.UNKNOWN
    role = SquadRole.BENCH if entry.on_bench else SquadRole.UNKNOWN
    if participated == TriState.NO:
        started = TriState.NO

    return ParticipationFact(
        participated=participated,
        started=started,
        minutes_played=minutes,
        rating=entry.rating,
        events=_count_events(entry),
        squad_role=role,
        source=source,
    )


def participation_from_manual(entry: ManualMatch) -> ParticipationFact:
    minutes = entry.minutes_played
    if minutes is None:
        participated = TriState.UNKNOWN
    else:
        participated = TriState.YES if minutes > 0 else TriState.NO

    if entry.started is True:
        role = SquadRole.STARTER
    elif entry.started is False:
        role = SquadRole.BENCH
    else:
        role = SquadRole.UNKNOWN

    return ParticipationFact(
        participated=participated,
        started=TriState.from_bool(entry.started),
        minutes_played=minutes,
        events=_sorted(entry.events),
        squad_role=role,
        source=DataSource.MANUAL,
    )


def refine_with_detail(base: ParticipationFact, detail_fact: ParticipationFact) -> ParticipationFact:
    """
    Overlay started/minutes/timed events from match detail onto a history fact.

    The base keeps its source tier. Unknown detail facts leave the base untouched.
    """
    if detail_fact.participated != TriState.YES:
        return base
    return base.model_copy(
        update={
            "started": detail_fact.started if detail_fact.started != TriState.UNKNOWN else base.started,
            "minutes_played": (
                detail_fact.minutes_played if detail_fact.minutes_played is not None else base.minutes_played
            ),
            "events": detail_fact.events or base.events,
            "rating": base.rating if base.rating is not None else detail_fact.rating,
            "squad_role": (
                detail_fact.squad_role if detail_fact.squad_role != SquadRole.UNKNOWN else base.squad_role
            ),
        }
    )
