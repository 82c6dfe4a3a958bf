"""
Unit tests for event normalization and participation facts.
"""
from __future__ import annotations

from ingest.normalization.events import (
    extract_events,
    lineup_snapshot_consistent,
    normalize_participation,
    participation_from_history,
    participation_from_lineup_snapshot,
    participation_from_manual,
    refine_with_detail,
)
from ingest.normalization.identity import IdentityResolver
from shared.models.domain import (
    BookingEntry,
    GoalEntry,
    Lineup,
    LineupPlayer,
    LineupSnapshot,
    ManualMatch,
    MatchDetail,
    PlayerMatch,
    SubstitutionEntry,
)
from shared.models.enums import (
    CardType,
    DataSource,
    EventType,
    FeedName,
    MatchStatus,
    SquadRole,
    TriState,
)

from conftest import NOW


def _detail(**kwargs) -> MatchDetail:
    base = {
        "fixture_id": "100",
        "feed": FeedName.FOOTBALL_DATA,
        "home_team": "AC Milan",
        "away_team": "Inter",
        "status": MatchStatus.FINISHED,
    }
    base.update(kwargs)
    return MatchDetail(**base)


def _lineup(starters: list[str], bench: list[str] = (), rated: dict[str, float] | None = None) -> Lineup:
    rated = rated or {}
    return Lineup(
        starters=[LineupPlayer(name=n, rating=rated.get(n)) for n in starters],
        bench=[LineupPlayer(name=n, rating=rated.get(n)) for n in bench],
    )


# ── extract_events ──────────────────────────────────────────────────────

class TestExtractEvents:

    def test_goal_assist_and_cards(self) -> None:
        detail = _detail(
            goals=[
                GoalEntry(minute=55, scorer="Rafael Leão", assist="Christian Pulisic", side="home"),
                GoalEntry(minute=23, scorer="Christian Pulisic", side="home"),
            ],
            bookings=[BookingEntry(minute=70, player_name="Christian Pulisic", card=CardType.YELLOW, side="home")],
        )
        events = extract_events(detail, "Christian Pulisic", "home")
        assert [(e.type, e.minute) for e in events] == [
            (EventType.GOAL, 23),
            (EventType.ASSIST, 55),
            (EventType.YELLOW, 70),
        ]

    def test_own_goal_not_credited(self) -> None:
        detail = _detail(goals=[GoalEntry(minute=12, scorer="Christian Pulisic", side="home", own_goal=True)])
        assert extract_events(detail, "Christian Pulisic", "home") == []

    def test_second_yellow_is_red(self) -> None:
        detail = _detail(
            bookings=[
                BookingEntry(minute=30, player_name="Christian Pulisic", card=CardType.YELLOW, side="home"),
                BookingEntry(minute=80, player_name="Christian Pulisic", card=CardType.SECOND_YELLOW, side="home"),
            ]
        )
        types = [e.type for e in extract_events(detail, "Christian Pulisic", "home")]
        assert types == [EventType.YELLOW, EventType.RED]

    def test_other_side_ignored(self) -> None:
        detail = _detail(goals=[GoalEntry(minute=40, scorer="Christian Pulisic", side="away")])
        assert extract_events(detail, "Christian Pulisic", "home") == []
        assert len(extract_events(detail, "Christian Pulisic", None)) == 1

    def test_idempotent(self) -> None:
        detail = _detail(
            substitutions=[SubstitutionEntry(minute=60, player_in="Christian Pulisic", player_out="X", side="home")],
            goals=[GoalEntry(minute=88, scorer="Christian Pulisic", side="home")],
        )
        assert extract_events(detail, "Christian Pulisic", "home") == extract_events(
            detail, "Christian Pulisic", "home"
        )


# ── normalize_participation ─────────────────────────────────────────────

class TestNormalizeParticipation:

    def test_sub_in_and_out(self) -> None:
        detail = _detail(
            substitutions=[
                SubstitutionEntry(minute=60, player_in="Christian Pulisic", player_out="Samuel Chukwueze", side="home"),
                SubstitutionEntry(minute=85, player_in="Noah Okafor", player_out="Christian Pulisic", side="home"),
            ],
        )
        fact = normalize_participation(detail, "Christian Pulisic", "home")
        assert fact.participated == TriState.YES
        assert fact.started == TriState.NO
        assert fact.minutes_played == 25
        assert fact.squad_role == SquadRole.BENCH

    def test_sub_in_only_runs_to_full_time(self) -> None:
        detail = _detail(
            substitutions=[SubstitutionEntry(minute=65, player_in="Christian Pulisic", player_out="X", side="home")],
            home_lineup=_lineup(["X"], ["Christian Pulisic"]),
        )
        fact = normalize_participation(detail, "Christian Pulisic", "home", source=DataSource.FOOTBALL_DATA)
        assert (fact.participated, fact.started, fact.minutes_played) == (TriState.YES, TriState.NO, 25)
        assert fact.source == DataSource.FOOTBALL_DATA

    def test_starter_subbed_off(self) -> None:
        detail = _detail(
            substitutions=[SubstitutionEntry(minute=72, player_in="Y", player_out="Christian Pulisic", side="home")],
            home_lineup=_lineup(["Christian Pulisic"]),
        )
        fact = normalize_participation(detail, "Christian Pulisic", "home")
        assert (fact.started, fact.minutes_played) == (TriState.YES, 72)

    def test_full_match_starter(self) -> None:
        detail = _detail(home_lineup=_lineup(["Christian Pulisic"]))
        fact = normalize_participation(detail, "Christian Pulisic", "home")
        assert (fact.participated, fact.started, fact.minutes_played) == (TriState.YES, TriState.YES, 90)
        assert fact.squad_role == SquadRole.STARTER

    def test_live_starter_counts_to_current_minute(self) -> None:
        detail = _detail(status=MatchStatus.LIVE, minute=67, home_lineup=_lineup(["Christian Pulisic"]))
        assert normalize_participation(detail, "Christian Pulisic", "home").minutes_played == 67

    def test_red_card_ends_minutes(self) -> None:
        detail = _detail(
            home_lineup=_lineup(["Christian Pulisic"]),
            bookings=[BookingEntry(minute=50, player_name="Christian Pulisic", card=CardType.RED, side="home")],
        )
        assert normalize_participation(detail, "Christian Pulisic", "home").minutes_played == 50

    def test_unused_substitute(self) -> None:
        detail = _detail(home_lineup=_lineup(["X"], ["Christian Pulisic"]))
        fact = normalize_participation(detail, "Christian Pulisic", "home")
        assert fact.participated == TriState.NO
        assert fact.started == TriState.NO
        assert fact.minutes_played == 0
        assert fact.squad_role == SquadRole.BENCH

    def test_not_in_squad_differs_from_unused_sub(self) -> None:
        detail = _detail(home_lineup=_lineup(["X"], ["Y"]))
        fact = normalize_participation(detail, "Christian Pulisic", "home")
        assert fact.participated == TriState.NO
        assert fact.squad_role == SquadRole.NOT_IN_SQUAD

    def test_nothing_known_is_unknown(self) -> None:
        fact = normalize_participation(_detail(), "Christian Pulisic", "home")
        assert fact.is_unknown
        assert fact.started == TriState.UNKNOWN
        assert fact.minutes_played is None

    def test_rated_bench_player_without_substitution(self) -> None:
        detail = _detail(home_lineup=_lineup(["X"], ["Christian Pulisic"], rated={"Christian Pulisic": 6.8}))
        fact = normalize_participation(detail, "Christian Pulisic", "home")
        assert fact.participated == TriState.YES
        assert fact.started == TriState.NO
        assert fact.minutes_played is None

    def test_ambiguous_initial_only_credits_the_right_player(self) -> None:
        resolver = IdentityResolver(["Quinn Sullivan", "Cavan Sullivan"])
        detail = _detail(
            substitutions=[SubstitutionEntry(minute=70, player_in="C. Sullivan", player_out="Z", side="home")],
        )
        assert normalize_participation(detail, "Cavan Sullivan", "home", resolver).participated == TriState.YES
        assert normalize_participation(detail, "Quinn Sullivan", "home", resolver).is_unknown

    def test_idempotent(self) -> None:
        detail = _detail(
            substitutions=[SubstitutionEntry(minute=65, player_in="Christian Pulisic", player_out="X", side="home")],
            goals=[GoalEntry(minute=80, scorer="Christian Pulisic", side="home")],
        )
        first = normalize_participation(detail, "Christian Pulisic", "home")
        second = normalize_participation(detail, "Christian Pulisic", "home")
        assert first == second


# ── Lineup snapshots ────────────────────────────────────────────────────

def _snapshot(goals: int = 0, own_goals: int = 0, fixture_id: str | None = None) -> LineupSnapshot:
    return LineupSnapshot(
        fixture_id=fixture_id,
        starters=[
            LineupPlayer(name="Christian Pulisic", rating=7.4, goals=goals),
            LineupPlayer(name="Fikayo Tomori", own_goals=own_goals),
        ],
        bench=[LineupPlayer(name="Noah Okafor")],
    )


class TestLineupSnapshot:

    def test_consistent_when_goals_match(self) -> None:
        assert lineup_snapshot_consistent(_snapshot(goals=2), 2)

    def test_own_goals_netted(self) -> None:
        assert lineup_snapshot_consistent(_snapshot(goals=2, own_goals=1), 1)

    def test_stale_snapshot_rejected(self) -> None:
        assert not lineup_snapshot_consistent(_snapshot(goals=0), 2)

    def test_other_fixture_rejected(self) -> None:
        assert not lineup_snapshot_consistent(_snapshot(goals=1, fixture_id="77"), 1, "78")

    def test_unknown_score_accepted(self) -> None:
        assert lineup_snapshot_consistent(_snapshot(goals=3), None)

    def test_facts(self) -> None:
        snapshot = _snapshot(goals=1)
        starter = participation_from_lineup_snapshot(snapshot, "Christian Pulisic")
        assert (starter.participated, starter.started) == (TriState.YES, TriState.YES)
        assert [e.type for e in starter.events] == [EventType.GOAL]
        assert starter.source == DataSource.FOTMOB_TEAM_LINEUP

        unused = participation_from_lineup_snapshot(snapshot, "Noah Okafor")
        assert unused.participated == TriState.NO
        assert unused.squad_role == SquadRole.BENCH

        absent = participation_from_lineup_snapshot(snapshot, "Weston McKennie")
        assert absent.squad_role == SquadRole.NOT_IN_SQUAD


# ── History and manual entries ──────────────────────────────────────────

def _history(**kwargs) -> PlayerMatch:
    base = {
        "fixture_id": "900",
        "kickoff": NOW,
        "team_name": "AC Milan",
        "opponent_name": "Roma",
        "is_home": False,
    }
    base.update(kwargs)
    return PlayerMatch(**base)


class TestHistoryAndManual:

    def test_played(self) -> None:
        fact = participation_from_history(_history(minutes_played=78, rating=7.1, goals=1))
        assert fact.participated == TriState.YES
        assert fact.started == TriState.UNKNOWN
        assert fact.minutes_played == 78
        assert [e.type for e in fact.events] == [EventType.GOAL]

    def test_unused_sub(self) -> None:
        fact = participation_from_history(_history(minutes_played=0, on_bench=True))
        assert (fact.participated, fact.squad_role) == (TriState.NO, SquadRole.BENCH)

    def test_rating_without_minutes_means_played(self) -> None:
        assert participation_from_history(_history(rating=6.5)).participated == TriState.YES

    def test_nothing_known(self) -> None:
        assert participation_from_history(_history()).participated == TriState.UNKNOWN

    def test_manual_entry(self) -> None:
        entry = ManualMatch.model_validate(
            {
                "date": "2026-10-12",
                "opponent": "Roma",
                "isHome": False,
                "minutesPlayed": 90,
                "started": True,
                "events": [{"type": "goal", "minute": 78}],
            }
        )
        fact = participation_from_manual(entry)
        assert (fact.participated, fact.started, fact.minutes_played) == (TriState.YES, TriState.YES, 90)
        assert fact.source == DataSource.MANUAL

    def test_refine_keeps_source_and_fills_started(self) -> None:
        base = participation_from_history(_history(minutes_played=25, rating=6.9))
        detail = _detail(
            away_team="AC Milan",
            home_team="Roma",
            substitutions=[SubstitutionEntry(minute=65, player_in="Christian Pulisic", player_out="X", side="away")],
        )
        refined = refine_with_detail(base, normalize_participation(detail, "Christian Pulisic", "away"))
        assert refined.source == DataSource.FOTMOB_PLAYER_API
        assert refined.started == TriState.NO
        assert refined.minutes_played == 25
        assert refined.rating == 6.9
