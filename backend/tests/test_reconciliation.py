"""
Reconciliation engine tests: today / last-game / next-game derivation driven
through MatchTracker.run_cycle() against in-memory feeds.
"""
from __future__ import annotations

from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

from ingest.providers.demo import DemoFeed
from ingest.providers.manual import ManualOverrideFeed
from ingest.providers.registry import FeedSet
from shared.models.domain import (
    LastGame,
    Lineup,
    LineupPlayer,
    LineupSnapshot,
    NextGame,
    ParticipationFact,
    PlayerMatch,
    SubstitutionEntry,
    TeamOverview,
)
from shared.models.enums import DataSource, FeedName, MatchStatus, TriState
from shared.utils.cache_store import JsonFileCache, kickoff_in_future
from tracker.engine import MatchTracker
from tracker.records import NO_MATCH_TODAY, merge_last_game

from conftest import NOW, FakeFeed, days_ago, hours_ago, make_detail, make_fixture

MILAN_FOTMOB_ID = 8564


def _rejected(check: str) -> float:
    return REGISTRY.get_sample_value("mt_responses_rejected_total", {"check": check}) or 0.0


def _milan_inter_finished():
    fixture = make_fixture("fd-100", "AC Milan", "Inter", hours_ago(3), MatchStatus.FINISHED, (2, 1))
    detail = make_detail(
        fixture,
        substitutions=[
            SubstitutionEntry(minute=65, player_in="Christian Pulisic", player_out="Samuel Chukwueze", side="home")
        ],
        home_lineup=Lineup(
            team_name="AC Milan",
            starters=[LineupPlayer(name="Samuel Chukwueze"), LineupPlayer(name="Rafael Leão")],
            bench=[LineupPlayer(name="Christian Pulisic")],
        ),
    )
    return fixture, detail


# ── TodayMatch: primary feed ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_finished_match_with_late_substitution(build_tracker) -> None:
    fixture, detail = _milan_inter_finished()
    primary = FakeFeed(fixtures=[fixture], details={fixture.fixture_id: detail})
    tracker = build_tracker(primary)

    await tracker.run_cycle()

    record = tracker.get_record(1)
    assert record is not None
    assert record.status == "finished"
    today = record.today
    assert today.fixture_id == "fd-100"
    assert today.is_home is True
    assert today.source == DataSource.FOOTBALL_DATA
    assert today.participation.participated == TriState.YES
    assert today.participation.started == TriState.NO
    assert today.participation.minutes_played == 25
    assert ("fixtures", True) in primary.calls
    assert tracker.get_record(5) is None


@pytest.mark.asyncio
async def test_live_match_drives_live_flag(build_tracker) -> None:
    fixture = make_fixture("fd-200", "Fulham", "AC Milan", hours_ago(1), MatchStatus.LIVE, (0, 1), minute=58)
    detail = make_detail(fixture, away_lineup=Lineup(starters=[LineupPlayer(name="Christian Pulisic")]))
    tracker = build_tracker(FakeFeed(fixtures=[fixture], details={"fd-200": detail}))

    await tracker.run_cycle()

    today = tracker.get_record(1).today
    assert tracker.has_live_matches() is True
    assert today.status == MatchStatus.LIVE
    assert today.minute == 58
    assert today.participation.minutes_played == 58
    assert today.is_home is False


class _OverviewFlagFeed(FakeFeed):
    """Records the live flag every team-overview query was made with."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.live_flags: list[bool] = []

    async def _fetch_team_overview(self, team_id: int, *, live: bool = False):
        self.live_flags.append(live)
        return await super()._fetch_team_overview(team_id, live=live)


@pytest.mark.asyncio
async def test_gap_fill_uses_live_cadence_once_a_match_goes_live(build_tracker) -> None:
    fixture = make_fixture("fd-200", "Fulham", "AC Milan", hours_ago(1), MatchStatus.LIVE, (0, 1), minute=12)
    secondary = _OverviewFlagFeed(
        FeedName.FOTMOB,
        team_ids={"Borussia Monchengladbach": 9788},
        overviews={9788: TeamOverview(team_id=9788, team_name="Borussia Monchengladbach")},
    )
    tracker = build_tracker(FakeFeed(fixtures=[fixture]), secondary)
    assert tracker.has_live_matches() is False

    await tracker.run_cycle()

    assert tracker.has_live_matches() is True
    assert secondary.live_flags == [True]


@pytest.mark.asyncio
async def test_cycle_is_idempotent(build_tracker) -> None:
    fixture, detail = _milan_inter_finished()
    tracker = build_tracker(FakeFeed(fixtures=[fixture], details={fixture.fixture_id: detail}))

    await tracker.run_cycle(full=True)
    first = tracker.get_all_records()
    await tracker.run_cycle(full=True)

    assert tracker.get_all_records() == first


@pytest.mark.asyncio
async def test_failed_detail_keeps_previous_participation(build_tracker) -> None:
    fixture, detail = _milan_inter_finished()
    primary = FakeFeed(fixtures=[fixture], details={fixture.fixture_id: detail})
    tracker = build_tracker(primary)
    await tracker.run_cycle()
    before = tracker.get_record(1).today.participation

    primary.fail = {"detail"}
    await tracker.run_cycle()

    assert tracker.get_record(1).today.participation == before


@pytest.mark.asyncio
async def test_primary_outage_keeps_today_record(build_tracker) -> None:
    fixture, detail = _milan_inter_finished()
    primary = FakeFeed(fixtures=[fixture], details={fixture.fixture_id: detail})
    tracker = build_tracker(primary)
    await tracker.run_cycle()

    primary.fail = {"fixtures", "detail"}
    await tracker.run_cycle()

    assert tracker.get_record(1).today.fixture_id == "fd-100"


@pytest.mark.asyncio
async def test_match_gone_from_feed_clears_today(build_tracker) -> None:
    fixture, detail = _milan_inter_finished()
    primary = FakeFeed(fixtures=[fixture], details={fixture.fixture_id: detail})
    tracker = build_tracker(primary)
    await tracker.run_cycle()

    primary.fixtures = []
    await tracker.run_cycle()

    assert tracker.get_record(1) is None


# ── TodayMatch: secondary gap-fill ──────────────────────────────────────

def _milan_overview(team_name: str = "AC Milan", snapshot_goals: int = 2) -> TeamOverview:
    last = make_fixture(
        "4501",
        "AC Milan",
        "Inter",
        hours_ago(3),
        MatchStatus.FINISHED,
        (2, 1),
        feed=FeedName.FOTMOB,
        home_id=MILAN_FOTMOB_ID,
        away_id=8636,
    )
    snapshot = LineupSnapshot(
        team_name="AC Milan",
        fixture_id="4501",
        starters=[LineupPlayer(name="Christian Pulisic", rating=8.1, goals=snapshot_goals)],
        bench=[LineupPlayer(name="Noah Okafor")],
    )
    return TeamOverview(team_id=MILAN_FOTMOB_ID, team_name=team_name, last_match=last, last_lineup=snapshot)


def _secondary(overview: TeamOverview, **kwargs) -> FakeFeed:
    return FakeFeed(
        FeedName.FOTMOB,
        team_ids={"AC Milan": MILAN_FOTMOB_ID},
        overviews={MILAN_FOTMOB_ID: overview},
        **kwargs,
    )


@pytest.mark.asyncio
async def test_gap_fill_uses_consistent_snapshot(build_tracker) -> None:
    tracker = build_tracker(FakeFeed(), _secondary(_milan_overview(snapshot_goals=2)))

    await tracker.run_cycle()

    today = tracker.get_record(1).today
    assert today.fixture_id == "4501"
    assert today.source == DataSource.FOTMOB_TEAM_OVERVIEW
    assert today.participation.source == DataSource.FOTMOB_TEAM_LINEUP
    assert today.participation.participated == TriState.YES
    assert today.participation.started == TriState.YES


@pytest.mark.asyncio
async def test_gap_fill_rejects_stale_snapshot(build_tracker) -> None:
    tracker = build_tracker(FakeFeed(), _secondary(_milan_overview(snapshot_goals=0)))
    before = _rejected("lineup_snapshot")

    await tracker.run_cycle()

    today = tracker.get_record(1).today
    assert today.fixture_id == "4501"
    assert today.participation.is_unknown
    assert _rejected("lineup_snapshot") == before + 1


@pytest.mark.asyncio
async def test_gap_fill_prefers_match_detail(build_tracker) -> None:
    overview = _milan_overview(snapshot_goals=0)
    detail = make_detail(
        overview.last_match,
        substitutions=[SubstitutionEntry(minute=80, player_in="Christian Pulisic", player_out="X", side="home")],
    )
    tracker = build_tracker(FakeFeed(), _secondary(overview, details={"4501": detail}))
    before = _rejected("lineup_snapshot")

    await tracker.run_cycle()

    fact = tracker.get_record(1).today.participation
    assert fact.source == DataSource.FOTMOB_MATCH_DETAIL
    assert fact.minutes_played == 10
    assert _rejected("lineup_snapshot") == before


@pytest.mark.asyncio
async def test_gap_fill_rejects_overview_for_another_team(build_tracker) -> None:
    tracker = build_tracker(FakeFeed(), _secondary(_milan_overview(team_name="Inter")))
    before = _rejected("team_identity")

    await tracker.run_cycle()

    assert tracker.get_record(1) is None
    assert _rejected("team_identity") == before + 1


@pytest.mark.asyncio
async def test_secondary_detail_is_shared_per_cycle(build_tracker, roster) -> None:
    roster.update_team(5, "AC Milan", "Serie A")
    overview = _milan_overview()
    secondary = _secondary(overview, details={"4501": make_detail(overview.last_match)})
    tracker = build_tracker(FakeFeed(), secondary)

    await tracker.run_cycle()

    assert secondary.count("overview") == 1
    assert secondary.count("detail") == 1


# ── LastGame / MissedGame ───────────────────────────────────────────────

def _reyna_history() -> list[PlayerMatch]:
    return [
        PlayerMatch(
            fixture_id="4400",
            kickoff=days_ago(2),
            team_name="Borussia Monchengladbach",
            opponent_name="Wolfsburg",
            is_home=False,
            minutes_played=0,
        ),
        PlayerMatch(
            fixture_id="4300",
            kickoff=days_ago(9),
            team_name="Borussia Monchengladbach",
            opponent_name="Bayern Munich",
            is_home=True,
            minutes_played=70,
            rating=7.0,
            assists=1,
        ),
    ]


@pytest.mark.asyncio
async def test_player_history_gives_last_and_missed_game(build_tracker) -> None:
    secondary = FakeFeed(FeedName.FOTMOB, histories={849811: _reyna_history()})
    tracker = build_tracker(FakeFeed(), secondary)

    await tracker.run_cycle(full=True)

    record = tracker.get_record(5)
    assert record.status == NO_MATCH_TODAY
    assert record.last_game.fixture_id == "4300"
    assert record.last_game.source == DataSource.FOTMOB_PLAYER_API
    assert record.last_game.participation.minutes_played == 70
    assert record.missed_game.fixture_id == "4400"
    assert record.missed_game.away_team == "Borussia Monchengladbach"


@pytest.mark.asyncio
async def test_transfer_rejects_missed_game_for_old_team(build_tracker, roster) -> None:
    secondary = FakeFeed(FeedName.FOTMOB, histories={849811: _reyna_history()})
    tracker = build_tracker(FakeFeed(), secondary)
    await tracker.run_cycle(full=True)
    assert tracker.get_record(5).missed_game is not None

    roster.update_team(5, "Werder Bremen", "Bundesliga")
    await tracker.run_cycle()
    assert tracker.get_record(5).missed_game is None

    await tracker.run_cycle(full=True)
    record = tracker.get_record(5)
    assert record.missed_game is None
    assert record.last_game.fixture_id == "4300"


@pytest.mark.asyncio
async def test_primary_tier_used_without_secondary(build_tracker) -> None:
    past = make_fixture("fd-300", "Roma", "AC Milan", days_ago(1), MatchStatus.FINISHED, (1, 2))
    older = make_fixture("fd-299", "AC Milan", "Lazio", days_ago(8), MatchStatus.FINISHED, (0, 0))
    detail = make_detail(past, away_lineup=Lineup(starters=[LineupPlayer(name="Christian Pulisic")]))
    tracker = build_tracker(FakeFeed(fixtures=[older, past], details={"fd-300": detail}))

    await tracker.run_cycle(full=True)

    last = tracker.get_record(1).last_game
    assert last.fixture_id == "fd-300"
    assert last.source == DataSource.FOOTBALL_DATA
    assert last.participation.started == TriState.YES
    assert last.participation.minutes_played == 90


@pytest.mark.asyncio
async def test_malformed_manual_file_does_not_abort_cycle(build_tracker, tmp_path) -> None:
    (tmp_path / "playerStats.json").write_text("[]", encoding="utf-8")
    past = make_fixture("fd-300", "Roma", "AC Milan", days_ago(1), MatchStatus.FINISHED, (1, 2))
    detail = make_detail(past, away_lineup=Lineup(starters=[LineupPlayer(name="Christian Pulisic")]))
    lazio = make_fixture("fd-400", "AC Milan", "Lazio", NOW + timedelta(days=3), MatchStatus.UPCOMING)
    tracker = build_tracker(FakeFeed(fixtures=[past, lazio], details={"fd-300": detail}))

    await tracker.run_cycle(full=True)

    record = tracker.get_record(1)
    assert record.last_game.fixture_id == "fd-300"
    assert record.next_game.fixture_id == "fd-400"


def _last(source: DataSource, fixture_id: str = "1", kickoff=None) -> LastGame:
    return LastGame(
        fixture_id=fixture_id,
        kickoff=kickoff or days_ago(2),
        home_team="Roma",
        away_team="AC Milan",
        is_home=False,
        status=MatchStatus.FINISHED,
        source=source,
        participation=ParticipationFact.unknown(source),
    )


class TestTierMerge:

    def test_higher_tier_overwrites(self) -> None:
        held = _last(DataSource.FOOTBALL_DATA, "fd-1")
        incoming = _last(DataSource.FOTMOB_PLAYER_API, "fm-1")
        assert merge_last_game(held, incoming) is incoming

    def test_lower_tier_never_overwrites_same_match(self) -> None:
        held = _last(DataSource.FOTMOB_PLAYER_API, "fm-1")
        incoming = _last(DataSource.FOOTBALL_DATA, "fd-1")
        assert merge_last_game(held, incoming) is held

    def test_lower_tier_with_newer_match_wins(self) -> None:
        held = _last(DataSource.FOTMOB_PLAYER_API, "fm-1", days_ago(9))
        incoming = _last(DataSource.FOOTBALL_DATA, "fd-2", days_ago(2))
        assert merge_last_game(held, incoming) is incoming


# ── NextGame ────────────────────────────────────────────────────────────

def _juve_next() -> TeamOverview:
    upcoming = make_fixture(
        "4600",
        "Juventus",
        "AC Milan",
        NOW + timedelta(days=5),
        MatchStatus.UPCOMING,
        feed=FeedName.FOTMOB,
        home_id=9885,
        away_id=MILAN_FOTMOB_ID,
    )
    return TeamOverview(team_id=MILAN_FOTMOB_ID, team_name="AC Milan", next_match=upcoming)


@pytest.mark.asyncio
async def test_next_game_prefers_overview_and_persists(build_tracker, settings) -> None:
    lazio = make_fixture("fd-400", "AC Milan", "Lazio", NOW + timedelta(days=3), MatchStatus.UPCOMING)
    tracker = build_tracker(FakeFeed(fixtures=[lazio]), _secondary(_juve_next()))

    await tracker.run_cycle(full=True)

    nxt = tracker.get_record(1).next_game
    assert nxt.fixture_id == "4600"
    assert nxt.is_home is False
    assert nxt.source == DataSource.FOTMOB_TEAM_OVERVIEW

    reloaded: JsonFileCache[NextGame] = JsonFileCache(
        "next_game",
        settings.data_path(settings.next_game_cache_file),
        NextGame,
        is_fresh=kickoff_in_future,
        clock=lambda: NOW,
    )
    assert reloaded.load() >= 1
    assert reloaded.get(1).fixture_id == "4600"


@pytest.mark.asyncio
async def test_next_game_falls_back_to_primary(build_tracker) -> None:
    lazio = make_fixture("fd-400", "AC Milan", "Lazio", NOW + timedelta(days=3), MatchStatus.UPCOMING)
    far = make_fixture("fd-401", "Napoli", "AC Milan", NOW + timedelta(days=20), MatchStatus.UPCOMING)
    tracker = build_tracker(FakeFeed(fixtures=[far, lazio]))

    await tracker.run_cycle(full=True)

    nxt = tracker.get_record(1).next_game
    assert nxt.fixture_id == "fd-400"
    assert nxt.is_home is True
    assert nxt.source == DataSource.FOOTBALL_DATA


# ── Demo mode ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_demo_feed_end_to_end(settings, roster, clock, tmp_path) -> None:
    feeds = FeedSet(
        primary=DemoFeed(clock=lambda: NOW),
        manual=ManualOverrideFeed(tmp_path / "playerStats.json"),
        demo=True,
    )
    tracker = MatchTracker(settings, feeds=feeds, roster=roster, clock=clock)

    await tracker.run_cycle(full=True)

    pulisic = tracker.get_record(1)
    assert pulisic.status == "live"
    assert pulisic.today.participation.started == TriState.YES
    assert pulisic.today.participation.minutes_played == 67

    reyna = tracker.get_record(5).today
    assert reyna.status == MatchStatus.FINISHED
    assert reyna.participation.started == TriState.NO
    assert reyna.participation.minutes_played == 25

    status = tracker.status()
    assert status["mode"] == "demo"
    assert status["has_live_matches"] is True
    assert status["cycles"] == 1
