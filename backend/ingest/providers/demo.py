"""
Offline sample feed used when no primary-feed credentials are configured.

Kickoffs are laid out relative to the current time so the demo always shows a
mix of live, finished, upcoming and past matches for the sample roster.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Callable, Optional

from shared.models.domain import (
    Fixture,
    GoalEntry,
    Lineup,
    LineupPlayer,
    MatchDetail,
    SubstitutionEntry,
    utcnow,
)
from shared.models.enums import FeedName, MatchStatus

from ingest.providers.base import MatchFeed

_MINUTES = timedelta(minutes=1)


def _fixture(
    fixture_id: str,
    home: str,
    away: str,
    kickoff: datetime,
    status: MatchStatus,
    competition: str,
    score: tuple[Optional[int], Optional[int]] = (None, None),
    minute: Optional[int] = None,
) -> Fixture:
    return Fixture(
        fixture_id=fixture_id,
        feed=FeedName.DEMO,
        kickoff=kickoff,
        home_team=home,
        away_team=away,
        home_score=score[0],
        away_score=score[1],
        competition=competition,
        status=status,
        minute=minute,
    )


def _xi(*names: str) -> list[LineupPlayer]:
    return [LineupPlayer(name=n) for n in names]


class DemoFeed(MatchFeed):
    """Answers fixtures and match detail from built-in sample data."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        super().__init__(name=FeedName.DEMO)
        self._clock = clock

    def _fixtures(self) -> list[Fixture]:
        now = self._clock().replace(second=0, microsecond=0)
        day = timedelta(days=1)
        return [
            _fixture("demo-12300", "Roma", "AC Milan", now - 7 * day, MatchStatus.FINISHED, "Serie A", (1, 2)),
            _fixture("demo-12302", "Wolfsburg", "Borussia Monchengladbach", now - 6 * day,
                     MatchStatus.FINISHED, "Bundesliga", (1, 1)),
            _fixture("demo-12301", "Fulham", "Arsenal", now - 4 * day, MatchStatus.FINISHED, "Premier League", (0, 3)),
            _fixture("demo-12347", "Borussia Monchengladbach", "Bayern Munich", now - 180 * _MINUTES,
                     MatchStatus.FINISHED, "Bundesliga", (0, 2), minute=90),
            _fixture("demo-12346", "Fulham", "Chelsea", now - 82 * _MINUTES, MatchStatus.LIVE,
                     "Premier League", (1, 1), minute=82),
            _fixture("demo-12345", "AC Milan", "Inter", now - 67 * _MINUTES, MatchStatus.LIVE,
                     "Serie A", (2, 1), minute=67),
            _fixture("demo-12348", "PSV", "Ajax", now + 120 * _MINUTES, MatchStatus.UPCOMING, "Eredivisie"),
            _fixture("demo-12401", "Philadelphia Union", "New York Red Bulls", now + 3 * day,
                     MatchStatus.UPCOMING, "MLS"),
            _fixture("demo-12400", "Juventus", "AC Milan", now + 5 * day, MatchStatus.UPCOMING, "Serie A"),
            _fixture("demo-12402", "Chelsea", "Fulham", now + 6 * day, MatchStatus.UPCOMING, "Premier League"),
        ]

    def _details(self) -> dict[str, MatchDetail]:
        fixtures = {f.fixture_id: f for f in self._fixtures()}

        def detail(fixture_id: str, **kwargs: object) -> MatchDetail:
            f = fixtures[fixture_id]
            return MatchDetail(
                fixture_id=fixture_id,
                feed=FeedName.DEMO,
                home_team=f.home_team,
                away_team=f.away_team,
                home_score=f.home_score,
                away_score=f.away_score,
                status=f.status,
                minute=f.minute,
                **kwargs,
            )

        return {
            "demo-12345": detail(
                "demo-12345",
                goals=[
                    GoalEntry(minute=23, scorer="Christian Pulisic", side="home"),
                    GoalEntry(minute=40, scorer="Lautaro Martínez", side="away"),
                    GoalEntry(minute=55, scorer="Rafael Leão", assist="Christian Pulisic", side="home"),
                ],
                home_lineup=Lineup(
                    team_name="AC Milan",
                    starters=_xi("Mike Maignan", "Christian Pulisic", "Rafael Leão", "Tijjani Reijnders"),
                    bench=_xi("Samuel Chukwueze"),
                ),
            ),
            "demo-12346": detail(
                "demo-12346",
                home_lineup=Lineup(team_name="Fulham", starters=_xi("Bernd Leno", "Antonee Robinson")),
            ),
            "demo-12347": detail(
                "demo-12347",
                substitutions=[
                    SubstitutionEntry(minute=65, player_in="Giovanni Reyna", player_out="Franck Honorat", side="home"),
                ],
                home_lineup=Lineup(
                    team_name="Borussia Monchengladbach",
                    starters=_xi("Moritz Nicolas", "Franck Honorat"),
                    bench=_xi("Giovanni Reyna"),
                ),
            ),
            "demo-12300": detail(
                "demo-12300",
                goals=[
                    GoalEntry(minute=31, scorer="Paulo Dybala", side="home"),
                    GoalEntry(minute=62, scorer="Rafael Leão", side="away"),
                    GoalEntry(minute=78, scorer="Christian Pulisic", side="away"),
                ],
                away_lineup=Lineup(team_name="AC Milan", starters=_xi("Christian Pulisic", "Rafael Leão")),
            ),
            "demo-12302": detail(
                "demo-12302",
                substitutions=[
                    SubstitutionEntry(minute=70, player_in="Robin Hack", player_out="Giovanni Reyna", side="away"),
                ],
                away_lineup=Lineup(team_name="Borussia Monchengladbach", starters=_xi("Giovanni Reyna")),
            ),
            "demo-12301": detail(
                "demo-12301",
                home_lineup=Lineup(team_name="Fulham", starters=_xi("Antonee Robinson")),
            ),
        }

    async def _fetch_fixtures(
        self, date_from: date, date_to: date, competitions: list[str], *, bypass_cache: bool = False
    ) -> Optional[list[Fixture]]:
        return [f for f in self._fixtures() if date_from <= f.kickoff.date() <= date_to]

    async def _fetch_match_detail(self, fixture_id: str, *, live: bool = False) -> Optional[MatchDetail]:
        return self._details().get(fixture_id)
