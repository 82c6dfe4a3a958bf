"""
Pydantic v2 domain models shared across the tracker, feeds and scheduler.

Two families live here: feed-native shapes that adapters return (Fixture,
MatchDetail, TeamOverview, PlayerMatch, ManualMatch) and the canonical
per-player records the reconciliation engine derives from them.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import (
    CardType,
    DataSource,
    EventType,
    FeedName,
    MatchStatus,
    SquadRole,
    TriState,
)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Roster ──────────────────────────────────────────────────────────────
class Player(DomainModel):
    id: int
    name: str
    team: str
    league: str
    position: Optional[str] = None
    fotmob_id: Optional[int] = Field(default=None, alias="fotmobId")


# ── Feed-native shapes ──────────────────────────────────────────────────
class Fixture(DomainModel):
    """A scheduled, live or completed match as one feed reports it."""
    fixture_id: str
    feed: FeedName
    kickoff: datetime
    home_team: str
    away_team: str
    home_team_id: Optional[int] = None
    away_team_id: Optional[int] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    competition: str = ""
    status: MatchStatus = MatchStatus.UPCOMING
    minute: Optional[int] = None
    venue: Optional[str] = None


class GoalEntry(DomainModel):
    minute: Optional[int] = None
    scorer: Optional[str] = None
    assist: Optional[str] = None
    side: Optional[str] = None  # "home" | "away"
    own_goal: bool = False
    penalty: bool = False


class SubstitutionEntry(DomainModel):
    minute: Optional[int] = None
    player_in: Optional[str] = None
    player_out: Optional[str] = None
    side: Optional[str] = None


class BookingEntry(DomainModel):
    minute: Optional[int] = None
    player_name: Optional[str] = None
    card: CardType = CardType.YELLOW
    side: Optional[str] = None


class LineupPlayer(DomainModel):
    name: str
    player_id: Optional[int] = None
    rating: Optional[float] = None
    goals: int = 0
    own_goals: int = 0
    assists: int = 0
    yellow_cards: int = 0
    red_cards: int = 0


class Lineup(DomainModel):
    team_name: str = ""
    starters: list[LineupPlayer] = Field(default_factory=list)
    bench: list[LineupPlayer] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.starters and not self.bench


class LineupSnapshot(Lineup):
    """Team-level 'last lineup' published alongside a team overview."""
    fixture_id: Optional[str] = None


class MatchDetail(DomainModel):
    fixture_id: str
    feed: FeedName
    home_team: str = ""
    away_team: str = ""
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    status: MatchStatus = MatchStatus.UPCOMING
    minute: Optional[int] = None
    goals: list[GoalEntry] = Field(default_factory=list)
    substitutions: list[SubstitutionEntry] = Field(default_factory=list)
    bookings: list[BookingEntry] = Field(default_factory=list)
    home_lineup: Optional[Lineup] = None
    away_lineup: Optional[Lineup] = None

    def lineup_for(self, side: Optional[str]) -> Optional[Lineup]:
        if side == "home":
            return self.home_lineup
        if side == "away":
            return self.away_lineup
        return None

    @property
    def has_lineups(self) -> bool:
        return any(l is not None and not l.is_empty for l in (self.home_lineup, self.away_lineup))


class TeamOverview(DomainModel):
    team_id: Optional[int] = None
    team_name: str = ""
    next_match: Optional[Fixture] = None
    last_match: Optional[Fixture] = None
    last_lineup: Optional[LineupSnapshot] = None


class PlayerMatch(DomainModel):
    """One entry in a player's own recent-match history."""
    fixture_id: str
    kickoff: datetime
    team_name: str
    opponent_name: str
    is_home: bool
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    competition: str = ""
    minutes_played: Optional[int] = None
    on_bench: Optional[bool] = None
    rating: Optional[float] = None
    goals: int = 0
    assists: int = 0
    yellow_cards: int = 0
    red_cards: int = 0

    @property
    def home_team(self) -> str:
        return self.team_name if self.is_home else self.opponent_name

    @property
    def away_team(self) -> str:
        return self.opponent_name if self.is_home else self.team_name


class CanonicalEvent(DomainModel):
    type: EventType
    minute: Optional[int] = None

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.minute if self.minute is not None else 10_000, self.type.value)


class ManualMatch(DomainModel):
    """Operator-entered correction for one of a player's matches."""
    match_date: date = Field(alias="date")
    opponent: str
    is_home: bool = Field(default=True, alias="isHome")
    home_score: Optional[int] = Field(default=None, alias="homeScore")
    away_score: Optional[int] = Field(default=None, alias="awayScore")
    result: Optional[str] = None
    competition: str = ""
    minutes_played: Optional[int] = Field(default=None, alias="minutesPlayed")
    started: Optional[bool] = None
    events: list[CanonicalEvent] = Field(default_factory=list)


# ── Canonical records ───────────────────────────────────────────────────
class ParticipationFact(DomainModel):
    participated: TriState = TriState.UNKNOWN
    started: TriState = TriState.UNKNOWN
    minutes_played: Optional[int] = None
    rating: Optional[float] = None
    events: list[CanonicalEvent] = Field(default_factory=list)
    squad_role: SquadRole = SquadRole.UNKNOWN
    source: DataSource = DataSource.UNKNOWN

    @classmethod
    def unknown(cls, source: DataSource = DataSource.UNKNOWN) -> "ParticipationFact":
        return cls(source=source)

    @property
    def is_unknown(self) -> bool:
        return self.participated == TriState.UNKNOWN and self.minutes_played is None


class MatchRecord(DomainModel):
    fixture_id: str
    kickoff: datetime
    home_team: str
    away_team: str
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    competition: str = ""
    is_home: bool
    status: MatchStatus
    source: DataSource


class TodayMatch(MatchRecord):
    minute: Optional[int] = None
    venue: Optional[str] = None
    participation: ParticipationFact = Field(default_factory=ParticipationFact)


class LastGame(MatchRecord):
    participation: ParticipationFact = Field(default_factory=ParticipationFact)


class MissedGame(MatchRecord):
    reason: SquadRole = SquadRole.UNKNOWN


class NextGame(MatchRecord):
    pass


class PlayerRecord(DomainModel):
    """Exposed per-player view."""
    player_id: int
    status: str
    today: Optional[TodayMatch] = None
    last_game: Optional[LastGame] = None
    missed_game: Optional[MissedGame] = None
    next_game: Optional[NextGame] = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

