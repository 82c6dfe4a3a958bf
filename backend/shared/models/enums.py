"""Domain enumerations for the match tracker."""
from __future__ import annotations

from enum import Enum


class MatchStatus(str, Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    FINISHED = "finished"
    SUSPENDED = "suspended"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"

    @property
    def is_live(self) -> bool:
        return self == MatchStatus.LIVE

    @property
    def has_detail(self) -> bool:
        """Live or finished matches carry events worth normalizing."""
        return self in (MatchStatus.LIVE, MatchStatus.FINISHED)


class EventType(str, Enum):
    GOAL = "goal"
    ASSIST = "assist"
    SUB_IN = "sub_in"
    SUB_OUT = "sub_out"
    YELLOW = "yellow"
    RED = "red"


class TriState(str, Enum):
    """Three-valued fact. UNKNOWN never collapses to NO for lack of evidence."""
    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"

    @classmethod
    def from_bool(cls, value: bool | None) -> "TriState":
        if value is None:
            return cls.UNKNOWN
        return cls.YES if value else cls.NO


class SquadRole(str, Enum):
    STARTER = "starter"
    BENCH = "bench"
    NOT_IN_SQUAD = "not_in_squad"
    UNKNOWN = "unknown"


class CardType(str, Enum):
    YELLOW = "yellow"
    SECOND_YELLOW = "second_yellow"
    RED = "red"


class FeedName(str, Enum):
    FOOTBALL_DATA = "football_data"
    FOTMOB = "fotmob"
    MANUAL = "manual"
    DEMO = "demo"


class DataSource(str, Enum):
    """Fallback tier that produced a record, highest precedence first."""
    FOTMOB_PLAYER_API = "fotmob_player_api"
    FOTMOB_MATCH_DETAIL = "fotmob_match_detail"
    FOTMOB_TEAM_OVERVIEW = "fotmob_team_overview"
    FOTMOB_TEAM_LINEUP = "fotmob_team_lineup"
    FOOTBALL_DATA = "football_data"
    MANUAL = "manual"
    DEMO = "demo"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        """Lower rank wins a merge."""
        return _SOURCE_RANK[self]


_SOURCE_RANK = {
    DataSource.FOTMOB_PLAYER_API: 0,
    DataSource.FOTMOB_MATCH_DETAIL: 1,
    DataSource.FOTMOB_TEAM_OVERVIEW: 2,
    DataSource.FOTMOB_TEAM_LINEUP: 3,
    DataSource.FOOTBALL_DATA: 4,
    DataSource.MANUAL: 5,
    DataSource.DEMO: 6,
    DataSource.UNKNOWN: 7,
}


class Cadence(str, Enum):
    LIVE = "live"
    IDLE = "idle"
