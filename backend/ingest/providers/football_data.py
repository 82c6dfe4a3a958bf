"""
Football-Data.org (football-data.org) feed adapter.
Primary fixture feed: fixtures by date range and competition, match detail
with goals, bookings, substitutions and (unfolded) lineups.
Uses v4 API with X-Auth-Token. Free tier: 10 requests/min.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.models.domain import (
    BookingEntry,
    Fixture,
    GoalEntry,
    Lineup,
    LineupPlayer,
    MatchDetail,
    SubstitutionEntry,
)
from shared.models.enums import CardType, FeedName, MatchStatus
from shared.utils.cache_store import ResponseCache
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.rate_limiter import FeedRateLimiter

from ingest.providers.base import MatchFeed

logger = get_logger(__name__)

# Roster league name -> competition code.
LEAGUE_CODES: dict[str, str] = {
    "Premier League": "PL",
    "Championship": "ELC",
    "Bundesliga": "BL1",
    "Serie A": "SA",
    "La Liga": "PD",
    "Ligue 1": "FL1",
    "Eredivisie": "DED",
    "Primeira Liga": "PPL",
}

# Cup competitions a roster club may also play in on any given day.
EUROPEAN_CODES: tuple[str, ...] = ("CL", "EL")


def competition_codes(leagues: list[str]) -> list[str]:
    codes = {LEAGUE_CODES[l] for l in leagues if l in LEAGUE_CODES}
    if not codes:
        return []
    return sorted(codes) + [c for c in EUROPEAN_CODES if c not in codes]


def _map_status(status: str) -> MatchStatus:
    """Map football-data.org status to MatchStatus."""
    s = (status or "").strip().upper()
    if s in ("SCHEDULED", "TIMED"):
        return MatchStatus.UPCOMING
    if s in ("LIVE", "IN_PLAY", "PAUSED"):
        return MatchStatus.LIVE
    if s in ("FINISHED", "AWARDED"):
        return MatchStatus.FINISHED
    if s == "POSTPONED":
        return MatchStatus.POSTPONED
    if s == "SUSPENDED":
        return MatchStatus.SUSPENDED
    if s == "CANCELLED":
        return MatchStatus.CANCELLED
    return MatchStatus.UPCOMING


def _parse_time(utc_str: Optional[str]) -> datetime:
    if not utc_str:
        raise ValueError("fixture without utcDate")
    parsed = datetime.fromisoformat(utc_str.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _name(obj: Optional[dict[str, Any]]) -> Optional[str]:
    return (obj or {}).get("name")


def _side(team: Optional[dict[str, Any]], home_id: Any, away_id: Any) -> Optional[str]:
    team_id = (team or {}).get("id")
    if team_id is None:
        return None
    if team_id == home_id:
        return "home"
    if team_id == away_id:
        return "away"
    return None


def _card(raw: str) -> CardType:
    card = (raw or "").upper()
    if card == "YELLOW_RED":
        return CardType.SECOND_YELLOW
    if "RED" in card:
        return CardType.RED
    return CardType.YELLOW


def parse_fixture(m: dict[str, Any]) -> Fixture:
    """Build a Fixture from football-data match JSON."""
    home = m.get("homeTeam") or {}
    away = m.get("awayTeam") or {}
    ft = (m.get("score") or {}).get("fullTime") or {}
    return Fixture(
        fixture_id=str(m["id"]),
        feed=FeedName.FOOTBALL_DATA,
        kickoff=_parse_time(m.get("utcDate")),
        home_team=home.get("name") or home.get("shortName") or "",
        away_team=away.get("name") or away.get("shortName") or "",
        home_team_id=home.get("id"),
        away_team_id=away.get("id"),
        home_score=ft.get("home"),
        away_score=ft.get("away"),
        competition=(m.get("competition") or {}).get("name", ""),
        status=_map_status(m.get("status", "")),
        minute=m.get("minute"),
        venue=m.get("venue") or None,
    )


def _lineup(team: dict[str, Any]) -> Optional[Lineup]:
    starters = [LineupPlayer(name=p["name"], player_id=p.get("id")) for p in team.get("lineup") or [] if p.get("name")]
    bench = [LineupPlayer(name=p["name"], player_id=p.get("id")) for p in team.get("bench") or [] if p.get("name")]
    if not starters and not bench:
        return None
    return Lineup(team_name=team.get("name", ""), starters=starters, bench=bench)


def parse_match_detail(data: dict[str, Any]) -> MatchDetail:
    """Build MatchDetail from the /matches/{id} document."""
    home = data.get("homeTeam") or {}
    away = data.get("awayTeam") or {}
    home_id, away_id = home.get("id"), away.get("id")
    ft = (data.get("score") or {}).get("fullTime") or {}

    goals = [
        GoalEntry(
            minute=g.get("minute"),
            scorer=_name(g.get("scorer")),
            assist=_name(g.get("assist")),
            side=_side(g.get("team"), home_id, away_id),
            own_goal=(g.get("type") or "").upper() == "OWN",
            penalty=(g.get("type") or "").upper() == "PENALTY",
        )
        for g in data.get("goals") or []
    ]
    substitutions = [
        SubstitutionEntry(
            minute=s.get("minute"),
            player_in=_name(s.get("playerIn")),
            player_out=_name(s.get("playerOut")),
            side=_side(s.get("team"), home_id, away_id),
        )
        for s in data.get("substitutions") or []
    ]
    bookings = [
        BookingEntry(
            minute=b.get("minute"),
            player_name=_name(b.get("player")),
            card=_card(b.get("card", "")),
            side=_side(b.get("team"), home_id, away_id),
        )
        for b in data.get("bookings") or []
    ]

    return MatchDetail(
        fixture_id=str(data["id"]),
        feed=FeedName.FOOTBALL_DATA,
        home_team=home.get("name", ""),
        away_team=away.get("name", ""),
        home_score=ft.get("home"),
        away_score=ft.get("away"),
        status=_map_status(data.get("status", "")),
        minute=data.get("minute"),
        goals=goals,
        substitutions=substitutions,
        bookings=bookings,
        home_lineup=_lineup(home),
        away_lineup=_lineup(away),
    )


class FootballDataFeed(MatchFeed):
    """Football-Data.org v4 API."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: ProviderHTTPClient | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        if http_client is None:
            headers: dict[str, str] = {"X-Unfold-Lineups": "true"}
            if self._settings.football_data_api_key:
                headers["X-Auth-Token"] = self._settings.football_data_api_key
            http_client = ProviderHTTPClient(
                provider_name=FeedName.FOOTBALL_DATA.value,
                base_url=self._settings.football_data_base_url,
                headers=headers,
                rate_limiter=FeedRateLimiter(
                    FeedName.FOOTBALL_DATA.value, rpm=self._settings.football_data_rpm_limit
                ),
            )
        super().__init__(name=FeedName.FOOTBALL_DATA, http_client=http_client, breaker=breaker)
        self._cache = ResponseCache(FeedName.FOOTBALL_DATA.value)

    async def _fetch_fixtures(
        self, date_from: date, date_to: date, competitions: list[str], *, bypass_cache: bool = False
    ) -> Optional[list[Fixture]]:
        """GET /matches filtered by competition codes and date range."""
        if not competitions:
            return []
        key = ("fixtures", date_from.isoformat(), date_to.isoformat(), tuple(sorted(competitions)))
        if not bypass_cache:
            cached = self._cache.get(key, self._settings.primary_cache_ttl_s)
            if cached is not None:
                return cached

        data = await self._http.get_json(
            "/matches",
            params={
                "competitions": ",".join(competitions),
                "dateFrom": date_from.isoformat(),
                "dateTo": date_to.isoformat(),
            },
            operation="fixtures",
        )
        fixtures: list[Fixture] = []
        for m in data.get("matches", []):
            try:
                fixtures.append(parse_fixture(m))
            except (KeyError, ValueError) as exc:
                logger.warning("football_data_parse_fixture_error", error=str(exc), match_id=m.get("id"))
        fixtures.sort(key=lambda f: f.kickoff)
        self._cache.put(key, fixtures)
        return fixtures

    async def _fetch_match_detail(self, fixture_id: str, *, live: bool = False) -> Optional[MatchDetail]:
        """GET /matches/{id}. Live detail is never read from the cache."""
        key = ("detail", fixture_id)
        if not live:
            cached = self._cache.get(key, self._settings.primary_cache_ttl_s)
            if cached is not None:
                return cached
        data = await self._http.get_json(f"/matches/{fixture_id}", operation="match_detail")
        detail = parse_match_detail(data)
        self._cache.put(key, detail)
        return detail
