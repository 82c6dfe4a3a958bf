"""
FotMob (fotmob.com) feed adapter.
Secondary feed: team overview (next/last match + last lineup snapshot), match
detail with timed events and rated lineups, and a player's own recent history.

The JSON API is sometimes fronted by an anti-bot challenge. When a match or
player query is blocked, the server-rendered page is fetched instead and its
embedded __NEXT_DATA__ document is parsed into the same shape.
"""
from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.models.domain import (
    BookingEntry,
    Fixture,
    GoalEntry,
    Lineup,
    LineupPlayer,
    LineupSnapshot,
    MatchDetail,
    PlayerMatch,
    SubstitutionEntry,
    TeamOverview,
)
from shared.models.enums import CardType, FeedName, MatchStatus
from shared.utils.cache_store import ResponseCache
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.http_client import FeedBlockedError, FeedUnavailableError, ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.rate_limiter import FeedRateLimiter

from ingest.normalization.identity import normalize_team, team_matches
from ingest.providers.base import MatchFeed

logger = get_logger(__name__)

# Display name -> FotMob team id. Several spellings per club on purpose.
FOTMOB_TEAM_IDS: dict[str, int] = {
    # Serie A
    "AC Milan": 8564,
    "Milan": 8564,
    "Juventus": 9885,
    "Atalanta": 8524,
    "Venezia": 7881,
    "Roma": 8686,
    "Napoli": 9875,
    "Inter": 8636,
    "Inter Milan": 8636,
    "Lazio": 8543,
    "Fiorentina": 8535,
    "Bologna": 9857,
    "Torino": 9804,
    "Udinese": 8600,
    "Genoa": 10233,
    "Cagliari": 8529,
    "Lecce": 9888,
    "Parma": 10167,
    # Premier League
    "Fulham": 9879,
    "Bournemouth": 8678,
    "AFC Bournemouth": 8678,
    "Crystal Palace": 9826,
    "Chelsea": 8455,
    "Arsenal": 9825,
    "Liverpool": 8650,
    "Manchester City": 8456,
    "Manchester United": 10260,
    "Tottenham": 8586,
    "Tottenham Hotspur": 8586,
    "Newcastle United": 10261,
    "Aston Villa": 10252,
    "Brighton": 9817,
    "West Ham": 8654,
    "Everton": 8668,
    "Nottingham Forest": 10203,
    "Brentford": 9937,
    "Wolves": 8602,
    "Wolverhampton": 8602,
    "Leicester City": 8197,
    # Bundesliga
    "Borussia Monchengladbach": 9788,
    "Borussia Mönchengladbach": 9788,
    "Wolfsburg": 8721,
    "Bayer Leverkusen": 8178,
    "Union Berlin": 8149,
    "Hoffenheim": 8226,
    "Augsburg": 8406,
    "FC Koln": 8722,
    "1. FC Köln": 8722,
    "Bayern Munich": 9823,
    "Bayern München": 9823,
    "Borussia Dortmund": 9789,
    "Eintracht Frankfurt": 9810,
    "RB Leipzig": 178475,
    "Freiburg": 8358,
    "Mainz": 8369,
    # Ligue 1
    "AS Monaco": 9829,
    "Monaco": 9829,
    "Toulouse": 9941,
    "Lyon": 9748,
    "Paris Saint-Germain": 9847,
    "PSG": 9847,
    "Marseille": 8592,
    "Lille": 8639,
    "Nice": 9830,
    "Lens": 8588,
    "Strasbourg": 9848,
    # La Liga
    "Celta Vigo": 9910,
    "Real Betis": 8603,
    "Real Madrid": 8633,
    "Barcelona": 8634,
    "Atletico Madrid": 9906,
    "Villarreal": 10205,
    "Real Sociedad": 8560,
    "Athletic Bilbao": 8315,
    "Sevilla": 8302,
    "Valencia": 10267,
    "Getafe": 9866,
    "Osasuna": 8371,
    # Eredivisie
    "PSV Eindhoven": 8640,
    "PSV": 8640,
    "FC Utrecht": 9908,
    "Feyenoord": 10235,
    "Ajax": 8718,
    "AZ Alkmaar": 8703,
    "FC Twente": 8611,
    "FC Groningen": 8674,
    "Vitesse": 10239,
    # Championship
    "Leeds United": 8463,
    "Norwich City": 9850,
    "Coventry City": 8669,
    "Cardiff City": 8344,
    "Stoke City": 10194,
    "Preston North End": 8411,
    "Sheffield United": 8657,
    "West Bromwich Albion": 8659,
    "Middlesbrough": 8549,
    "Barnsley": 8283,
    "Derby County": 10170,
    "Derby": 10170,
    # Scottish Premiership
    "Celtic": 9925,
    "Rangers": 8548,
    # Belgian Pro League
    "Club Brugge": 8342,
    "Royal Antwerp": 8291,
    "Anderlecht": 8316,
    "Westerlo": 10001,
    "Standard Liege": 8364,
    "Cercle Brugge": 8298,
    "St. Truiden": 8378,
    # MLS
    "Atlanta United": 773958,
    "Austin FC": 1218886,
    "Charlotte FC": 1323940,
    "Colorado Rapids": 8314,
    "FC Cincinnati": 722265,
    "Houston Dynamo": 8259,
    "New England Revolution": 6580,
    "Philadelphia Union": 191716,
    "San Diego FC": 1701119,
    "Real Salt Lake": 6606,
    "Columbus Crew": 6001,
    "New York Red Bulls": 6514,
    "San Jose Earthquakes": 6603,
    # Liga MX
    "Club America": 6896,
    "Monterrey": 6904,
    # 2. Bundesliga
    "SV Darmstadt": 8262,
    "Darmstadt": 8262,
    # MLS NEXT Pro
    "Crown Legacy FC": 1451868,
    "Chicago Fire FC II": 1348118,
    # Youth
    "Borussia Dortmund U19": 394130,
    "FC København U19": 2049,
    # Croatia
    "Hajduk Split": 10154,
}

_NEXT_DATA = re.compile(r'<script id="__NEXT_DATA__"[^>]*>(.*?)</script>', re.S)
_MINUTE = re.compile(r"(\d+)")

_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "application/json, text/html;q=0.9",
    "Accept-Language": "en-GB,en;q=0.8",
}


# ── Parsing helpers ─────────────────────────────────────────────────────

def _player_name(raw: Any) -> Optional[str]:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        return raw.get("fullName") or raw.get("name")
    return None


def _float(raw: Any) -> Optional[float]:
    if isinstance(raw, dict):
        raw = raw.get("num") or raw.get("rating")
    if raw in (None, "", "-"):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _parse_utc(raw: Optional[str]) -> datetime:
    if not raw:
        raise ValueError("match without utcTime")
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_live_minute(status: dict[str, Any]) -> Optional[int]:
    live_time = status.get("liveTime") or {}
    text = live_time.get("short") or live_time.get("long")
    if not text:
        return None
    if text.strip().upper() == "HT":
        return 45
    m = _MINUTE.search(text)
    return int(m.group(1)) if m else None


def map_status(status: dict[str, Any]) -> MatchStatus:
    """Map a FotMob status object onto MatchStatus."""
    reason = status.get("reason") or {}
    reason_text = f"{reason.get('short', '')} {reason.get('long', '')}".lower()
    if status.get("cancelled"):
        if "pp" in reason_text.split() or "postponed" in reason_text:
            return MatchStatus.POSTPONED
        return MatchStatus.CANCELLED
    if status.get("abandoned") or "abandoned" in reason_text or "ab" in reason_text.split():
        return MatchStatus.SUSPENDED
    if status.get("finished"):
        return MatchStatus.FINISHED
    if status.get("started") or status.get("ongoing"):
        return MatchStatus.LIVE
    return MatchStatus.UPCOMING


def parse_overview_match(raw: dict[str, Any]) -> Fixture:
    home = raw.get("home") or {}
    away = raw.get("away") or {}
    status = raw.get("status") or {}
    return Fixture(
        fixture_id=str(raw["id"]),
        feed=FeedName.FOTMOB,
        kickoff=_parse_utc(status.get("utcTime") or raw.get("utcTime")),
        home_team=home.get("name", ""),
        away_team=away.get("name", ""),
        home_team_id=home.get("id"),
        away_team_id=away.get("id"),
        home_score=home.get("score"),
        away_score=away.get("score"),
        competition=(raw.get("tournament") or {}).get("name", ""),
        status=map_status(status),
        minute=parse_live_minute(status),
    )


def _lineup_player(raw: dict[str, Any]) -> Optional[LineupPlayer]:
    name = _player_name(raw.get("name"))
    if not name:
        return None
    perf = raw.get("performance") or {}
    counts = {"goal": 0, "ownGoal": 0, "assist": 0, "yellowCard": 0, "redCard": 0}
    for ev in perf.get("events") or []:
        kind = ev.get("type")
        if kind == "secondYellow":
            kind = "redCard"
        if kind in counts:
            counts[kind] += 1
    return LineupPlayer(
        name=name,
        player_id=raw.get("id"),
        rating=_float(perf.get("rating")),
        goals=counts["goal"],
        own_goals=counts["ownGoal"],
        assists=counts["assist"],
        yellow_cards=counts["yellowCard"],
        red_cards=counts["redCard"],
    )


def _players(raw: list[dict[str, Any]] | None) -> list[LineupPlayer]:
    return [p for p in (_lineup_player(r) for r in raw or []) if p is not None]


def parse_team_overview(data: dict[str, Any]) -> TeamOverview:
    details = data.get("details") or {}
    overview = data.get("overview") or {}

    next_match = last_match = None
    if overview.get("nextMatch"):
        next_match = parse_overview_match(overview["nextMatch"])
    if overview.get("lastMatch"):
        last_match = parse_overview_match(overview["lastMatch"])

    snapshot = None
    raw_lineup = overview.get("lastLineupStats")
    if raw_lineup:
        snapshot = LineupSnapshot(
            team_name=details.get("name", ""),
            starters=_players(raw_lineup.get("starters")),
            bench=_players(raw_lineup.get("subs")),
            fixture_id=str(raw_lineup["matchId"]) if raw_lineup.get("matchId") else None,
        )

    return TeamOverview(
        team_id=details.get("id"),
        team_name=details.get("name", ""),
        next_match=next_match,
        last_match=last_match,
        last_lineup=snapshot,
    )


def parse_match_detail(fixture_id: str, data: dict[str, Any]) -> MatchDetail:
    """Build MatchDetail from a matchDetails document (API or __NEXT_DATA__)."""
    header = data.get("header") or {}
    general = data.get("general") or {}
    content = data.get("content") or {}
    teams = header.get("teams") or []
    home = teams[0] if len(teams) > 0 else (general.get("homeTeam") or {})
    away = teams[1] if len(teams) > 1 else (general.get("awayTeam") or {})
    status = header.get("status") or general.get("matchStatus") or {}

    goals: list[GoalEntry] = []
    substitutions: list[SubstitutionEntry] = []
    bookings: list[BookingEntry] = []
    events = ((content.get("matchFacts") or {}).get("events") or {}).get("events") or []
    for ev in events:
        kind = ev.get("type")
        side = None
        if ev.get("isHome") is not None:
            side = "home" if ev.get("isHome") else "away"
        minute = ev.get("time")
        if kind == "Goal":
            goals.append(
                GoalEntry(
                    minute=minute,
                    scorer=_player_name((ev.get("player") or {}).get("name")) or ev.get("nameStr"),
                    assist=ev.get("assistInput") or ev.get("assistStr"),
                    side=side,
                    own_goal=bool(ev.get("ownGoal")),
                    penalty=(ev.get("goalDescription") or "").lower() == "penalty",
                )
            )
        elif kind == "Substitution":
            swap = ev.get("swap") or []
            substitutions.append(
                SubstitutionEntry(
                    minute=minute,
                    player_in=_player_name(swap[0].get("name")) if len(swap) > 0 else None,
                    player_out=_player_name(swap[1].get("name")) if len(swap) > 1 else None,
                    side=side,
                )
            )
        elif kind in ("Card", "Yellow", "Red"):
            card_raw = (ev.get("card") or kind or "").lower()
            if card_raw in ("yellowred", "secondyellow"):
                card = CardType.SECOND_YELLOW
            elif "red" in card_raw:
                card = CardType.RED
            else:
                card = CardType.YELLOW
            bookings.append(
                BookingEntry(
                    minute=minute,
                    player_name=_player_name((ev.get("player") or {}).get("name")) or ev.get("nameStr"),
                    card=card,
                    side=side,
                )
            )

    lineup = content.get("lineup") or {}

    def to_lineup(raw: Optional[dict[str, Any]]) -> Optional[Lineup]:
        if not raw:
            return None
        result = Lineup(
            team_name=raw.get("name", ""),
            starters=_players(raw.get("starters")),
            bench=_players(raw.get("subs")),
        )
        return None if result.is_empty else result

    return MatchDetail(
        fixture_id=str(general.get("matchId") or fixture_id),
        feed=FeedName.FOTMOB,
        home_team=home.get("name", ""),
        away_team=away.get("name", ""),
        home_score=home.get("score"),
        away_score=away.get("score"),
        status=map_status(status),
        minute=parse_live_minute(status),
        goals=goals,
        substitutions=substitutions,
        bookings=bookings,
        home_lineup=to_lineup(lineup.get("homeTeam")),
        away_lineup=to_lineup(lineup.get("awayTeam")),
    )


def parse_player_history(data: dict[str, Any], limit: int) -> list[PlayerMatch]:
    entries: list[PlayerMatch] = []
    for m in (data.get("recentMatches") or [])[:limit]:
        try:
            entries.append(
                PlayerMatch(
                    fixture_id=str(m["id"]),
                    kickoff=_parse_utc((m.get("matchDate") or {}).get("utcTime")),
                    team_name=m.get("teamName", ""),
                    opponent_name=m.get("opponentTeamName", ""),
                    is_home=bool(m.get("isHomeTeam")),
                    home_score=m.get("homeScore"),
                    away_score=m.get("awayScore"),
                    competition=m.get("leagueName", ""),
                    minutes_played=m.get("minutesPlayed"),
                    on_bench=m.get("onBench"),
                    rating=_float((m.get("ratingProps") or {}).get("rating")),
                    goals=m.get("goals") or 0,
                    assists=m.get("assists") or 0,
                    yellow_cards=m.get("yellowCards") or 0,
                    red_cards=m.get("redCards") or 0,
                )
            )
        except (KeyError, ValueError) as exc:
            logger.warning("fotmob_parse_history_entry_error", error=str(exc), match_id=m.get("id"))
    entries.sort(key=lambda e: e.kickoff, reverse=True)
    return entries


def extract_next_data(html: str) -> dict[str, Any]:
    """pageProps from a server-rendered page."""
    m = _NEXT_DATA.search(html)
    if not m:
        raise ValueError("no __NEXT_DATA__ script in page")
    page_props = (json.loads(m.group(1)).get("props") or {}).get("pageProps")
    if not page_props:
        raise ValueError("no pageProps in __NEXT_DATA__")
    return page_props


class FotMobFeed(MatchFeed):
    """FotMob public web API with page-scrape fallback."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: ProviderHTTPClient | None = None,
        breaker: CircuitBreaker | None = None,
        team_ids: dict[str, int] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        if http_client is None:
            http_client = ProviderHTTPClient(
                provider_name=FeedName.FOTMOB.value,
                base_url=self._settings.fotmob_base_url,
                headers=_BROWSER_HEADERS,
                rate_limiter=FeedRateLimiter(FeedName.FOTMOB.value, rpm=self._settings.fotmob_rpm_limit),
            )
        super().__init__(name=FeedName.FOTMOB, http_client=http_client, breaker=breaker)
        self._cache = ResponseCache(FeedName.FOTMOB.value)
        self._team_ids = team_ids if team_ids is not None else FOTMOB_TEAM_IDS
        self._normalized_ids = {normalize_team(k): v for k, v in self._team_ids.items()}

    def resolve_team_id(self, team_name: str) -> Optional[int]:
        if team_name in self._team_ids:
            return self._team_ids[team_name]
        normalized = normalize_team(team_name)
        if normalized in self._normalized_ids:
            return self._normalized_ids[normalized]
        candidates = {v for k, v in self._team_ids.items() if team_matches(k, team_name)}
        if len(candidates) == 1:
            return candidates.pop()
        if len(candidates) > 1:
            logger.debug("fotmob_team_id_ambiguous", team=team_name, candidates=sorted(candidates))
        return None

    def _ttl(self, live: bool) -> float:
        if live:
            return self._settings.secondary_live_cache_ttl_s
        return self._settings.secondary_cache_ttl_s

    async def _cached_json(self, path: str, params: dict[str, Any], operation: str, live: bool) -> Any:
        key = (path, tuple(sorted(params.items())))
        cached = self._cache.get(key, self._ttl(live))
        if cached is not None:
            return cached
        data = await self._http.get_json(path, params=params, operation=operation)
        self._cache.put(key, data)
        return data

    async def _page_props(self, path: str, operation: str, live: bool) -> dict[str, Any]:
        key = ("page", path)
        cached = self._cache.get(key, self._ttl(live))
        if cached is not None:
            return cached
        html = await self._http.get_text(path, operation=operation)
        props = extract_next_data(html)
        self._cache.put(key, props)
        return props

    async def _fetch_team_overview(self, team_id: int, *, live: bool = False) -> Optional[TeamOverview]:
        data = await self._cached_json("/api/teams", {"id": team_id}, "team_overview", live)
        return parse_team_overview(data)

    async def _fetch_match_detail(self, fixture_id: str, *, live: bool = False) -> Optional[MatchDetail]:
        try:
            data = await self._cached_json("/api/matchDetails", {"matchId": fixture_id}, "match_detail", live)
        except FeedBlockedError:
            logger.info("fotmob_match_detail_blocked_scraping_page", fixture_id=fixture_id)
            props = await self._page_props(f"/match/{fixture_id}", "match_page", live=True)
            data = {
                "general": props.get("general") or {},
                "header": props.get("header") or {},
                "content": props.get("content") or {},
            }
        if not data.get("header") and not data.get("general"):
            raise FeedUnavailableError(self.name.value, f"empty match document for {fixture_id}")
        return parse_match_detail(fixture_id, data)

    async def _fetch_player_recent_matches(self, player_feed_id: int) -> Optional[list[PlayerMatch]]:
        try:
            data = await self._cached_json("/api/playerData", {"id": player_feed_id}, "player_history", False)
        except FeedBlockedError:
            logger.info("fotmob_player_data_blocked_scraping_page", player_feed_id=player_feed_id)
            props = await self._page_props(f"/players/{player_feed_id}", "player_page", live=False)
            data = props.get("data") or props
        return parse_player_history(data, self._settings.player_history_limit)
