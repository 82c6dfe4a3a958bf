"""
Venue-local calendar.

"Today" is the calendar day at the venue, taken from the league's timezone,
so an evening kickoff in Europe does not vanish at UTC midnight.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from shared.config import Settings, get_settings
from shared.models.domain import utcnow


class VenueClock:
    def __init__(self, settings: Settings | None = None, now: Callable[[], datetime] = utcnow) -> None:
        self._settings = settings or get_settings()
        self._now = now
        self._zones: dict[str, ZoneInfo] = {}

    def now(self) -> datetime:
        value = self._now()
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def zone(self, league: str) -> ZoneInfo:
        name = self._settings.league_timezones.get(league, self._settings.default_timezone)
        if name not in self._zones:
            self._zones[name] = ZoneInfo(name)
        return self._zones[name]

    def today(self, league: str) -> date:
        return self.now().astimezone(self.zone(league)).date()

    def local_date(self, kickoff: datetime, league: str) -> date:
        if kickoff.tzinfo is None:
            kickoff = kickoff.replace(tzinfo=timezone.utc)
        return kickoff.astimezone(self.zone(league)).date()

    def is_today(self, kickoff: datetime, league: str) -> bool:
        return self.local_date(kickoff, league) == self.today(league)
