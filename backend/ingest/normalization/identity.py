"""
Identity resolution across feeds.

Feeds spell the same club and the same player differently ("1. FC Köln" /
"FC Koln", "C. Sullivan" / "Cavan Sullivan"). Nothing here talks to a feed;
these are pure string rules shared by every reconciliation stage.
"""
from __future__ import annotations

import re
import unicodedata
from collections import Counter
from typing import Iterable, Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)

CLUB_SUFFIX_TOKENS = frozenset(
    {"fc", "cf", "ac", "as", "afc", "sc", "sv", "bv", "ssc", "cd", "fk", "sk", "ud"}
)

# Words that appear in many club names and cause false positives on their own
# ("West Ham" vs "West Brom", "Manchester United" vs "Manchester City").
GENERIC_TEAM_WORDS = frozenset(
    {
        "united", "city", "town", "athletic", "sporting", "club", "real",
        "rovers", "wanderers", "albion", "hotspur", "villa", "forest",
        "county", "palace", "ham", "dynamo", "olympic", "olympique",
        "west", "east", "north", "south",
    }
)

_NUMERIC_PREFIX = re.compile(r"\b\d+\.\s*")
_SUFFIX_PATTERN = re.compile(r"\b(" + "|".join(sorted(CLUB_SUFFIX_TOKENS)) + r")\b")
_NON_LETTERS = re.compile(r"[^a-z\s]")
_WHITESPACE = re.compile(r"\s+")


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


# ── Team names ──────────────────────────────────────────────────────────

def team_words(name: str) -> list[str]:
    """Lowercased, accent-free words with club suffixes and numeric prefixes removed."""
    value = strip_accents(name).lower()
    value = _NUMERIC_PREFIX.sub(" ", value)
    value = _NON_LETTERS.sub(" ", value)
    value = _SUFFIX_PATTERN.sub(" ", value)
    return _WHITESPACE.sub(" ", value).strip().split()


def normalize_team(name: str) -> str:
    return "".join(team_words(name))


def _significant(words: list[str]) -> list[str]:
    return [w for w in words if len(w) > 3 and w not in GENERIC_TEAM_WORDS]


def _generic(words: list[str]) -> set[str]:
    return {w for w in words if w in GENERIC_TEAM_WORDS}


def _covered(words: list[str], other: list[str]) -> bool:
    return all(any(o == w or o.startswith(w) or w.startswith(o) for o in other) for w in words)


def team_matches(feed_name: Optional[str], roster_name: Optional[str]) -> bool:
    """
    Fuzzy team-name match, driven by the roster name.

    Single significant word ("Milan", "Arsenal"): exact word match only. When the
    feed name carries further significant words, the roster's remaining words
    ("Real", "Utd") must appear in it too, which keeps "Real Madrid" apart from
    "Atletico Madrid".
    Several significant words: each needs an equal-or-prefix partner in the feed
    name, which keeps "Borussia Dortmund" apart from "Borussia Mönchengladbach".
    """
    if not feed_name or not roster_name:
        return False

    feed_words = team_words(feed_name)
    roster_words = team_words(roster_name)
    if "".join(feed_words) == "".join(roster_words):
        return bool(feed_words)

    feed_sig = _significant(feed_words)
    roster_sig = _significant(roster_words)
    if not feed_sig or not roster_sig:
        return False

    feed_generic = _generic(feed_words)
    roster_generic = _generic(roster_words)
    if feed_generic and roster_generic and feed_generic.isdisjoint(roster_generic):
        return False

    if len(roster_sig) > 1:
        return _covered(roster_sig, feed_sig)

    word = roster_sig[0]
    if word not in feed_sig:
        return False
    if any(w != word for w in feed_sig):
        return all(w in feed_words for w in roster_words if w != word)
    return True


def resolve_side(
    team_name: str,
    home_team: str,
    away_team: str,
    team_id: Optional[int] = None,
    home_team_id: Optional[int] = None,
    away_team_id: Optional[int] = None,
) -> Optional[str]:
    """
    Which side of a fixture the roster team plays on: "home", "away", or None.

    A numeric id match wins outright. A name match on both sides is treated as
    ambiguous and yields None.
    """
    if team_id is not None:
        if home_team_id == team_id:
            return "home"
        if away_team_id == team_id:
            return "away"
    home = team_matches(home_team, team_name)
    away = team_matches(away_team, team_name)
    if home and away:
        logger.debug("team_side_ambiguous", team=team_name, home=home_team, away=away_team)
        return None
    if home:
        return "home"
    if away:
        return "away"
    return None


# ── Player names ────────────────────────────────────────────────────────

def normalize_player(name: Optional[str]) -> str:
    if not name:
        return ""
    value = _NON_LETTERS.sub("", strip_accents(name).lower().replace(".", " ").replace("-", " "))
    return _WHITESPACE.sub(" ", value).strip()


def last_name(name: str) -> str:
    parts = normalize_player(name).split()
    return parts[-1] if parts else ""


def player_name_matches(
    feed_name: Optional[str],
    roster_name: Optional[str],
    ambiguous_last_names: Iterable[str] = (),
) -> bool:
    """
    Fuzzy player-name match.

    Exact, then last name (longer than 3 letters), then containment either way.
    When the roster last name is shared by several roster players, a last-name or
    containment match also needs the feed name's first initial to agree.
    """
    feed = normalize_player(feed_name)
    roster = normalize_player(roster_name)
    if not feed or not roster:
        return False
    if feed == roster:
        return True

    feed_parts = feed.split()
    roster_parts = roster.split()
    needs_initial = roster_parts[-1] in set(ambiguous_last_names)

    def initial_agrees() -> bool:
        if not needs_initial:
            return True
        return len(feed_parts) > 1 and feed_parts[0][0] == roster_parts[0][0]

    if feed_parts[-1] == roster_parts[-1] and len(roster_parts[-1]) > 3:
        return initial_agrees()
    if feed in roster or roster in feed:
        return initial_agrees()
    return False


class IdentityResolver:
    """Player matching bound to a roster, so collisions between roster names are known."""

    def __init__(self, roster_names: Iterable[str] = ()) -> None:
        self._ambiguous: frozenset[str] = frozenset()
        self.update(roster_names)

    def update(self, roster_names: Iterable[str]) -> None:
        counts = Counter(last_name(n) for n in roster_names if n)
        self._ambiguous = frozenset(name for name, count in counts.items() if name and count > 1)

    @property
    def ambiguous_last_names(self) -> frozenset[str]:
        return self._ambiguous

    def player_matches(self, feed_name: Optional[str], roster_name: str) -> bool:
        return player_name_matches(feed_name, roster_name, self._ambiguous)

    @staticmethod
    def team_matches(feed_name: Optional[str], roster_name: Optional[str]) -> bool:
        return team_matches(feed_name, roster_name)
