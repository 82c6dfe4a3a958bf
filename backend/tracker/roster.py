"""
Static player roster loaded from JSON at startup.

The team field can change out-of-band (a transfer), either through
update_team() or by editing the file and calling reload().
"""
from __future__ import annotations

import json
from collections import defaultdict
from pathlib import Path
from typing import Any, Iterable, Optional

from ingest.normalization.identity import IdentityResolver
from shared.models.domain import Player
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class Roster:
    def __init__(self, players: Iterable[Player], path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else None
        self._players: dict[int, Player] = {}
        self.resolver = IdentityResolver()
        self._replace(players)

    @classmethod
    def load(cls, path: Path) -> "Roster":
        return cls(_read_players(Path(path)), path=path)

    def reload(self) -> None:
        """Re-read the roster file, picking up transfers and additions."""
        if self._path is None:
            return
        before = {p.id: p.team for p in self._players.values()}
        self._replace(_read_players(self._path))
        for player in self._players.values():
            old_team = before.get(player.id)
            if old_team is not None and old_team != player.team:
                logger.info("roster_transfer_detected", player_id=player.id, old_team=old_team, new_team=player.team)

    def _replace(self, players: Iterable[Player]) -> None:
        self._players = {p.id: p for p in players}
        self.resolver.update(p.name for p in self._players.values())

    def update_team(self, player_id: int, team: str, league: Optional[str] = None) -> Player:
        player = self._players[player_id]
        updated = player.model_copy(update={"team": team, "league": league or player.league})
        self._players[player_id] = updated
        logger.info("roster_team_updated", player_id=player_id, old_team=player.team, new_team=team)
        return updated

    @property
    def players(self) -> list[Player]:
        return list(self._players.values())

    def get(self, player_id: int) -> Optional[Player]:
        return self._players.get(player_id)

    def by_team(self) -> dict[str, list[Player]]:
        teams: dict[str, list[Player]] = defaultdict(list)
        for player in self._players.values():
            teams[player.team].append(player)
        return dict(teams)

    def leagues(self) -> list[str]:
        return sorted({p.league for p in self._players.values()})

    def __len__(self) -> int:
        return len(self._players)


def _read_players(path: Path) -> list[Player]:
    raw: Any = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("players", [])
    players = [Player.model_validate(p) for p in raw]
    logger.info("roster_loaded", path=str(path), players=len(players))
    return players
