"""
Operator-maintained correction store.

Reads playerStats.json:
    {"players": {"<player_id>": {"recentMatches": [{"date": "2026-10-12", ...}]}}}
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from shared.models.domain import ManualMatch
from shared.models.enums import FeedName
from shared.utils.logging import get_logger

from ingest.providers.base import MatchFeed

logger = get_logger(__name__)


class ManualOverrideFeed(MatchFeed):
    """Answers load_manual_overrides() only; every other query is unsupported."""

    def __init__(self, path: Path) -> None:
        super().__init__(name=FeedName.MANUAL)
        self._path = Path(path)

    async def _fetch_manual_overrides(self) -> Optional[dict[int, list[ManualMatch]]]:
        if not self._path.exists():
            logger.debug("manual_overrides_absent", path=str(self._path))
            return {}
        data = json.loads(self._path.read_text(encoding="utf-8"))
        players = data.get("players") if isinstance(data, dict) else None
        if not isinstance(players, dict):
            logger.warning("manual_overrides_malformed", path=str(self._path), root=type(data).__name__)
            return {}

        overrides: dict[int, list[ManualMatch]] = {}
        for player_id, payload in players.items():
            raw_matches = payload.get("recentMatches") if isinstance(payload, dict) else None
            if not isinstance(raw_matches, list) or not str(player_id).isdigit():
                logger.warning("manual_override_invalid", player_id=player_id, error="unexpected entry shape")
                continue
            matches: list[ManualMatch] = []
            for raw in raw_matches:
                try:
                    matches.append(ManualMatch.model_validate(raw))
                except ValidationError as exc:
                    logger.warning("manual_override_invalid", player_id=player_id, error=str(exc))
            if matches:
                matches.sort(key=lambda m: m.match_date, reverse=True)
                overrides[int(player_id)] = matches

        logger.info("manual_overrides_loaded", players=len(overrides))
        return overrides
