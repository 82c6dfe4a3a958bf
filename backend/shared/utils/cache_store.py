"""
Cache layers for the match tracker.

Three independent freshness domains:
  JsonFileCache  - per-player map persisted to one JSON file, survives restarts
                   while its freshness predicate holds (next-game, secondary feed)
  ResponseCache  - in-memory adapter response cache with a TTL chosen at read time,
                   so one stored response can serve the general and the live TTL
  CycleContext   - per-cycle memo of match detail and team overviews
"""
from __future__ import annotations

import json
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Generic, Hashable, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

from shared.models.domain import NextGame, utcnow
from shared.utils.logging import get_logger
from shared.utils.metrics import RESPONSE_CACHE_HITS

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    stored_at: datetime
    ttl_s: Optional[float] = None

    def age_s(self, now: datetime) -> float:
        return (now - self.stored_at).total_seconds()


FreshnessRule = Callable[[CacheEntry[Any], datetime], bool]


def ttl_fresh(entry: CacheEntry[Any], now: datetime) -> bool:
    if entry.ttl_s is None:
        return True
    return entry.age_s(now) < entry.ttl_s


def kickoff_in_future(entry: CacheEntry[Any], now: datetime) -> bool:
    """A cached next game is valid until its kickoff passes, regardless of age."""
    value = entry.value
    if not isinstance(value, NextGame):
        return False
    return value.kickoff > now


class JsonFileCache(Generic[T]):
    """
    Player-id keyed cache persisted as a single JSON document.

    Every mutation rewrites the file atomically (temp file + os.replace), so a
    crash mid-write leaves the previous snapshot intact.
    """

    def __init__(
        self,
        name: str,
        path: Path,
        value_type: Any,
        is_fresh: FreshnessRule = ttl_fresh,
        ttl_s: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.name = name
        self.path = Path(path)
        self._adapter: TypeAdapter[Any] = TypeAdapter(value_type)
        self._is_fresh = is_fresh
        self._ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[int, CacheEntry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> int:
        """Read the file, keeping only entries that are still fresh. Returns the kept count."""
        if not self.path.exists():
            return 0
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("cache_load_failed", cache=self.name, path=str(self.path), error=str(exc))
            return 0

        now = self._clock()
        dropped = 0
        for key, payload in raw.items():
            try:
                entry = CacheEntry(
                    value=self._adapter.validate_python(payload["value"]),
                    stored_at=datetime.fromisoformat(payload["stored_at"]),
                    ttl_s=payload.get("ttl_s", self._ttl_s),
                )
            except (KeyError, TypeError, ValueError, ValidationError) as exc:
                logger.warning("cache_entry_invalid", cache=self.name, key=key, error=str(exc))
                dropped += 1
                continue
            if not self._is_fresh(entry, now):
                dropped += 1
                continue
            self._entries[int(key)] = entry

        logger.info("cache_loaded", cache=self.name, entries=len(self._entries), dropped=dropped)
        return len(self._entries)

    def entry(self, key: int) -> Optional[CacheEntry[T]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry, self._clock()):
            del self._entries[key]
            return None
        return entry

    def get(self, key: int) -> Optional[T]:
        entry = self.entry(key)
        return entry.value if entry else None

    def put(self, key: int, value: T, flush: bool = True) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl_s=self._ttl_s)
        if flush:
            self.flush()

    def delete(self, key: int, flush: bool = True) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed and flush:
            self.flush()
        return removed

    def fresh_items(self) -> dict[int, T]:
        now = self._clock()
        return {k: e.value for k, e in self._entries.items() if self._is_fresh(e, now)}

    def flush(self) -> None:
        document = {
            str(key): {
                "stored_at": entry.stored_at.isoformat(),
                "ttl_s": entry.ttl_s,
                "value": self._adapter.dump_python(entry.value, mode="json"),
            }
            for key, entry in self._entries.items()
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class ResponseCache:
    """In-memory adapter response cache. The TTL is supplied per read."""

    def __init__(self, feed: str) -> None:
        self._feed = feed
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, ttl_s: float) -> Optional[Any]:
        hit = self._entries.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if time.monotonic() - stored_at >= ttl_s:
            return None
        RESPONSE_CACHE_HITS.labels(feed=self._feed).inc()
        return value

    def put(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (time.monotonic(), value)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class CycleContext:
    """
    Memo for one reconciliation pass.

    Players on the same team share one match-detail and one overview lookup per
    cycle. Failed lookups (None) are memoized too, so a dead feed is asked once.
    """

    def __init__(self, live: bool = False) -> None:
        self.live = live
        self._memo: dict[Hashable, Any] = {}

    async def get_or_fetch(self, key: Hashable, fetch: Callable[[], Awaitable[T]]) -> T:
        if key in self._memo:
            return self._memo[key]
        value = await fetch()
        self._memo[key] = value
        return value

    def __contains__(self, key: Hashable) -> bool:
        return key in self._memo
