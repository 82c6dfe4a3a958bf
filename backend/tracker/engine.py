"""
MatchTracker: the reconciliation engine facade.

Owns the roster, the feed set, the persisted caches, the record store and
the poll scheduler. One cycle runs at a time under the cycle lock:

    prune stale-team records
    today (primary) -> gap-fill (secondary)
    [full] player history -> last game -> next game
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Optional

from ingest.providers.registry import FeedSet, build_feeds
from shared.config import Settings, get_settings
from shared.models.domain import NextGame, PlayerMatch, PlayerRecord
from shared.utils.cache_store import CycleContext, JsonFileCache, kickoff_in_future, ttl_fresh
from shared.utils.logging import cycle_context, get_logger
from shared.utils.metrics import RECONCILE_CYCLES, RECONCILE_DURATION

from scheduler.engine.polling import PollScheduler
from tracker.clock import VenueClock
from tracker.last_game import LastGameReconciler
from tracker.lookups import FeedLookups
from tracker.next_game import NextGameReconciler
from tracker.records import RecordStore
from tracker.roster import Roster
from tracker.today import TodayReconciler

logger = get_logger(__name__)


class MatchTracker:
    def __init__(
        self,
        settings: Settings | None = None,
        feeds: Optional[FeedSet] = None,
        roster: Optional[Roster] = None,
        clock: Optional[VenueClock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.feeds = feeds or build_feeds(self._settings)
        self.roster = roster or Roster.load(self._settings.data_path(self._settings.roster_file))
        self.clock = clock or VenueClock(self._settings)
        self.store = RecordStore()

        self.next_cache: JsonFileCache[NextGame] = JsonFileCache(
            "next_game",
            self._settings.data_path(self._settings.next_game_cache_file),
            NextGame,
            is_fresh=kickoff_in_future,
            clock=self.clock.now,
        )
        self.history_cache: JsonFileCache[list[PlayerMatch]] = JsonFileCache(
            "player_history",
            self._settings.data_path(self._settings.secondary_cache_file),
            list[PlayerMatch],
            is_fresh=ttl_fresh,
            ttl_s=self._settings.secondary_cache_ttl_s,
            clock=self.clock.now,
        )

        lookups = FeedLookups(self.feeds, self._settings)
        self._today = TodayReconciler(self.roster, self.store, lookups, self.clock, self._settings)
        self._last = LastGameReconciler(
            self.roster, self.store, lookups, self.clock, self._settings, self.history_cache
        )
        self._next = NextGameReconciler(
            self.roster, self.store, lookups, self.clock, self._settings, self.next_cache
        )

        self._cycle_lock = asyncio.Lock()
        self._last_cycle_at: Optional[datetime] = None
        self._cycles = 0
        self.scheduler = PollScheduler(self.run_cycle, self.has_live_matches, self._settings)

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self) -> None:
        """Load persisted caches, open feeds, run the initial pipeline and start polling."""
        self.next_cache.load()
        self.history_cache.load()
        await self._next.restore()
        await self.feeds.start()
        logger.info(
            "tracker_starting",
            mode=self.mode,
            players=len(self.roster),
            teams=len(self.roster.by_team()),
        )
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        async with self._cycle_lock:
            self.next_cache.flush()
            self.history_cache.flush()
        await self.feeds.close()
        logger.info("tracker_stopped", cycles=self._cycles)

    async def refresh(self) -> None:
        """Run the full pipeline once, outside the timer."""
        await self.run_cycle(full=True)

    # ── Cycle ───────────────────────────────────────────────────────────

    async def run_cycle(self, full: bool = False) -> None:
        kind = "full" if full else "today"
        async with self._cycle_lock:
            with cycle_context(self._cycles + 1, kind):
                start = time.perf_counter()
                dropped = await self.store.prune_stale(self.roster.players)
                ctx = CycleContext(live=self.store.has_live())

                covered = await self._today.reconcile_primary(ctx)
                ctx.live = self.store.has_live()
                await self._today.gap_fill(ctx, covered)
                if full:
                    await self._last.refresh_history()
                    await self._last.run(ctx)
                    await self._next.run(ctx)

                elapsed = time.perf_counter() - start
                RECONCILE_DURATION.labels(kind=kind).observe(elapsed)
                RECONCILE_CYCLES.labels(kind=kind).inc()
                self._last_cycle_at = self.clock.now()
                self._cycles += 1
                logger.info(
                    "cycle_completed",
                    live=self.store.has_live(),
                    pruned=dropped,
                    duration_ms=round(elapsed * 1000, 2),
                )

    # ── Exposed records ─────────────────────────────────────────────────

    def get_record(self, player_id: int) -> Optional[PlayerRecord]:
        return self.store.record(player_id)

    def get_all_records(self) -> dict[int, PlayerRecord]:
        records: dict[int, PlayerRecord] = {}
        for player in self.roster.players:
            record = self.store.record(player.id)
            if record is not None:
                records[player.id] = record
        return records

    def has_live_matches(self) -> bool:
        return self.store.has_live()

    @property
    def mode(self) -> str:
        return "demo" if self.feeds.demo else "live"

    def status(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "polling": self.scheduler.running,
            "cadence": self.scheduler.cadence.value if self.scheduler.cadence else None,
            "interval_s": self.scheduler.interval_s,
            "has_live_matches": self.has_live_matches(),
            "last_cycle_at": self._last_cycle_at.isoformat() if self._last_cycle_at else None,
            "cycles": self._cycles,
            "players": len(self.roster),
            "breakers": self.feeds.breaker_stats(),
        }
