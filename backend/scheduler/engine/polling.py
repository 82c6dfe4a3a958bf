"""
Cadence-driven polling engine for the match tracker.

One logical timer drives every refresh. After each cycle the scheduler asks
whether any roster match is live and retargets: a changed cadence cancels the
pending timer and schedules a new one with the new interval.
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from shared.config import Settings, get_settings
from shared.models.enums import Cadence
from shared.utils.logging import get_logger
from shared.utils.metrics import SCHEDULER_INTERVAL

logger = get_logger(__name__)

CycleRunner = Callable[[bool], Awaitable[None]]


class CadencePolicy:
    """Maps a cadence to its poll interval in seconds."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def interval(self, cadence: Cadence) -> float:
        if cadence == Cadence.LIVE:
            return self._settings.scheduler_live_interval_s
        return self._settings.scheduler_idle_interval_s

    def cadence_for(self, has_live: bool) -> Cadence:
        return Cadence.LIVE if has_live else Cadence.IDLE


class PollScheduler:
    """
    Single-timer scheduler.

    run_cycle(full) performs one reconciliation pass; full=True also re-derives
    last and next games. has_live() is consulted after every pass.
    """

    def __init__(
        self,
        run_cycle: CycleRunner,
        has_live: Callable[[], bool],
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._run_cycle = run_cycle
        self._has_live = has_live
        self._settings = settings or get_settings()
        self._policy = CadencePolicy(self._settings)
        self._clock = clock
        self._timer: Optional[asyncio.Task[None]] = None
        self._cycle_task: Optional[asyncio.Task[None]] = None
        self._cadence: Optional[Cadence] = None
        self._interval_s: Optional[float] = None
        self._last_full_at: float = 0.0
        self._running = False

    @property
    def cadence(self) -> Optional[Cadence]:
        return self._cadence

    @property
    def interval_s(self) -> Optional[float]:
        return self._interval_s

    @property
    def running(self) -> bool:
        return self._running

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self) -> None:
        """Run the initial full pipeline, then arm the timer."""
        if self._running:
            return
        self._running = True
        logger.info("scheduler_started")
        await self._execute(full=True)
        self.retarget(self._policy.cadence_for(self._has_live()))

    async def stop(self) -> None:
        """Cancel the pending timer and let an in-flight cycle finish. No cycle starts afterwards."""
        if not self._running:
            return
        self._running = False
        self._cancel_timer()
        cycle = self._cycle_task
        if cycle is not None and not cycle.done():
            await cycle
        self._cycle_task = None
        logger.info("scheduler_stopped", cadence=self._cadence.value if self._cadence else None)

    # ── Timer ───────────────────────────────────────────────────────────

    def retarget(self, cadence: Cadence) -> None:
        """Point the timer at a cadence. A pending timer for the same cadence is kept."""
        if not self._running:
            return
        if cadence == self._cadence and self._timer is not None and not self._timer.done():
            return

        previous = self._cadence
        self._cancel_timer()
        self._cadence = cadence
        self._interval_s = self._policy.interval(cadence)
        SCHEDULER_INTERVAL.set(self._interval_s)
        self._timer = asyncio.create_task(self._sleep_then_tick(self._interval_s))
        if previous != cadence:
            logger.info(
                "scheduler_retargeted",
                previous=previous.value if previous else None,
                cadence=cadence.value,
                interval_s=self._interval_s,
            )

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _sleep_then_tick(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self._running:
            return
        self._timer = None
        self._cycle_task = asyncio.create_task(self.run_once())

    # ── Cycles ──────────────────────────────────────────────────────────

    async def run_once(self, full: Optional[bool] = None) -> None:
        """One tick: a cycle (full when the slow refresh is due), then retarget."""
        if not self._running:
            return
        if full is None:
            full = self._clock() - self._last_full_at >= self._settings.scheduler_slow_refresh_s
        await self._execute(full)
        self.retarget(self._policy.cadence_for(self._has_live()))

    async def _execute(self, full: bool) -> None:
        try:
            await self._run_cycle(full)
        except Exception as exc:
            logger.error("scheduler_cycle_failed", full=full, error=str(exc), exc_info=True)
            return
        if full:
            self._last_full_at = self._clock()
