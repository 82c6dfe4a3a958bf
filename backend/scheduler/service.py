"""
Match tracker service entrypoint.

Builds the feed set from settings, loads the roster, starts the tracker (which
runs the initial pipeline and arms the poll timer) and waits for SIGINT or
SIGTERM to stop it cleanly, flushing the persisted caches.
"""
from __future__ import annotations

import asyncio
import signal

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from ingest.providers.registry import build_feeds
from tracker.engine import MatchTracker
from tracker.roster import Roster

logger = get_logger(__name__)


async def main() -> None:
    """Tracker service entrypoint."""
    settings = get_settings()
    setup_logging("tracker")
    start_metrics_server()

    feeds = build_feeds(settings)
    roster = Roster.load(settings.data_path(settings.roster_file))
    tracker = MatchTracker(settings, feeds=feeds, roster=roster)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await tracker.start()
        logger.info("tracker_service_started", **tracker.status())
        await shutdown.wait()
    finally:
        await tracker.stop()
        logger.info("tracker_service_stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
