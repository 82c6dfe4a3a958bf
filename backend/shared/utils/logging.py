"""
Structured logging for the match tracker.

Every log call uses an event name plus keyword fields. Process-wide context
(service, environment, instance, feed mode) is bound once at startup; each
reconciliation cycle binds its own number and kind for the duration of the
cycle so every line it emits can be grouped.
"""
from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any, Optional

import structlog
from shared.config import Environment, get_settings

_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def setup_logging(service_name: str, level: Optional[str] = None) -> None:
    """
    Route structlog and stdlib logging through one stdout handler.

    Args:
        service_name: Process identifier bound into every entry.
        level: Overrides Settings.log_level.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    dev = settings.environment == Environment.DEV

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer_chain: list[structlog.types.Processor] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if dev:
        renderer_chain.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        renderer_chain += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processors=renderer_chain, foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=settings.environment.value,
        instance_id=settings.instance_id,
        mode="demo" if settings.demo_mode else "live",
    )


def cycle_context(cycle: int, kind: str) -> AbstractContextManager[Any]:
    """Bind the cycle number and kind to every entry logged inside the block."""
    return structlog.contextvars.bound_contextvars(cycle=cycle, cycle_kind=kind)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    return structlog.get_logger(name)
