"""
foreman.core.logging - structlog setup
========================================

Every module logs through ``structlog.get_logger()`` and binds a
``component`` key per instance. This module only decides how those events
are rendered; the facade calls ``configure_logging`` once from the config.
"""

from __future__ import annotations

import logging

import structlog


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog rendering for the process.

    Args:
        level: Minimum level name (DEBUG, INFO, ...). Unknown names fall
            back to INFO.
        fmt: "console" for a human-readable renderer, "json" for one JSON
            object per line.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    renderer: structlog.types.Processor
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )
