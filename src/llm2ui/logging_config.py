# src/llm2ui/logging_config.py
"""
Structured logging for llm2ui using structlog.

Library modules only call ``structlog.get_logger()``; nothing is configured
on import. Applications (the CLI, evals, a host service) call
``configure_logging`` once to route structlog through the stdlib root logger
as JSON lines or as human-readable console output.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

import structlog


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
    stream: Optional[TextIO] = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        json_logs: Render JSON lines (services, eval runs) instead of the
            console renderer (interactive CLI use).
        log_level: Root log level name (e.g. ``"INFO"``, ``"DEBUG"``).
        stream: Destination; defaults to stderr so the CLI can keep stdout
            for the recovered schema.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

