"""Structured logging configuration (structlog)."""

from __future__ import annotations

import logging
import sys

import structlog


def _stderr_logger(*_args: object) -> structlog.PrintLogger:
    return structlog.PrintLogger(sys.stderr)


def configure_logging(level: str = "INFO", *, json_output: bool = False) -> None:
    """Configure structlog once at process startup.

    Console rendering by default; ``json_output`` switches to one JSON
    object per line for log shippers. Records go to stderr so command
    output on stdout stays parseable.
    """
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=_stderr_logger,
        # sys.stderr is looked up per call; test runners swap it.
        cache_logger_on_first_use=False,
    )
