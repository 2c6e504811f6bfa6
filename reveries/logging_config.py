"""Logging for the research engine.

Every module logs through ``structlog.get_logger(__name__)``. This module
wires those loggers, and the stdlib loggers of the provider SDKs, into one
pipeline so a routed query produces a single stream of events tagged with
its ``session_id`` and ``research_id``.

Output is JSON lines by default; ``LOG_PRETTY=1`` switches to the console
renderer for local runs. ``LOG_LEVEL`` sets the threshold.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

__all__ = [
    "configure_logging",
    "bind_research_context",
    "clear_research_context",
    "get_logger",
]

_RESEARCH_CONTEXT_KEYS = ("session_id", "research_id")

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("httpx", "openai")


def _renderer():
    if os.getenv("LOG_PRETTY", "0").lower() in {"1", "true", "yes"}:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def _install_root_handler(renderer, level: int) -> None:
    """Route stdlib records through structlog's formatter."""
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.contextvars.merge_contextvars],
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
    )
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging(force: bool = False) -> None:
    """Configure structlog for the process; later calls are no-ops.

    Args:
        force: reconfigure anyway, e.g. after changing ``LOG_PRETTY``.
    """
    if getattr(structlog, "_reveries_configured", False) and not force:
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    renderer = _renderer()
    _install_root_handler(renderer, level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    setattr(structlog, "_reveries_configured", True)


def bind_research_context(
    session_id: Optional[str] = None,
    research_id: Optional[str] = None,
) -> None:
    """Tag every event of the current query with its session and research ids."""
    payload: Dict[str, str] = {}
    if session_id:
        payload["session_id"] = session_id
    if research_id:
        payload["research_id"] = research_id
    if payload:
        bind_contextvars(**payload)


def clear_research_context() -> None:
    unbind_contextvars(*_RESEARCH_CONTEXT_KEYS)


def get_logger(name: Optional[str] = None):
    configure_logging()
    return structlog.get_logger(name) if name else structlog.get_logger()
