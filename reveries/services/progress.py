"""
Progress facade
----------------
Wraps the caller-supplied ``on_progress`` callback. Progress is advisory:
a missing callback is a no-op and a failing callback is logged and
ignored, so reporting can never break or stall the research pipeline.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, List, Optional

import structlog

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[str], Any]


class ProgressReporter:
    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._callback = callback
        self.messages: List[str] = []

    def report(self, message: str) -> None:
        self.messages.append(message)
        logger.debug("Research progress", message=message)
        if self._callback is None:
            return
        try:
            outcome = self._callback(message)
        except Exception as exc:
            logger.warning("Progress callback failed", error=str(exc), message=message)
            return
        if inspect.isawaitable(outcome):
            # Callbacks are fire-and-forget; an un-awaited coroutine would only warn
            close = getattr(outcome, "close", None)
            if close:
                close()
            logger.warning("Progress callback returned an awaitable; use a plain function")
