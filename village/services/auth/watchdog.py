"""
Loading watchdog.

One timer per busy window. start() arms it, cancel() disarms it, and a
fire disarms it before calling the timeout handler, so each start ends in
exactly one cancel or one fire.
"""

import asyncio
from typing import Callable, Optional

import structlog

from village.core.config import settings

logger = structlog.get_logger(__name__)


class LoadingWatchdog:
    def __init__(
        self,
        on_timeout: Callable[[str], None],
        timeout_seconds: Optional[float] = None,
    ):
        self.timeout_seconds = (
            settings.loading_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._on_timeout = on_timeout
        self._handle: Optional[asyncio.TimerHandle] = None
        self._operation: Optional[str] = None
        self.started = 0
        self.cancelled = 0
        self.fired = 0

    @property
    def active(self) -> bool:
        return self._handle is not None

    @property
    def operation(self) -> Optional[str]:
        return self._operation

    def start(self, operation: str) -> None:
        if self._handle is not None:
            # A window is still open; close it before opening the next one
            self.cancel()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("watchdog_no_running_loop", operation=operation)
            return

        self._operation = operation
        self._handle = loop.call_later(self.timeout_seconds, self._fire)
        self.started += 1
        logger.debug("watchdog_started", operation=operation, timeout=self.timeout_seconds)

    def cancel(self) -> bool:
        """Disarm the timer. Returns False when nothing was armed."""
        handle = self._handle
        if handle is None:
            return False
        self._handle = None
        handle.cancel()
        self.cancelled += 1
        logger.debug("watchdog_cancelled", operation=self._operation)
        self._operation = None
        return True

    def _fire(self) -> None:
        if self._handle is None:
            return
        operation = self._operation or "unknown"
        self._handle = None
        self._operation = None
        self.fired += 1
        logger.warning("loading_timeout", operation=operation, timeout=self.timeout_seconds)
        try:
            self._on_timeout(operation)
        except Exception as e:
            logger.error(
                "loading_timeout_handler_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
