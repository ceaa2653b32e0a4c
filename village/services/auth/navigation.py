import time
from collections import deque
from typing import Callable, Deque, List, Optional

import structlog

from village.core.config import settings
from village.domain.schemas import NavigationIntent, Notice
from village.services.auth.interfaces import Router

logger = structlog.get_logger(__name__)


class HistoryRouter:
    """Router that keeps its own history stack."""

    def __init__(self, initial_path: str = "/"):
        self.history: List[str] = [initial_path]

    @property
    def current_path(self) -> str:
        return self.history[-1]

    def push(self, path: str, replace: bool = False) -> None:
        if replace:
            self.history[-1] = path
        else:
            self.history.append(path)


class NavigationGuard:
    """
    Wraps the router and drops redundant navigation requests.

    A request is suppressed while the previous accepted navigation is still
    inside the cool-down window, or when the router is already at the
    target. skip_checks bypasses both.
    """

    def __init__(
        self,
        router: Router,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.router = router
        self.cooldown_seconds = (
            settings.navigation_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        )
        self._clock = clock
        self._last_navigation_at: Optional[float] = None

    @property
    def current_path(self) -> str:
        return self.router.current_path

    def in_flight(self) -> bool:
        if self._last_navigation_at is None:
            return False
        return (self._clock() - self._last_navigation_at) < self.cooldown_seconds

    def navigate(self, path: str, replace: bool = False, skip_checks: bool = False) -> bool:
        """
        Navigate unless the request is redundant.

        Returns:
            True if the router was called
        """
        if not skip_checks:
            if self.in_flight():
                logger.debug("navigation_suppressed", path=path, reason="in_flight")
                return False
            if self.router.current_path == path:
                logger.debug("navigation_suppressed", path=path, reason="already_there")
                return False

        self._last_navigation_at = self._clock()
        self.router.push(path, replace=replace)
        logger.info("navigated", path=path, replace=replace, forced=skip_checks)
        return True

    def follow(self, intent: NavigationIntent) -> bool:
        return self.navigate(intent.path, replace=intent.replace, skip_checks=intent.skip_checks)


class LogNotifier:
    """Notifier that logs every notice and keeps the most recent ones."""

    def __init__(self, maxlen: int = 50):
        self.notices: Deque[Notice] = deque(maxlen=maxlen)

    def _push(self, level: str, message: str) -> None:
        self.notices.append(Notice(level=level, message=message))
        logger.info("user_notice", level=level, message=message)

    def success(self, message: str) -> None:
        self._push("success", message)

    def info(self, message: str) -> None:
        self._push("info", message)

    def error(self, message: str) -> None:
        self._push("error", message)

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [n.message for n in self.notices if level is None or n.level == level]


def show_notice(notifier, notice: Optional[Notice]) -> None:
    if notice is None:
        return
    getattr(notifier, notice.level)(notice.message)
