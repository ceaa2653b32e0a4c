from village.services.auth.ledger import LedgerSlot, PendingActionLedger, classify_action
from village.services.auth.navigation import HistoryRouter, LogNotifier, NavigationGuard
from village.services.auth.redirect_policy import decide_redirect
from village.services.auth.session_controller import SessionController, build_session_controller
from village.services.auth.watchdog import LoadingWatchdog

__all__ = [
    "LedgerSlot",
    "PendingActionLedger",
    "classify_action",
    "HistoryRouter",
    "LogNotifier",
    "NavigationGuard",
    "decide_redirect",
    "SessionController",
    "build_session_controller",
    "LoadingWatchdog",
]
