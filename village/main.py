"""
Session status check.

Restores the stored session the way a fresh page load would, lets the
controller settle and reports where the user would land.

Usage:
    python -m village.main                  # Start from the home page
    python -m village.main --path /auth     # Start from the sign-in page
"""

import argparse
import asyncio
from typing import Any, Dict, Optional

import structlog

from village.core.logging_config import configure_logging
from village.services.auth.navigation import HistoryRouter, LogNotifier
from village.services.auth.session_controller import build_session_controller

configure_logging()

logger = structlog.get_logger(__name__)


async def check_session(initial_path: str = "/", controller: Optional[Any] = None) -> Dict[str, Any]:
    """Start a controller, wait for it to settle and describe the result."""
    router = HistoryRouter(initial_path)
    notifier = LogNotifier()
    if controller is None:
        controller = await build_session_controller(router, notifier)
    else:
        router = controller.navigation.router
        notifier = controller.notifier

    await controller.start()
    try:
        await controller.wait_until_idle()
        report = {
            "state": controller.state,
            "user_id": controller.user.id if controller.user else None,
            "role": controller.user_role.value if controller.user_role else None,
            "profile_complete": controller.is_profile_complete,
            "pending_action": controller.ledger.pending().has_pending_action,
            "path": router.current_path,
            "notices": notifier.messages(),
        }
    finally:
        await controller.dispose()

    logger.info("session_checked", **report)
    return report


def main() -> None:
    parser = argparse.ArgumentParser(description="Restore the stored session and report the landing page")
    parser.add_argument("--path", default="/", help="Path the user starts on")
    args = parser.parse_args()

    asyncio.run(check_session(args.path))


if __name__ == "__main__":
    main()
