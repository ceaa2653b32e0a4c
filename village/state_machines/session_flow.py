"""
Client session state machine.

uninitialized -> loading -> {authenticated, anonymous} -> loading -> ...
Any state can start an explicit sign-out, which always ends anonymous.

The busy states (loading, signing_out) each arm the loading watchdog on
entry and disarm it on exit.
"""

from typing import Any, Dict, Optional

from statemachine import State

from .base import FlowMachine

BUSY_STATES = ("uninitialized", "loading", "signing_out")


class SessionFlowMachine(FlowMachine):
    """Session lifecycle driven by the session controller."""

    uninitialized = State(initial=True)
    loading = State()
    authenticated = State()
    anonymous = State()
    signing_out = State()

    begin_loading = (
        uninitialized.to(loading)
        | anonymous.to(loading)
        | authenticated.to(loading)
        | loading.to.itself()
    )

    settle = (
        loading.to(authenticated, cond="has_user")
        | loading.to(anonymous)
    )

    begin_sign_out = (
        uninitialized.to(signing_out)
        | loading.to(signing_out)
        | authenticated.to(signing_out)
        | anonymous.to(signing_out)
    )

    finish_sign_out = signing_out.to(anonymous)

    def __init__(
        self,
        watchdog: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        self.watchdog = watchdog
        super().__init__(context=context, **kwargs)

    @property
    def is_busy(self) -> bool:
        return self.in_state(*BUSY_STATES)

    # Guards
    def has_user(self) -> bool:
        """A user id is present in the context."""
        return bool(self.context.get("user_id"))

    # Watchdog pairing
    def on_enter_loading(self):
        if self.watchdog is not None:
            self.watchdog.start("loading")

    def on_exit_loading(self):
        if self.watchdog is not None:
            self.watchdog.cancel()

    def on_enter_signing_out(self):
        if self.watchdog is not None:
            self.watchdog.start("sign_out")

    def on_exit_signing_out(self):
        if self.watchdog is not None:
            self.watchdog.cancel()
