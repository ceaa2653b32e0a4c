"""
Base state machine class for flow state machines.

Provides structured transition logging, a mutable context dict for guards,
and flow info retrieval.
"""

from typing import Any, Dict, Optional

import structlog
from statemachine import State, StateMachine


class FlowMachine(StateMachine):
    """
    Base class for flow state machines.

    Features:
    - Structured logging on every transition
    - context dict read by guard conditions
    - get_flow_info() for diagnostics
    """

    def __init__(
        self,
        context: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        **kwargs
    ):
        """
        Initialize flow machine.

        Args:
            context: Facts the guards read (kept separate from the library's model)
            user_id: User ID for logging
            **kwargs: Passed through to StateMachine
        """
        self.context: Dict[str, Any] = context if context is not None else {}
        self.user_id = user_id
        self.logger = structlog.get_logger(__name__)
        super().__init__(**kwargs)

    @property
    def state_id(self) -> str:
        return self.current_state.id

    def in_state(self, *state_ids: str) -> bool:
        return self.current_state.id in state_ids

    def get_flow_info(self) -> Dict[str, Any]:
        """
        Returns current state and guard context.
        """
        return {
            "state": self.current_state.id,
            "user_id": self.user_id,
            "context": dict(self.context),
        }

    def log_transition(self, event: str, from_state: str, to_state: str):
        """
        Log state transition with structured logging.

        Args:
            event: Event name that triggered transition
            from_state: Previous state
            to_state: New state
        """
        self.logger.info(
            "state_transition",
            transition_event=event,
            from_state=from_state,
            to_state=to_state,
            user_id=self.user_id,
        )

    def on_transition(self, event: str, source: State, target: State):
        """Hook called on every transition."""
        self.log_transition(str(event), source.id, target.id)
