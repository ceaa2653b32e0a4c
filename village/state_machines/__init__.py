"""
State machine infrastructure for the client session lifecycle.
"""

from .base import FlowMachine
from .session_flow import BUSY_STATES, SessionFlowMachine

__all__ = ["FlowMachine", "SessionFlowMachine", "BUSY_STATES"]
