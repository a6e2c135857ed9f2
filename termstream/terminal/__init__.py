"""
PTY session engine.

This package owns the shell processes and everything derived from their
output:
- PtySession: bounded replay buffer addressed by a byte cursor, output
  batching and viewer fan-out
- SessionRegistry: creation, lookup and teardown of sessions
- OscStateMachine: shell-integration signals scanned from the raw output
- EventBus: typed notifications about session lifecycle and shell state
"""

from . import events, listeners
from .base import PtyProcess
from .events import BusEventType, EventBus
from .factory import PtyProcessFactory
from .osc import OscStateMachine
from .registry import SessionRegistry
from .session import PtySession, Viewer

__all__ = [
    # Core types
    "PtyProcess",
    "PtyProcessFactory",
    "PtySession",
    "SessionRegistry",
    "Viewer",
    "OscStateMachine",
    # Event system
    "BusEventType",
    "EventBus",
    "events",
    "listeners",
]
