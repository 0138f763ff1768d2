"""Session lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    DISPATCHED ──> STREAMING ──┬──> COMPLETED
        │                      │
        │                      ├──> STOPPED
        │                      │
        │                      └──> FAILED
        │
        └──> STOPPED | FAILED | COMPLETED  (before any event was applied)

    COMPLETED, STOPPED, FAILED are terminal.
"""
from __future__ import annotations

from .models import SessionState

VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.DISPATCHED: {
        SessionState.STREAMING,
        SessionState.COMPLETED,
        SessionState.STOPPED,
        SessionState.FAILED,
    },
    SessionState.STREAMING: {
        SessionState.COMPLETED,
        SessionState.STOPPED,
        SessionState.FAILED,
    },
    SessionState.COMPLETED: set(),
    SessionState.STOPPED: set(),
    SessionState.FAILED: set(),
}


def validate_transition(current: SessionState, target: SessionState) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
