"""Lab session lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    STOPPED ──> STARTING ──┬──> RUNNING ──> STOPPING ──┬──> STOPPED
                           │       ^                   │
                           │       └───────────────────┘  (deprovision failed)
                           │
                           └──> STOPPED  (provision failed)

Only the controller drives STARTING -> RUNNING and STOPPING -> STOPPED,
as provisioning calls resolve.
"""
from __future__ import annotations

from .models import SessionStatus

VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.STOPPED: {
        SessionStatus.STARTING,
    },
    SessionStatus.STARTING: {
        SessionStatus.RUNNING,
        SessionStatus.STOPPED,  # rollback
    },
    SessionStatus.RUNNING: {
        SessionStatus.STOPPING,
    },
    SessionStatus.STOPPING: {
        SessionStatus.STOPPED,
        SessionStatus.RUNNING,  # rollback
    },
}


def validate_transition(current: SessionStatus, target: SessionStatus) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none"
        raise ValueError(
            f"Invalid state transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
