"""Core enums and value types for the streaming session engine.

Single source of truth for session/request states so that the shared
models, adapters and engine components never disagree on spelling.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionStatus(str, Enum):
    """Provider readiness as shown for a session."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    SESSION_ACTIVE = "session_active"
    ERROR = "error"
    DISCONNECTED = "disconnected"


# Statuses in which the provider accepts generation requests.
READY_STATUSES = frozenset({
    SessionStatus.AUTHENTICATED,
    SessionStatus.SESSION_ACTIVE,
})

# Stream-only status markers. They are never stored on a session.
STATUS_TASK_STARTED = "task_started"
STATUS_STOPPED = "stopped"


def parse_status(value: str | None) -> SessionStatus | None:
    """Return the SessionStatus for *value*, or None when unrecognized."""
    if not value:
        return None
    try:
        return SessionStatus(value)
    except ValueError:
        return None


class RequestState(str, Enum):
    """Lifecycle of one in-flight generation request."""
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RequestState.COMPLETED,
            RequestState.CANCELLED,
            RequestState.ERRORED,
        )


@dataclass(frozen=True)
class ModelOption:
    """A selectable model advertised by a provider."""
    value: str
    label: str = ""

    def __post_init__(self) -> None:
        if not self.label:
            object.__setattr__(self, "label", self.value)
