"""In-memory store of all conversation sessions.

Pure data container: every operation is a synchronous mutation with no
I/O. Persistence hooks in through change listeners.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from agentdesk.engine.models import ModelOption, SessionStatus
from agentdesk.shared.models.session import Session
from agentdesk.shared.services.session_naming import build_session_name

logger = logging.getLogger(__name__)

SessionPatch = Union[dict[str, Any], Callable[[Session], "dict[str, Any] | None"]]
ChangeListener = Callable[["SessionStore"], None]


@dataclass
class SessionConfig:
    """Parameters for a new session."""
    provider_id: str
    name: str | None = None
    model: str | None = None
    intent: str | None = None
    provider_label: str | None = None
    status: SessionStatus | None = None
    available_models: list[ModelOption] = field(default_factory=list)


@dataclass
class SessionsSnapshot:
    """Everything persisted about the session list."""
    sessions: list[Session] = field(default_factory=list)
    active_id: str | None = None
    next_index: int = 1


class SessionStore:
    """Owns all sessions and the active selection."""

    def __init__(self) -> None:
        self._sessions: list[Session] = []
        self._active_id: str | None = None
        self._next_index = 1
        self._listeners: list[ChangeListener] = []

    # ── Queries ───────────────────────────────────────────────

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions)

    @property
    def active_id(self) -> str | None:
        return self._active_id

    @property
    def active_session(self) -> Session | None:
        return self.get(self._active_id) if self._active_id else None

    @property
    def next_index(self) -> int:
        return self._next_index

    def get(self, session_id: str | None) -> Session | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    # ── Mutations ─────────────────────────────────────────────

    def create_session(self, config: SessionConfig) -> Session:
        """Create a session and make it active.

        Without an explicit name the session gets the default
        ``"<provider label> <n>"`` name and is retitled from its first
        user message later.
        """
        index = self._next_index
        self._next_index += 1
        name = (config.name or "").strip()
        session = Session(
            provider_id=config.provider_id,
            name=name or build_session_name(index, config.provider_label),
            model=config.model or "",
            status=config.status,
            available_models=list(config.available_models),
            intent=config.intent,
            auto_title=not name,
        )
        self._sessions.append(session)
        self._active_id = session.id
        logger.info(
            "Session created: %s (%s, provider=%s)",
            session.id, session.name, session.provider_id,
        )
        self._notify()
        return session

    def update_session(self, session_id: str, patch: SessionPatch) -> Session | None:
        """Apply *patch* (field dict, or function of the session returning
        one) and stamp ``updated_at``. Unknown ids are a no-op.
        """
        session = self.get(session_id)
        if session is None:
            return None
        changes = patch(session) if callable(patch) else patch
        for key, value in (changes or {}).items():
            if not hasattr(session, key):
                raise AttributeError(f"Session has no field {key!r}")
            setattr(session, key, value)
        session.updated_at = datetime.now(timezone.utc)
        self._notify()
        return session

    def rename_session(self, session_id: str, name: str) -> None:
        """User rename; turns off automatic titling."""
        name = (name or "").strip()
        if not name:
            return
        self.update_session(session_id, {"name": name, "auto_title": False})

    def toggle_intent(self, session_id: str, intent: str) -> None:
        self.update_session(session_id, lambda s: {
            "intent": None if s.intent == intent else intent,
        })

    def delete_session(self, session_id: str) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        self._sessions.remove(session)
        if self._active_id == session_id:
            self._active_id = self._sessions[0].id if self._sessions else None
        logger.info("Session deleted: %s", session_id)
        self._notify()
        return True

    def set_active(self, session_id: str) -> bool:
        if self.get(session_id) is None:
            return False
        self._active_id = session_id
        self._notify()
        return True

    # ── Snapshot ──────────────────────────────────────────────

    def snapshot(self) -> SessionsSnapshot:
        return SessionsSnapshot(
            sessions=list(self._sessions),
            active_id=self._active_id,
            next_index=self._next_index,
        )

    def restore(self, snapshot: SessionsSnapshot) -> None:
        """Replace the store contents with *snapshot*."""
        self._sessions = list(snapshot.sessions)
        ids = {s.id for s in self._sessions}
        if snapshot.active_id in ids:
            self._active_id = snapshot.active_id
        else:
            self._active_id = self._sessions[0].id if self._sessions else None
        self._next_index = max(snapshot.next_index, 1)
        logger.info("Restored %d sessions", len(self._sessions))

    # ── Listeners ─────────────────────────────────────────────

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
