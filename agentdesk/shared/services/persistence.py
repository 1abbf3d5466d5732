"""Conversation persistence: save and load the session list to disk.

Storage layout:
    ~/.agentdesk/sessions.json

One JSON document holding every session (metadata plus messages), the
active session id and the next default-name index. Writes are atomic and
best effort: failures are logged and never reach the engine.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from agentdesk.engine.models import ModelOption, parse_status
from agentdesk.engine.session_store import SessionsSnapshot, SessionStore
from agentdesk.shared.models.message import Message, MessageKind, MessageRole
from agentdesk.shared.models.session import Session

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class ConversationPersistence:
    """Reads and writes a ``SessionsSnapshot`` as one JSON file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SessionsSnapshot | None:
        """Return the stored snapshot, or None if absent or unreadable."""
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            snapshot = dict_to_snapshot(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Failed to load sessions from %s: %s", self._path, exc)
            return None
        logger.info("Loaded %d sessions from %s", len(snapshot.sessions), self._path)
        return snapshot

    def save(self, snapshot: SessionsSnapshot) -> bool:
        try:
            payload = json.dumps(snapshot_to_dict(snapshot), indent=2, ensure_ascii=False)
            _replace_file(self._path, payload)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to save sessions to %s: %s", self._path, exc)
            return False
        logger.debug("Saved %d sessions to %s", len(snapshot.sessions), self._path)
        return True


def _replace_file(path: Path, payload: str) -> None:
    """Swap *payload* in for *path* with a single rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    pending: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent,
            prefix=f".{path.name}.", suffix=".tmp", delete=False,
        ) as handle:
            pending = Path(handle.name)
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(pending, path)
        pending = None
    finally:
        if pending is not None:
            pending.unlink(missing_ok=True)


class DebouncedSaver:
    """Store listener that coalesces bursts of changes into one save."""

    def __init__(
        self,
        persistence: ConversationPersistence,
        store: SessionStore,
        delay: float = 0.6,
    ) -> None:
        self._persistence = persistence
        self._store = store
        self._delay = delay
        self._handle: asyncio.TimerHandle | None = None

    def attach(self) -> None:
        self._store.add_listener(self._on_change)

    def detach(self) -> None:
        self._store.remove_listener(self._on_change)
        self._cancel()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def _on_change(self, _store: SessionStore) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside an event loop: nothing to debounce against.
            self.flush()
            return
        self._cancel()
        self._handle = loop.call_later(self._delay, self.flush)

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> bool:
        self._cancel()
        return self._persistence.save(self._store.snapshot())


# ── Serialization ──


def _ensure_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (assume UTC if naive)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return _ensure_aware(datetime.fromisoformat(value))


def _message_to_dict(msg: Message) -> dict:
    return {
        "id": msg.id,
        "role": msg.role.value,
        "kind": msg.kind.value,
        "content": msg.content,
        "summary": msg.summary,
        "anchor_id": msg.anchor_id,
        "created_at": msg.created_at.isoformat(),
    }


def _dict_to_message(data: dict) -> Message:
    return Message(
        role=MessageRole(data["role"]),
        kind=MessageKind(data.get("kind", "text")),
        content=data.get("content", ""),
        summary=data.get("summary"),
        anchor_id=data.get("anchor_id"),
        id=data["id"],
        created_at=_parse_timestamp(data.get("created_at")),
    )


def _session_to_dict(session: Session) -> dict:
    return {
        "id": session.id,
        "name": session.name,
        "provider_id": session.provider_id,
        "model": session.model,
        "status": session.status.value if session.status else None,
        "available_models": [
            {"value": m.value, "label": m.label} for m in session.available_models
        ],
        "intent": session.intent,
        "auto_title": session.auto_title,
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat(),
        "messages": [_message_to_dict(m) for m in session.messages],
    }


def _dict_to_session(data: dict) -> Session:
    return Session(
        id=data["id"],
        name=data.get("name", ""),
        provider_id=data.get("provider_id", ""),
        model=data.get("model") or "",
        status=parse_status(data.get("status")),
        available_models=[
            ModelOption(value=m["value"], label=m.get("label", ""))
            for m in data.get("available_models", [])
        ],
        intent=data.get("intent"),
        auto_title=data.get("auto_title", False),
        created_at=_parse_timestamp(data.get("created_at")),
        updated_at=_parse_timestamp(data.get("updated_at")),
        messages=[_dict_to_message(m) for m in data.get("messages", [])],
    )


def snapshot_to_dict(snapshot: SessionsSnapshot) -> dict:
    return {
        "version": FORMAT_VERSION,
        "active_id": snapshot.active_id,
        "next_index": snapshot.next_index,
        "sessions": [_session_to_dict(s) for s in snapshot.sessions],
    }


def dict_to_snapshot(data: dict) -> SessionsSnapshot:
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    sessions = [_dict_to_session(s) for s in data.get("sessions", [])]
    return SessionsSnapshot(
        sessions=sessions,
        active_id=data.get("active_id"),
        next_index=int(data.get("next_index", len(sessions) + 1)),
    )
