"""Session state: metadata plus the ordered message list of one conversation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid

from agentdesk.engine.models import ModelOption, SessionStatus
from agentdesk.shared.models.message import Message


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:16]}"


@dataclass
class TimelineEntry:
    """A top-level message and the satellites anchored to it."""
    message: Message
    satellites: list[Message] = field(default_factory=list)


@dataclass
class Session:
    """Holds all conversation state for a session."""

    provider_id: str = ""
    name: str = ""
    model: str = ""
    status: SessionStatus | None = None
    available_models: list[ModelOption] = field(default_factory=list)
    # One-shot intent ("create", "iterate", "search") applied to the next send.
    intent: str | None = None
    messages: list[Message] = field(default_factory=list)
    auto_title: bool = True
    id: str = field(default_factory=_gen_session_id)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def index_of(self, message_id: str) -> int:
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                return index
        return -1

    def timeline(self) -> list[TimelineEntry]:
        """Group the message list into top-level entries and satellites.

        A message whose anchor is not an earlier message of this session
        is shown at top level.
        """
        entries: list[TimelineEntry] = []
        by_id: dict[str, TimelineEntry] = {}
        for message in self.messages:
            owner = by_id.get(message.anchor_id) if message.anchor_id else None
            if owner is not None:
                owner.satellites.append(message)
                continue
            entry = TimelineEntry(message=message)
            entries.append(entry)
            by_id[message.id] = entry
        return entries
