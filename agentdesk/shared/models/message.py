"""Message models for the conversation timeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return f"msg-{uuid.uuid4().hex[:16]}"


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class MessageKind(Enum):
    TEXT = "text"
    THOUGHT = "thought"
    TOOL = "tool"


@dataclass
class Message:
    role: MessageRole = MessageRole.ASSISTANT
    kind: MessageKind = MessageKind.TEXT
    content: str = ""
    # Status line rendered apart from the body (e.g. "Patch applied").
    summary: str | None = None
    # Set on satellites: the earlier message this one is grouped under.
    anchor_id: str | None = None
    id: str = field(default_factory=_gen_id)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_conversation_text(self) -> bool:
        """True for user/assistant text turns that feed model context."""
        return self.kind == MessageKind.TEXT and self.role in (
            MessageRole.USER,
            MessageRole.ASSISTANT,
        )


def user_text(content: str) -> Message:
    return Message(role=MessageRole.USER, kind=MessageKind.TEXT, content=content)


def assistant_text(content: str = "") -> Message:
    return Message(role=MessageRole.ASSISTANT, kind=MessageKind.TEXT, content=content)


def tool_message(content: str = "", anchor_id: str | None = None) -> Message:
    return Message(
        role=MessageRole.TOOL,
        kind=MessageKind.TOOL,
        content=content,
        anchor_id=anchor_id,
    )


def thought_message() -> Message:
    return Message(role=MessageRole.ASSISTANT, kind=MessageKind.THOUGHT)
