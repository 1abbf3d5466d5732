"""Ordering and anchoring of messages inside a session.

All writes go through ``SessionStore.update_session`` so every change
stamps the session and reaches the store listeners.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Union

from agentdesk.engine.session_store import SessionStore
from agentdesk.shared.models.message import Message

logger = logging.getLogger(__name__)

ContentUpdate = Union[str, Callable[[str], str]]


class MessageTree:
    """Append / insert-after / in-place updates on session message lists."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    def append(self, session_id: str, messages: list[Message]) -> None:
        if not messages:
            return
        self._store.update_session(
            session_id,
            lambda s: {"messages": [*s.messages, *messages]},
        )

    def insert_after(self, session_id: str, after_id: str | None, message: Message) -> None:
        """Insert *message* right after *after_id*; append if it is unknown."""
        def _patch(session):
            index = session.index_of(after_id) if after_id else -1
            if index < 0:
                return {"messages": [*session.messages, message]}
            messages = list(session.messages)
            messages.insert(index + 1, message)
            return {"messages": messages}

        self._store.update_session(session_id, _patch)

    def update_content(self, session_id: str, message_id: str, update: ContentUpdate) -> None:
        """Replace content, or apply *update* to the prior content.

        Unknown ids are ignored.
        """
        session = self._store.get(session_id)
        if session is None:
            return
        message = session.find_message(message_id)
        if message is None:
            logger.debug("update_content: %s not in %s", message_id, session_id)
            return
        content = update(message.content) if callable(update) else update

        def _patch(_session):
            message.content = content
            return None

        self._store.update_session(session_id, _patch)

    def append_content(self, session_id: str, message_id: str, delta: str) -> None:
        self.update_content(session_id, message_id, lambda prev: prev + delta)

    def update_summary(self, session_id: str, message_id: str, summary: str | None) -> None:
        session = self._store.get(session_id)
        if session is None:
            return
        message = session.find_message(message_id)
        if message is None:
            return

        def _patch(_session):
            message.summary = summary
            return None

        self._store.update_session(session_id, _patch)
