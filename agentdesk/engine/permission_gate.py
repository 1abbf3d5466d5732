"""Permission gate: user decisions on agent permission requests.

The dispatcher hands every permission event here after splitting the
assistant message. The gate describes the request in the tool message,
presents an approve/deny prompt, and sends the provider acknowledgement
exactly once per call id. It never resumes the stream itself; the
provider continues on its own once acknowledged.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from agentdesk.adapters.events import PermissionEvent, PermissionOption, PermissionSource
from agentdesk.engine.errors import AgentDeskError
from agentdesk.engine.message_tree import MessageTree
from agentdesk.engine.providers.base import (
    AcpPermissionAck,
    CodexPermissionAck,
    PermissionAck,
)
from agentdesk.engine.providers.registry import ProviderRegistry
from agentdesk.shared.formatters.tool_call import format_permission, join_tool_text

logger = logging.getLogger(__name__)

PERMISSION_TITLE = "Permission required"


@dataclass
class PermissionPrompt:
    """An approve/deny question shown to the user."""
    session_id: str
    provider_id: str
    call_id: str
    source: PermissionSource
    tool_message_id: str | None
    approve_ack: PermissionAck
    deny_ack: PermissionAck
    title: str = PERMISSION_TITLE
    lines: list[str] = field(default_factory=list)
    approve_label: str = "Allow"
    deny_label: str = "Deny"

    @property
    def message(self) -> str:
        return "\n".join(self.lines)


PromptPresenter = Callable[[PermissionPrompt], "Awaitable[None] | None"]


def _pick_option(options: list[PermissionOption], prefix: str, fallback_last: bool) -> PermissionOption | None:
    for option in options:
        if option.kind.startswith(prefix):
            return option
    if not options:
        return None
    return options[-1] if fallback_last else options[0]


class PermissionGate:
    """Per-session de-duplication and exactly-once acknowledgement.

    A call id is remembered for the lifetime of its session so that a
    provider re-emitting the same request never produces a second
    prompt. ``forget_session`` drops the sets when a session is deleted.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        tree: MessageTree,
        presenter: PromptPresenter | None = None,
    ) -> None:
        self._registry = registry
        self._tree = tree
        self._presenter = presenter
        self._handled: dict[str, set[str]] = {}
        self._acknowledged: dict[str, set[str]] = {}
        self._pending: dict[tuple[str, str], PermissionPrompt] = {}
        self._tasks: set[asyncio.Task] = set()

    def set_presenter(self, presenter: PromptPresenter | None) -> None:
        self._presenter = presenter

    def is_handled(self, session_id: str, call_id: str) -> bool:
        return call_id in self._handled.get(session_id, set())

    def claim(self, session_id: str, call_id: str) -> bool:
        """Mark *call_id* handled. False if it already was."""
        handled = self._handled.setdefault(session_id, set())
        if call_id in handled:
            return False
        handled.add(call_id)
        return True

    @property
    def pending_prompts(self) -> list[PermissionPrompt]:
        return list(self._pending.values())

    def build_prompt(
        self,
        session_id: str,
        provider_id: str,
        event: PermissionEvent,
        tool_message_id: str | None,
    ) -> PermissionPrompt:
        lines = format_permission(event)
        if event.source == PermissionSource.ACP:
            allow = _pick_option(event.options, "allow", fallback_last=False)
            reject = _pick_option(event.options, "reject", fallback_last=True)
            return PermissionPrompt(
                session_id=session_id,
                provider_id=provider_id,
                call_id=event.call_id,
                source=event.source,
                tool_message_id=tool_message_id,
                lines=lines,
                approve_label=(allow.name if allow and allow.name else "Allow"),
                deny_label=(reject.name if reject and reject.name else "Deny"),
                approve_ack=AcpPermissionAck(
                    call_id=event.call_id,
                    option_id=allow.option_id if allow else None,
                ),
                deny_ack=AcpPermissionAck(
                    call_id=event.call_id,
                    option_id=reject.option_id if reject else None,
                ),
            )
        return PermissionPrompt(
            session_id=session_id,
            provider_id=provider_id,
            call_id=event.call_id,
            source=event.source,
            tool_message_id=tool_message_id,
            lines=lines,
            approve_ack=CodexPermissionAck(
                call_id=event.call_id,
                request_type=event.request_type,
                approved=True,
            ),
            deny_ack=CodexPermissionAck(
                call_id=event.call_id,
                request_type=event.request_type,
                approved=False,
            ),
        )

    def handle(
        self,
        session_id: str,
        provider_id: str,
        event: PermissionEvent,
        tool_message_id: str | None,
    ) -> PermissionPrompt:
        """Describe the request in its tool message and present the prompt.

        The caller must have claimed the call id.
        """
        prompt = self.build_prompt(session_id, provider_id, event, tool_message_id)
        if tool_message_id and prompt.lines:
            self._tree.update_content(
                session_id,
                tool_message_id,
                lambda prev: join_tool_text(prev, prompt.message),
            )
        self._pending[(session_id, event.call_id)] = prompt
        logger.info(
            "Permission requested: session=%s call=%s source=%s",
            session_id, event.call_id, event.source.value,
        )
        if self._presenter is not None:
            result = self._presenter(prompt)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_presenter_done)
        return prompt

    def _on_presenter_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Permission presenter failed: %s", exc, exc_info=exc)

    async def respond(self, prompt: PermissionPrompt, approved: bool) -> bool:
        """Send the acknowledgement for *prompt*.

        Returns False without contacting the provider when a decision for
        this call id was already sent.
        """
        acknowledged = self._acknowledged.setdefault(prompt.session_id, set())
        if prompt.call_id in acknowledged:
            logger.debug("Permission %s already answered", prompt.call_id)
            return False
        acknowledged.add(prompt.call_id)
        self._pending.pop((prompt.session_id, prompt.call_id), None)

        ack = prompt.approve_ack if approved else prompt.deny_ack
        try:
            adapter = self._registry.get_or_raise(prompt.provider_id)
            await adapter.acknowledge_permission(prompt.session_id, ack)
        except AgentDeskError as exc:
            logger.warning(
                "Permission response for %s failed: %s", prompt.call_id, exc
            )
            if prompt.tool_message_id:
                self._tree.update_content(
                    prompt.session_id,
                    prompt.tool_message_id,
                    lambda prev: join_tool_text(prev, f"Permission response failed: {exc}"),
                )
        else:
            logger.info(
                "Permission %s %s", prompt.call_id,
                "approved" if approved else "denied",
            )
        return True

    def forget_session(self, session_id: str) -> None:
        self._handled.pop(session_id, None)
        self._acknowledged.pop(session_id, None)
        for key in [k for k in self._pending if k[0] == session_id]:
            del self._pending[key]
