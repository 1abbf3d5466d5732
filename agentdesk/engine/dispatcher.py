"""Stream dispatcher: drives one generation request per session.

``send`` appends the user message and an empty assistant placeholder,
opens the request's event channel, starts generation on the session's
provider and then demultiplexes events into the message tree until the
request reaches a terminal state:

    IDLE -> STREAMING -> COMPLETED | CANCELLED | ERRORED

The first tool or permission event for an unseen call id splits the
reply: the current assistant message is frozen, a tool message anchored
to it is inserted right after it, and a fresh assistant message after the
tool receives the remaining deltas.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from agentdesk.adapters.command_runner import CommandResult, CommandRunner
from agentdesk.adapters.event_bus import EventChannel, EventHub
from agentdesk.adapters.events import (
    ContentDelta,
    ModelsAdvertised,
    PermissionEvent,
    ReasoningDelta,
    StatusChanged,
    StreamDone,
    StreamError,
    StreamEvent,
    ToolEvent,
)
from agentdesk.engine.actions import extract_action_directive
from agentdesk.engine.config import EngineConfig
from agentdesk.engine.context import INTENT_PROMPTS, build_model_messages, resolve_intent_from_text
from agentdesk.engine.errors import AgentDeskError
from agentdesk.engine.message_tree import MessageTree
from agentdesk.engine.models import (
    STATUS_STOPPED,
    STATUS_TASK_STARTED,
    RequestState,
    SessionStatus,
    parse_status,
)
from agentdesk.engine.permission_gate import PermissionGate
from agentdesk.engine.providers.registry import ProviderRegistry
from agentdesk.engine.session_store import SessionStore
from agentdesk.shared.formatters.tool_call import format_tool_event, join_tool_text
from agentdesk.shared.models.message import (
    assistant_text,
    thought_message,
    tool_message,
    user_text,
)
from agentdesk.shared.services.session_naming import derive_session_title

logger = logging.getLogger(__name__)


def _gen_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"


@dataclass
class InFlightRequest:
    """Ephemeral state of one generation request."""
    request_id: str
    session_id: str
    provider_id: str
    user_message_id: str
    # Assistant message currently receiving content deltas.
    assistant_message_id: str
    tool_messages: dict[str, str] = field(default_factory=dict)
    last_tool_id: str | None = None
    thought_message_id: str | None = None
    intent: str | None = None
    stop_requested: bool = False
    generating: bool = True
    reasoning_text: str = ""
    state: RequestState = RequestState.IDLE
    error: str | None = None
    action_args: list[str] | None = None


class StreamDispatcher:
    """Owns in-flight requests, cancellation and event demultiplexing."""

    def __init__(
        self,
        store: SessionStore,
        tree: MessageTree,
        hub: EventHub,
        registry: ProviderRegistry,
        gate: PermissionGate,
        runner: CommandRunner,
        config: EngineConfig | None = None,
    ) -> None:
        self._store = store
        self._tree = tree
        self._hub = hub
        self._registry = registry
        self._gate = gate
        self._runner = runner
        self._config = config or EngineConfig()
        self._requests: dict[str, InFlightRequest] = {}

    def current(self, session_id: str) -> InFlightRequest | None:
        return self._requests.get(session_id)

    def is_generating(self, session_id: str) -> bool:
        request = self._requests.get(session_id)
        return request is not None and request.generating

    # ── Sending ───────────────────────────────────────────────

    async def send(
        self,
        session_id: str,
        text: str,
        *,
        context_block: str | None = None,
    ) -> InFlightRequest | None:
        """Send *text* and stream the reply until the request finishes.

        Returns None when the text is blank, the session is unknown, or a
        request for the session is already current.
        """
        text = (text or "").strip()
        session = self._store.get(session_id)
        if not text or session is None:
            return None
        if session_id in self._requests:
            logger.info("Send rejected: %s already has a request", session_id)
            return None

        intent = session.intent or resolve_intent_from_text(text)
        if session.auto_title and not session.messages:
            title = derive_session_title(text)
            patch = {"name": title, "auto_title": False} if title else {"auto_title": False}
            self._store.update_session(session_id, patch)

        prior = list(session.messages)
        user = user_text(text)
        placeholder = assistant_text()
        self._tree.append(session_id, [user, placeholder])

        request = InFlightRequest(
            request_id=_gen_request_id(),
            session_id=session_id,
            provider_id=session.provider_id,
            user_message_id=user.id,
            assistant_message_id=placeholder.id,
            intent=intent,
            state=RequestState.STREAMING,
        )
        self._requests[session_id] = request
        if session.intent:
            self._store.update_session(session_id, {"intent": None})
        logger.info(
            "Request %s started: session=%s provider=%s intent=%s",
            request.request_id, session_id, session.provider_id, intent,
        )

        try:
            adapter = self._registry.get_or_raise(session.provider_id)
        except AgentDeskError as exc:
            self._finalize_error(request, str(exc))
            return request

        extra_system = "\n\n".join(
            part for part in (context_block, INTENT_PROMPTS.get(intent or "", "")) if part
        )
        messages = build_model_messages(
            [*prior, user],
            agent_label=adapter.label,
            extra_system=extra_system,
            system_prompt=self._config.system_prompt,
            window=self._config.context_window,
        )

        # Subscribe before starting so no early event is lost.
        channel = self._hub.subscribe(request.request_id)
        try:
            await adapter.start_generation(
                session_id,
                request.request_id,
                messages,
                model=session.model or None,
            )
        except AgentDeskError as exc:
            if request.state == RequestState.STREAMING:
                self._finalize_error(request, str(exc))
            return request
        except asyncio.CancelledError:
            request.state = RequestState.CANCELLED
            request.generating = False
            self._release(request)
            raise

        await self._consume(request, channel)
        return request

    async def _consume(self, request: InFlightRequest, channel: EventChannel) -> None:
        try:
            async for event in channel.consume():
                if self._requests.get(request.session_id) is not request:
                    break
                if event.request_id != request.request_id:
                    continue
                await self._dispatch(request, event)
                if request.state.is_terminal:
                    break
        finally:
            if request.state == RequestState.STREAMING:
                # Channel closed underneath us (hub shutdown).
                request.state = RequestState.CANCELLED
                request.generating = False
            self._release(request)

    async def _dispatch(self, request: InFlightRequest, event: StreamEvent) -> None:
        sid = request.session_id
        if isinstance(event, ContentDelta):
            if request.stop_requested:
                return
            self._tree.update_content(
                sid, request.assistant_message_id, lambda prev: prev + event.text,
            )
        elif isinstance(event, ReasoningDelta):
            if request.stop_requested:
                return
            request.reasoning_text += event.text
            if request.thought_message_id is None:
                thought = thought_message()
                self._tree.insert_after(sid, request.user_message_id, thought)
                request.thought_message_id = thought.id
            self._tree.update_content(
                sid, request.thought_message_id, lambda prev: prev + event.text,
            )
        elif isinstance(event, StatusChanged):
            self._on_status(request, event.status)
        elif isinstance(event, ToolEvent):
            tool_id = self._split_for_call(request, event.call_id)
            update = format_tool_event(event)
            if update.summary:
                self._tree.update_summary(sid, tool_id, update.summary)
            if update.text:
                self._tree.update_content(
                    sid, tool_id, lambda prev: join_tool_text(prev, update.text),
                )
        elif isinstance(event, PermissionEvent):
            if not self._gate.claim(sid, event.call_id):
                logger.debug("Ignoring repeated permission %s", event.call_id)
                return
            tool_id = self._split_for_call(request, event.call_id)
            self._gate.handle(sid, request.provider_id, event, tool_id)
        elif isinstance(event, ModelsAdvertised):
            logger.debug("Models advertised mid-stream for %s, ignored", sid)
        elif isinstance(event, StreamError):
            self._finalize_error(request, event.message)
        elif isinstance(event, StreamDone):
            await self._complete(request)

    def _on_status(self, request: InFlightRequest, status: str) -> None:
        if status == STATUS_TASK_STARTED:
            request.generating = True
            return
        if status == STATUS_STOPPED:
            request.state = RequestState.CANCELLED
            request.generating = False
            request.reasoning_text = ""
            logger.info("Request %s stopped by provider", request.request_id)
            return
        parsed = parse_status(status)
        if parsed is not None:
            self._store.update_session(request.session_id, {"status": parsed})

    def _split_for_call(self, request: InFlightRequest, call_id: str) -> str:
        """Return the tool message for *call_id*, splitting on first sight."""
        existing = request.tool_messages.get(call_id)
        if existing is not None:
            return existing
        sid = request.session_id
        anchor_id = request.assistant_message_id
        tool = tool_message(anchor_id=anchor_id)
        self._tree.insert_after(sid, anchor_id, tool)
        continuation = assistant_text()
        self._tree.insert_after(sid, tool.id, continuation)
        request.tool_messages[call_id] = tool.id
        request.last_tool_id = tool.id
        request.assistant_message_id = continuation.id
        return tool.id

    # ── Finalization ──────────────────────────────────────────

    async def _complete(self, request: InFlightRequest) -> None:
        request.state = RequestState.COMPLETED
        request.generating = False
        request.reasoning_text = ""
        logger.info("Request %s completed", request.request_id)

        session = self._store.get(request.session_id)
        message = session.find_message(request.assistant_message_id) if session else None
        if message is None:
            return
        args, cleaned = extract_action_directive(
            message.content,
            marker=self._config.action_marker,
            program=self._config.action_program,
        )
        if cleaned != message.content:
            self._tree.update_content(request.session_id, message.id, cleaned)
        if not args:
            return
        request.action_args = args
        tool_id = self._split_for_call(request, f"action-{uuid.uuid4().hex[:8]}")
        await self.run_action(request.session_id, args, tool_message_id=tool_id)

    def _finalize_error(self, request: InFlightRequest, message: str) -> None:
        request.state = RequestState.ERRORED
        request.error = message
        request.generating = False
        request.reasoning_text = ""
        logger.warning("Request %s failed: %s", request.request_id, message)
        self._tree.append(request.session_id, [tool_message(f"Error: {message}")])
        self._store.update_session(request.session_id, {"status": SessionStatus.ERROR})
        self._release(request)

    def _release(self, request: InFlightRequest) -> None:
        if self._requests.get(request.session_id) is request:
            del self._requests[request.session_id]
        self._hub.unsubscribe(request.request_id)

    # ── Cancellation ──────────────────────────────────────────

    async def stop(self, session_id: str) -> bool:
        """Cancel the session's current request.

        Local effects are immediate; the provider is then asked to stop
        on a best-effort basis.
        """
        request = self._requests.get(session_id)
        if request is None or request.state.is_terminal:
            # Nothing streaming; a finished request may still be running its action.
            return False
        request.stop_requested = True
        request.state = RequestState.CANCELLED
        request.generating = False
        request.reasoning_text = ""
        self._store.update_session(session_id, {"status": SessionStatus.DISCONNECTED})
        self._release(request)
        logger.info("Request %s cancelled", request.request_id)

        adapter = self._registry.get(request.provider_id)
        if adapter is None:
            return True
        try:
            await adapter.stop_generation(session_id)
        except AgentDeskError as exc:
            logger.warning("stop_generation for %s failed: %s", session_id, exc)
        return True

    async def delete_session(self, session_id: str) -> bool:
        """Stop any request, drop permission state and remove the session."""
        await self.stop(session_id)
        self._gate.forget_session(session_id)
        return self._store.delete_session(session_id)

    # ── Actions ───────────────────────────────────────────────

    async def run_action(
        self,
        session_id: str,
        args: list[str],
        *,
        tool_message_id: str | None = None,
    ) -> CommandResult | None:
        """Run ``<program> <args>`` and show it as a tool message.

        Runner failures become message text and never touch the session
        status.
        """
        if not args:
            return None
        if tool_message_id is None:
            tool = tool_message()
            self._tree.append(session_id, [tool])
            tool_message_id = tool.id

        def emit(text: str) -> None:
            self._tree.update_content(
                session_id, tool_message_id, lambda prev: join_tool_text(prev, text),
            )

        emit(f"$ {self._runner.program} {' '.join(args)}")
        try:
            result = await self._runner.run(args)
        except AgentDeskError as exc:
            reason = str(exc) or "command failed"
            emit(reason)
            return CommandResult(stderr=reason, exit_code=-1)

        if result.stdout:
            emit(result.stdout.rstrip("\n"))
        if result.stderr:
            emit(result.stderr.rstrip("\n"))
        if result.exit_code is not None:
            emit(f"exit: {result.exit_code}")
        return result
