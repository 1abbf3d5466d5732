"""Normalized event vocabulary delivered to the streaming engine.

Provider adapters emit raw payload dicts shaped like
``{"content": ..., "reasoning": ..., "status": ..., "tool": {...},
"permission": {...}, "models": {...}, "error": ..., "done": true}``.
``payload_to_events`` parses them into the typed dataclasses below, which
is the only shape the engine consumes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from agentdesk.engine.models import ModelOption

logger = logging.getLogger(__name__)


def preflight_request_id(session_id: str) -> str:
    """Channel key used for a session's readiness handshake."""
    return f"preflight-{session_id}"


class ToolEventKind(str, Enum):
    TOOL_CALL = "tool_call"
    TOOL_CALL_UPDATE = "tool_call_update"
    EXEC_COMMAND_BEGIN = "exec_command_begin"
    EXEC_COMMAND_OUTPUT_DELTA = "exec_command_output_delta"
    EXEC_COMMAND_END = "exec_command_end"
    PATCH_APPLY_BEGIN = "patch_apply_begin"
    PATCH_APPLY_END = "patch_apply_end"
    MCP_TOOL_CALL_BEGIN = "mcp_tool_call_begin"
    MCP_TOOL_CALL_END = "mcp_tool_call_end"


# Older codex builds spell the patch events the other way round.
_TOOL_KIND_ALIASES: dict[str, ToolEventKind] = {
    "apply_patch_begin": ToolEventKind.PATCH_APPLY_BEGIN,
    "apply_patch_end": ToolEventKind.PATCH_APPLY_END,
}


def parse_tool_kind(value: str | None) -> ToolEventKind | None:
    if not value:
        return None
    if value in _TOOL_KIND_ALIASES:
        return _TOOL_KIND_ALIASES[value]
    try:
        return ToolEventKind(value)
    except ValueError:
        return None


class PermissionSource(str, Enum):
    """Which acknowledgement protocol a permission request expects."""
    ACP = "acp"
    CODEX = "codex"


@dataclass
class PermissionOption:
    option_id: str
    name: str = ""
    kind: str = ""


@dataclass
class StreamEvent:
    """Base event from a provider stream."""
    event_type: str = ""
    request_id: str = ""

    @property
    def is_terminal(self) -> bool:
        return False


@dataclass
class ContentDelta(StreamEvent):
    event_type: str = "content_delta"
    text: str = ""


@dataclass
class ReasoningDelta(StreamEvent):
    event_type: str = "reasoning_delta"
    text: str = ""


@dataclass
class StatusChanged(StreamEvent):
    event_type: str = "status"
    status: str = ""


@dataclass
class ToolEvent(StreamEvent):
    event_type: str = "tool"
    kind: ToolEventKind = ToolEventKind.TOOL_CALL
    call_id: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PermissionEvent(StreamEvent):
    event_type: str = "permission"
    call_id: str = ""
    source: PermissionSource = PermissionSource.CODEX
    options: list[PermissionOption] = field(default_factory=list)
    # Codex approval subtype: "exec_approval_request" / "apply_patch_approval_request".
    request_type: str = ""
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelsAdvertised(StreamEvent):
    event_type: str = "models"
    models: list[ModelOption] = field(default_factory=list)
    current_model_id: str | None = None


@dataclass
class StreamDone(StreamEvent):
    event_type: str = "done"

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass
class StreamError(StreamEvent):
    event_type: str = "error"
    message: str = ""

    @property
    def is_terminal(self) -> bool:
        return True


def normalize_model_options(models_payload: Any) -> list[ModelOption]:
    """Parse ``{"availableModels": [{"modelId", "name"}, ...]}`` entries."""
    if not isinstance(models_payload, dict):
        return []
    available = models_payload.get("availableModels")
    if not isinstance(available, list):
        return []
    options: list[ModelOption] = []
    for model in available:
        if not isinstance(model, dict):
            continue
        value = model.get("modelId") or model.get("id") or model.get("value") or ""
        if not value:
            continue
        options.append(ModelOption(
            value=str(value),
            label=str(model.get("name") or model.get("label") or value),
        ))
    return options


def _parse_permission(raw: dict[str, Any], request_id: str) -> PermissionEvent | None:
    call_id = raw.get("callId") or raw.get("call_id")
    if not call_id:
        return None
    if raw.get("source") == PermissionSource.ACP.value:
        options = [
            PermissionOption(
                option_id=str(option.get("optionId") or ""),
                name=str(option.get("name") or ""),
                kind=str(option.get("kind") or ""),
            )
            for option in raw.get("options") or []
            if isinstance(option, dict)
        ]
        return PermissionEvent(
            request_id=request_id,
            call_id=str(call_id),
            source=PermissionSource.ACP,
            options=options,
            payload=raw.get("toolCall") or {},
        )
    return PermissionEvent(
        request_id=request_id,
        call_id=str(call_id),
        source=PermissionSource.CODEX,
        request_type=str(raw.get("type") or ""),
        payload=raw.get("data") or {},
    )


def _parse_tool(raw: dict[str, Any], request_id: str) -> ToolEvent | None:
    call_id = raw.get("callId") or raw.get("call_id")
    kind = parse_tool_kind(raw.get("type"))
    if not call_id or kind is None:
        logger.debug("Dropping tool payload type=%s call_id=%s", raw.get("type"), call_id)
        return None
    data = raw.get("data")
    return ToolEvent(
        request_id=request_id,
        kind=kind,
        call_id=str(call_id),
        data=data if isinstance(data, dict) else {},
    )


def payload_to_events(payload: dict[str, Any], request_id: str = "") -> list[StreamEvent]:
    """Convert one raw adapter payload into ordered typed events.

    A payload may carry several fields at once (``{"done": true,
    "status": "stopped"}``); the terminal event is always emitted last
    and an error supersedes ``done``.
    """
    if not isinstance(payload, dict):
        return []
    events: list[StreamEvent] = []

    status = payload.get("status")
    if isinstance(status, str) and status:
        events.append(StatusChanged(request_id=request_id, status=status))

    models = payload.get("models")
    if models is not None:
        options = normalize_model_options(models)
        current = models.get("currentModelId") if isinstance(models, dict) else None
        if options or current:
            events.append(ModelsAdvertised(
                request_id=request_id,
                models=options,
                current_model_id=current or None,
            ))

    reasoning = payload.get("reasoning")
    if isinstance(reasoning, str) and reasoning:
        events.append(ReasoningDelta(request_id=request_id, text=reasoning))

    content = payload.get("content")
    if isinstance(content, str) and content:
        events.append(ContentDelta(request_id=request_id, text=content))

    tool = payload.get("tool")
    if isinstance(tool, dict):
        tool_event = _parse_tool(tool, request_id)
        if tool_event is not None:
            events.append(tool_event)

    permission = payload.get("permission")
    if isinstance(permission, dict):
        permission_event = _parse_permission(permission, request_id)
        if permission_event is not None:
            events.append(permission_event)

    error = payload.get("error")
    if error:
        events.append(StreamError(request_id=request_id, message=str(error)))
    elif payload.get("done"):
        events.append(StreamDone(request_id=request_id))

    return events
