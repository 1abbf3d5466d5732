"""Text formatting for tool activity and permission requests.

Each tool event kind has a formatter that turns the event's data into
lines appended to the tool message, plus an optional summary line
rendered apart from the body. Adding a kind only needs one decorated
function:

    @tool_formatter(ToolEventKind.EXEC_COMMAND_END)
    def _format_exec_end(data):
        return FormattedToolUpdate(lines=[...])
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from agentdesk.adapters.events import (
    PermissionEvent,
    PermissionSource,
    ToolEvent,
    ToolEventKind,
)


EXEC_APPROVAL_REQUEST = "exec_approval_request"
PATCH_APPROVAL_REQUEST = "apply_patch_approval_request"


# ── Intermediate Representation ──


@dataclass
class FormattedToolUpdate:
    """Lines to append to a tool message and an optional new summary."""

    lines: list[str] = field(default_factory=list)
    summary: str | None = None

    @property
    def text(self) -> str:
        return "\n".join(line for line in self.lines if line)


def join_tool_text(previous: str, text: str) -> str:
    """Append *text* to tool message content, one entry per line."""
    if not previous:
        return text
    if not text:
        return previous
    return f"{previous}\n{text}"


def _command_text(value: Any) -> str:
    if isinstance(value, list):
        return " ".join(str(part) for part in value)
    return str(value) if value else ""


def _location_paths(locations: Any) -> list[str]:
    if not isinstance(locations, list):
        return []
    return [
        str(loc["path"])
        for loc in locations
        if isinstance(loc, dict) and loc.get("path")
    ]


# ── Formatter Registry ──

_FORMATTERS: dict[ToolEventKind, Callable[[dict], FormattedToolUpdate]] = {}


def tool_formatter(kind: ToolEventKind):
    """Decorator to register a formatter for a tool event kind."""
    def decorator(fn: Callable[[dict], FormattedToolUpdate]):
        _FORMATTERS[kind] = fn
        return fn
    return decorator


def format_tool_event(event: ToolEvent) -> FormattedToolUpdate:
    formatter = _FORMATTERS.get(event.kind)
    if formatter is None:
        return FormattedToolUpdate()
    return formatter(event.data or {})


# ── ACP tool calls ──


@tool_formatter(ToolEventKind.TOOL_CALL)
def _format_tool_call(data: dict) -> FormattedToolUpdate:
    update = data.get("update") or {}
    title = update.get("title") or update.get("kind") or "Tool"
    status = f"status: {update['status']}" if update.get("status") else ""
    return FormattedToolUpdate(
        lines=[title, status, *_location_paths(update.get("locations"))],
    )


@tool_formatter(ToolEventKind.TOOL_CALL_UPDATE)
def _format_tool_call_update(data: dict) -> FormattedToolUpdate:
    update = data.get("update") or {}
    lines: list[str] = []
    if update.get("status"):
        lines.append(f"status: {update['status']}")
    for block in update.get("content") or []:
        if not isinstance(block, dict):
            continue
        inner = block.get("content") or {}
        if block.get("type") == "content" and isinstance(inner, dict) and inner.get("type") == "text":
            lines.append(inner.get("text") or "")
        elif block.get("type") == "diff":
            lines.append(f"diff: {block['path']}" if block.get("path") else "diff")
    raw_output = update.get("rawOutput") or {}
    if isinstance(raw_output, dict) and raw_output.get("error"):
        lines.append(str(raw_output["error"]))
    return FormattedToolUpdate(lines=lines)


# ── Codex exec / patch / MCP ──


@tool_formatter(ToolEventKind.EXEC_COMMAND_BEGIN)
def _format_exec_begin(data: dict) -> FormattedToolUpdate:
    command = _command_text(data.get("command"))
    header = f"> {command}" if command else "Running command"
    cwd = f"cwd: {data['cwd']}" if data.get("cwd") else ""
    return FormattedToolUpdate(lines=[header, cwd])


@tool_formatter(ToolEventKind.EXEC_COMMAND_OUTPUT_DELTA)
def _format_exec_output(data: dict) -> FormattedToolUpdate:
    return FormattedToolUpdate(lines=[data.get("chunk") or ""])


@tool_formatter(ToolEventKind.EXEC_COMMAND_END)
def _format_exec_end(data: dict) -> FormattedToolUpdate:
    exit_code = data.get("exit_code", data.get("exitCode"))
    footer = f"exit: {exit_code}" if exit_code is not None else "command finished"
    return FormattedToolUpdate(lines=[footer, data.get("stderr") or ""])


@tool_formatter(ToolEventKind.PATCH_APPLY_BEGIN)
def _format_patch_begin(data: dict) -> FormattedToolUpdate:
    return FormattedToolUpdate(lines=["Applying patch"], summary="Applying patch")


@tool_formatter(ToolEventKind.PATCH_APPLY_END)
def _format_patch_end(data: dict) -> FormattedToolUpdate:
    status = "Patch applied" if data.get("success") else "Patch failed"
    lines = [status]
    applied = data.get("appliedChanges")
    if isinstance(applied, list) and applied:
        lines.append(f"applied: {', '.join(map(str, applied))}")
    failed = data.get("failedChanges")
    if isinstance(failed, list) and failed:
        lines.append(f"failed: {', '.join(map(str, failed))}")
    if data.get("error"):
        lines.append(str(data["error"]))
    return FormattedToolUpdate(lines=lines, summary=status)


@tool_formatter(ToolEventKind.MCP_TOOL_CALL_BEGIN)
def _format_mcp_begin(data: dict) -> FormattedToolUpdate:
    tool_name = data.get("toolName") or data.get("tool_name")
    return FormattedToolUpdate(lines=[f"MCP: {tool_name}" if tool_name else "MCP tool call"])


@tool_formatter(ToolEventKind.MCP_TOOL_CALL_END)
def _format_mcp_end(data: dict) -> FormattedToolUpdate:
    if data.get("error"):
        return FormattedToolUpdate(lines=[f"error: {data['error']}"])
    return FormattedToolUpdate()


# ── Permission requests ──


def format_permission(event: PermissionEvent) -> list[str]:
    """Readable description of what the agent asks permission for."""
    payload = event.payload or {}
    lines: list[str] = []
    if event.source == PermissionSource.ACP:
        raw_input = payload.get("rawInput") or {}
        title = payload.get("title") or payload.get("kind") or ""
        if title:
            lines.append(str(title))
        command = _command_text(raw_input.get("command"))
        if command:
            lines.append(f"Command: {command}")
        if raw_input.get("diff") or raw_input.get("patch"):
            lines.append("Apply patch")
        file_path = raw_input.get("filePath") or raw_input.get("filepath") or raw_input.get("path")
        if file_path:
            lines.append(str(file_path))
        else:
            lines.extend(_location_paths(payload.get("locations")))
        return [line for line in lines if line]

    command = _command_text(payload.get("command"))
    if event.request_type == EXEC_APPROVAL_REQUEST and command:
        lines.append(f"Command: {command}")
    if event.request_type == PATCH_APPROVAL_REQUEST:
        lines.append("Apply patch")
    if payload.get("cwd"):
        lines.append(f"cwd: {payload['cwd']}")
    reason = payload.get("summary") or payload.get("message") or payload.get("reason")
    if reason:
        lines.append(str(reason))
    return [line for line in lines if line]
