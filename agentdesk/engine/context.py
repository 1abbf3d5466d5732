"""Conversation context sent to the provider with each request.

The model sees a system preamble (base prompt, optional caller context
block, optional intent prompt) followed by the trailing window of plain
user/assistant text turns. Thoughts and tool output are never resent.
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from agentdesk.shared.models.message import Message

SYSTEM_PROMPT = "\n".join([
    "You are OpenContext Agent.",
    "Help the user with their requests using the selected coding agent.",
    "Be concise and action-oriented. Ask for missing details before acting.",
    'When you need to run OpenContext CLI, include a single line: '
    'OC_ACTION: <command args> (do not include "oc").',
])

MAX_CONTEXT_MESSAGES = 12

INTENT_PROMPTS = {
    "create": (
        "You are in the OpenContext create flow. Decide the right time to "
        "call oc doc create with the active directory."
    ),
    "iterate": (
        "You are in the OpenContext iterate flow. Decide the right time to "
        "call oc doc open on the active document if available."
    ),
    "search": (
        "You are in the OpenContext search flow. Decide the right time to "
        "call oc search with the user query."
    ),
}

_INTENT_COMMAND_RE = re.compile(r"^/opencontext-(create|iterate|search)\s*", re.IGNORECASE)

# Checked in order; the first match wins.
_INTENT_PATTERNS: list[tuple[re.Pattern, str, bool]] = [
    (re.compile(r"/opencontext-create\b", re.IGNORECASE), "create", True),
    (re.compile(r"/opencontext-iterate\b", re.IGNORECASE), "iterate", True),
    (re.compile(r"/opencontext-search\b", re.IGNORECASE), "search", True),
    (re.compile(r"(创建|新建|写一篇|生成).*?(文档|页面|笔记)"), "create", False),
    (re.compile(r"(搜索|查找|检索)"), "search", False),
    (re.compile(r"(编辑|迭代|润色|完善|改写)"), "iterate", False),
    (re.compile(r"create\s+(doc|document|note)"), "create", True),
    (re.compile(r"search\s+"), "search", True),
    (re.compile(r"iterate|edit\s+(doc|document|note)"), "iterate", True),
]


def resolve_intent_from_text(text: str) -> str | None:
    """Infer the request intent from an explicit command or a phrase."""
    raw = text or ""
    lower = raw.lower()
    for pattern, intent, use_lower in _INTENT_PATTERNS:
        if pattern.search(lower if use_lower else raw):
            return intent
    return None


def strip_intent_command(text: str) -> str:
    return _INTENT_COMMAND_RE.sub("", text or "", count=1).strip()


def build_context_block(document: dict[str, Any] | None) -> str:
    """Describe the document the user has selected, if any."""
    if not document:
        return ""
    rel_path = document.get("rel_path") or document.get("relPath") or ""
    stable_id = document.get("stable_id") or document.get("stableId") or ""
    description = document.get("description") or ""
    active_dir = "/".join(rel_path.split("/")[:-1]) if "/" in rel_path else ""
    lines = []
    if rel_path:
        lines.append(f"active_doc: {rel_path}")
    if active_dir:
        lines.append(f"active_dir: {active_dir}")
    if stable_id:
        lines.append(f"active_doc_id: {stable_id}")
    if description:
        lines.append(f"selection_hint: {description}")
    if not lines:
        return ""
    return "[OpenContext Context]\n" + "\n".join(lines)


def build_model_messages(
    messages: Iterable[Message],
    *,
    agent_label: str = "",
    extra_system: str = "",
    system_prompt: str | None = None,
    window: int = MAX_CONTEXT_MESSAGES,
) -> list[dict[str, str]]:
    """System preamble plus the last *window* text turns with content."""
    agent_line = f"Active coding agent: {agent_label}" if agent_label else ""
    system = "\n\n".join(
        part for part in (system_prompt or SYSTEM_PROMPT, agent_line, extra_system) if part
    )
    history = [
        {"role": m.role.value, "content": m.content}
        for m in messages
        if m.is_conversation_text and m.content
    ]
    if window > 0:
        history = history[-window:]
    return [{"role": "system", "content": system}, *history]
