"""Action directives embedded in finished assistant replies.

A reply may carry one line ``OC_ACTION: <args>`` asking the host to run
a command on the agent's behalf. The line is removed from the displayed
text and the arguments are handed to the command runner.
"""
from __future__ import annotations

import re

DEFAULT_ACTION_MARKER = "OC_ACTION"

_ARG_RE = re.compile(r'"([^"]*)"|\'([^\']*)\'|(\S+)')


def split_command_args(value: str) -> list[str]:
    """Split on whitespace, keeping single- or double-quoted runs whole."""
    text = (value or "").strip()
    if not text:
        return []
    args = []
    for match in _ARG_RE.finditer(text):
        args.append(next(g for g in match.groups() if g is not None))
    return args


def extract_action_directive(
    text: str,
    marker: str = DEFAULT_ACTION_MARKER,
    program: str = "oc",
) -> tuple[list[str] | None, str]:
    """Return ``(args, cleaned_text)`` for the first directive line.

    Only the first directive is removed; later ones stay visible. A
    leading program name (``oc search x``) is dropped from the args.
    """
    if not text:
        return None, text
    line_re = re.compile(rf"^\s*{re.escape(marker)}:\s*(.+)$", re.IGNORECASE)
    action: str | None = None
    kept: list[str] = []
    for line in text.split("\n"):
        match = line_re.match(line)
        if match and action is None:
            action = match.group(1).strip()
        else:
            kept.append(line)
    cleaned = "\n".join(kept).rstrip()
    if action is None:
        return None, cleaned
    if program:
        action = re.sub(rf"^{re.escape(program)}\s+", "", action, flags=re.IGNORECASE).strip()
    args = split_command_args(action)
    return (args or None), cleaned
