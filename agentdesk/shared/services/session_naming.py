"""Deterministic session names and titles."""
from __future__ import annotations

import re

MAX_TITLE_LENGTH = 50

_DEFAULT_NAME_RE = re.compile(r"^.+ \d+$")


def build_session_name(index: int, provider_label: str | None = None) -> str:
    """Default name for the *index*-th session, e.g. ``"Codex 3"``."""
    if provider_label:
        return f"{provider_label} {index}"
    return f"Session {index}"


def derive_session_title(user_message: str) -> str:
    """Title from the first line of the first user message."""
    text = (user_message or "").strip()
    if not text:
        return ""
    return text.split("\n")[0][:MAX_TITLE_LENGTH].strip()


def is_default_session_name(name: str | None) -> bool:
    if not name:
        return True
    return _DEFAULT_NAME_RE.match(name.strip()) is not None
