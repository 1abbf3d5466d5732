"""Adapters package: event vocabulary, event hub and command runner.

These components connect external agent processes and helper programs
to the streaming session engine.
"""
from __future__ import annotations

__all__ = [
    "CommandResult",
    "CommandRunner",
    "EventChannel",
    "EventHub",
    "payload_to_events",
]

from agentdesk.adapters.command_runner import CommandResult, CommandRunner
from agentdesk.adapters.event_bus import EventChannel, EventHub
from agentdesk.adapters.events import payload_to_events
