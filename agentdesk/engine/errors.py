"""Exception hierarchy for the streaming session engine.

Adapters and collaborators raise these; the dispatcher, preflight and
permission gate catch them at their boundaries and surface them as
conversation messages instead of propagating.
"""
from __future__ import annotations


class AgentDeskError(Exception):
    """Base exception for all engine errors."""


class ProviderNotFoundError(AgentDeskError):
    """A session references a provider that is not registered."""
    def __init__(self, provider_id: str, available: list[str]):
        self.provider_id = provider_id
        self.available = available
        avail_str = ", ".join(available) if available else "none"
        super().__init__(
            f"Provider '{provider_id}' is not registered. "
            f"Available providers: {avail_str}"
        )


class ProviderRequestError(AgentDeskError):
    """A provider adapter call failed or was rejected."""
    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"{method} failed: {reason}")


class CommandExecutionError(AgentDeskError):
    """The external command runner could not run a command."""
    def __init__(self, args: list[str], reason: str):
        self.command_args = list(args)
        self.reason = reason
        super().__init__(reason)


class ConfigError(AgentDeskError):
    """Configuration file is missing or malformed."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")
