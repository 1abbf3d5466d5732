"""Abstract base for provider adapters.

Each adapter wraps one external coding-agent runtime (codex, claude,
opencode). The engine issues fire-and-forget calls through this
interface; every result (tokens, tool activity, permission requests,
status, models) arrives later as payloads on the event hub, keyed by
request id.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass
import logging
import shutil
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class PermissionAck:
    """Decision sent back to the provider for one permission call id."""
    call_id: str

    def to_params(self) -> dict[str, Any]:
        return {"callId": self.call_id}


@dataclass
class AcpPermissionAck(PermissionAck):
    """ACP acknowledgement: a selected option id, or a cancelled outcome."""
    option_id: str | None = None

    def to_params(self) -> dict[str, Any]:
        if self.option_id:
            outcome = {"outcome": "selected", "optionId": self.option_id}
        else:
            outcome = {"outcome": "cancelled"}
        return {"callId": self.call_id, "response": {"outcome": outcome}}


@dataclass
class CodexPermissionAck(PermissionAck):
    """Codex acknowledgement: the approval subtype plus a boolean."""
    request_type: str = ""
    approved: bool = False

    def to_params(self) -> dict[str, Any]:
        return {
            "callId": self.call_id,
            "response": {
                "call_id": self.call_id,
                "type": self.request_type,
                "approved": self.approved,
            },
        }


class ProviderAdapter(abc.ABC):
    """Abstract provider adapter interface.

    Calls return once the provider accepted the request; failures raise
    ``ProviderRequestError``.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider id (e.g. 'codex', 'claude', 'opencode')."""

    @property
    def label(self) -> str:
        """Human-readable name used for default session names."""
        return self.name.capitalize()

    @abc.abstractmethod
    async def start_generation(
        self,
        session_id: str,
        request_id: str,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
    ) -> None:
        """Begin streaming a completion for *messages*."""

    @abc.abstractmethod
    async def stop_generation(self, session_id: str) -> None:
        """Ask the provider to terminate the session's current generation."""

    @abc.abstractmethod
    async def preflight(self, session_id: str, *, model: str | None = None) -> None:
        """Start the readiness handshake.

        Progress is published under ``preflight-<session_id>``.
        """

    @abc.abstractmethod
    async def acknowledge_permission(self, session_id: str, ack: PermissionAck) -> None:
        """Send one permission decision."""

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Check whether the adapter's runtime can be launched."""

    def resolve_command(self, command: str, fallback: str | None = None) -> str:
        """Resolve a bridge binary, preferring *command* over *fallback*.

        Unresolvable values are kept as-is so the configured command shows
        up in error messages.
        """
        if command:
            if shutil.which(command):
                return command
            if fallback and shutil.which(fallback):
                logger.debug(
                    "Command %s not found; falling back to %s for provider %s",
                    command, fallback, self.name,
                )
                return fallback
            return command
        return fallback or command

    async def shutdown(self) -> None:
        """Release resources (e.g. kill the bridge subprocess).

        Default no-op.
        """
        return None
