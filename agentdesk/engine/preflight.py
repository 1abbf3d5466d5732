"""Provider readiness handshake and model negotiation.

A provider-backed session starts ``connecting``; the negotiator asks the
adapter to preflight it and folds the resulting status and model events
into the session until the provider reports done. Models advertised by
any session of a provider land in the shared per-provider catalog.
"""
from __future__ import annotations

import logging

from agentdesk.adapters.event_bus import EventHub
from agentdesk.adapters.events import (
    ModelsAdvertised,
    StatusChanged,
    StreamDone,
    StreamError,
    preflight_request_id,
)
from agentdesk.engine.errors import AgentDeskError
from agentdesk.engine.message_tree import MessageTree
from agentdesk.engine.models import READY_STATUSES, ModelOption, SessionStatus, parse_status
from agentdesk.engine.providers.registry import ProviderRegistry
from agentdesk.engine.session_store import SessionStore
from agentdesk.shared.models.message import tool_message
from agentdesk.shared.models.session import Session

logger = logging.getLogger(__name__)

DEFAULT_CODEX_MODELS = [
    "gpt-5.2-codex",
    "gpt-5.1-codex-max",
    "gpt-5.1-codex-mini",
    "gpt-5.2",
]


def merge_model_defaults(models: list[str] | None, defaults: list[str] | None) -> list[str]:
    """Defaults first, then extra models; blanks and duplicates dropped."""
    merged: list[str] = []
    seen: set[str] = set()
    for item in [*(defaults or []), *(models or [])]:
        value = str(item or "").strip()
        if not value or value in seen:
            continue
        seen.add(value)
        merged.append(value)
    return merged


def to_model_options(models: list[str]) -> list[ModelOption]:
    return [ModelOption(value=v) for v in (str(m).strip() for m in models) if v]


def is_input_ready(session: Session | None) -> bool:
    """Sends are accepted only once the provider is authenticated."""
    return session is not None and session.status in READY_STATUSES


class ModelCatalog:
    """Model options per provider id. Updates are last-write-wins."""

    def __init__(self, configured: dict[str, list[str]] | None = None) -> None:
        configured = configured or {}
        self._options: dict[str, list[ModelOption]] = {
            "codex": to_model_options(
                merge_model_defaults(configured.get("codex"), DEFAULT_CODEX_MODELS)
            ),
        }
        for provider_id, models in configured.items():
            if provider_id != "codex" and models:
                self._options[provider_id] = to_model_options(merge_model_defaults(models, []))

    def get(self, provider_id: str) -> list[ModelOption]:
        return list(self._options.get(provider_id, []))

    def update(self, provider_id: str, options: list[ModelOption]) -> None:
        self._options[provider_id] = list(options)

    def options_for(self, session: Session) -> list[ModelOption]:
        """The session's advertised models, else the provider's catalog."""
        if session.available_models:
            return list(session.available_models)
        return self.get(session.provider_id)


class PreflightNegotiator:
    """Runs the ``preflight-<session id>`` handshake for sessions."""

    def __init__(
        self,
        store: SessionStore,
        tree: MessageTree,
        hub: EventHub,
        registry: ProviderRegistry,
        catalog: ModelCatalog,
    ) -> None:
        self._store = store
        self._tree = tree
        self._hub = hub
        self._registry = registry
        self._catalog = catalog

    async def start(self, session_id: str) -> bool:
        """Preflight *session_id*. Returns False on failure.

        No retry: a failed session stays ``error`` until the user changes
        its model or creates a new session.
        """
        session = self._store.get(session_id)
        if session is None:
            return False
        try:
            adapter = self._registry.get_or_raise(session.provider_id)
        except AgentDeskError as exc:
            self._fail(session_id, str(exc))
            return False

        self._store.update_session(session_id, {"status": SessionStatus.CONNECTING})
        request_id = preflight_request_id(session_id)
        channel = self._hub.subscribe(request_id)
        logger.info("Preflight %s via %s", session_id, session.provider_id)
        try:
            try:
                await adapter.preflight(session_id, model=session.model or None)
            except AgentDeskError as exc:
                self._fail(session_id, str(exc))
                return False

            ok = True
            async for event in channel.consume():
                if isinstance(event, StatusChanged):
                    status = parse_status(event.status)
                    if status is not None:
                        self._store.update_session(session_id, {"status": status})
                elif isinstance(event, ModelsAdvertised):
                    self._apply_models(session_id, event)
                elif isinstance(event, StreamError):
                    self._fail(session_id, event.message)
                    ok = False
                    break
                elif isinstance(event, StreamDone):
                    break
        finally:
            # A newer preflight of the same session replaced our channel.
            if not channel.closed:
                self._hub.unsubscribe(request_id)

        if ok:
            self._adopt_default_model(session_id)
        return ok

    async def change_model(self, session_id: str, model: str) -> bool:
        """Store a new model for the session and re-run preflight."""
        session = self._store.get(session_id)
        if session is None:
            return False
        model = (model or "").strip()
        if model == session.model:
            return True
        self._store.update_session(session_id, {"model": model})
        return await self.start(session_id)

    def _apply_models(self, session_id: str, event: ModelsAdvertised) -> None:
        session = self._store.get(session_id)
        if session is None or not event.models:
            return
        self._catalog.update(session.provider_id, event.models)
        patch: dict = {"available_models": list(event.models)}
        if not session.model and event.current_model_id:
            patch["model"] = event.current_model_id
        self._store.update_session(session_id, patch)

    def _adopt_default_model(self, session_id: str) -> None:
        session = self._store.get(session_id)
        if session is None or session.model:
            return
        options = self._catalog.options_for(session)
        if options:
            self._store.update_session(session_id, {"model": options[0].value})

    def _fail(self, session_id: str, reason: str) -> None:
        logger.warning("Preflight failed for %s: %s", session_id, reason)
        self._store.update_session(session_id, {"status": SessionStatus.ERROR})
        self._tree.append(session_id, [tool_message(f"Error: {reason}")])
