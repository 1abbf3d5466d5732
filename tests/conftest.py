import asyncio
from types import SimpleNamespace

import pytest

from agentdesk.adapters.command_runner import CommandResult
from agentdesk.adapters.event_bus import EventHub
from agentdesk.engine.config import EngineConfig
from agentdesk.engine.dispatcher import StreamDispatcher
from agentdesk.engine.errors import CommandExecutionError
from agentdesk.engine.message_tree import MessageTree
from agentdesk.engine.models import SessionStatus
from agentdesk.engine.permission_gate import PermissionGate
from agentdesk.engine.preflight import ModelCatalog, PreflightNegotiator
from agentdesk.engine.providers.base import ProviderAdapter
from agentdesk.engine.providers.registry import ProviderRegistry
from agentdesk.engine.session_store import SessionConfig, SessionStore


class ScriptedAdapter(ProviderAdapter):
    """Provider that replays queued payload scripts through the hub.

    Each ``start_generation`` pops the next script; ``None`` (or an empty
    queue) leaves the request open so tests can stop it.
    """

    def __init__(self, hub: EventHub, provider_id: str = "codex") -> None:
        self._hub = hub
        self._provider_id = provider_id
        self.scripts: list[list[dict] | None] = []
        self.preflight_scripts: list[list[dict]] = []
        self.started: list[SimpleNamespace] = []
        self.stopped: list[str] = []
        self.preflights: list[SimpleNamespace] = []
        self.acks: list = []
        self.start_error: Exception | None = None
        self.ack_error: Exception | None = None

    @property
    def name(self) -> str:
        return self._provider_id

    def is_available(self) -> bool:
        return True

    async def start_generation(self, session_id, request_id, messages, *, model=None) -> None:
        self.started.append(SimpleNamespace(
            session_id=session_id, request_id=request_id, messages=messages, model=model,
        ))
        if self.start_error is not None:
            raise self.start_error
        script = self.scripts.pop(0) if self.scripts else None
        for payload in script or []:
            await self._hub.publish(request_id, payload)

    async def stop_generation(self, session_id) -> None:
        self.stopped.append(session_id)

    async def preflight(self, session_id, *, model=None) -> None:
        self.preflights.append(SimpleNamespace(session_id=session_id, model=model))
        script = self.preflight_scripts.pop(0) if self.preflight_scripts else [{"done": True}]
        for payload in script:
            await self._hub.publish(f"preflight-{session_id}", payload)

    async def acknowledge_permission(self, session_id, ack) -> None:
        if self.ack_error is not None:
            raise self.ack_error
        self.acks.append(ack)


class FakeRunner:
    def __init__(self, result: CommandResult | None = None, program: str = "oc") -> None:
        self.program = program
        self.result = result or CommandResult(stdout="", stderr="", exit_code=0)
        self.fail_with: str | None = None
        self.calls: list[list[str]] = []

    async def run(self, args: list[str]) -> CommandResult:
        self.calls.append(list(args))
        if self.fail_with is not None:
            raise CommandExecutionError(args, self.fail_with)
        return self.result


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def engine():
    hub = EventHub()
    adapter = ScriptedAdapter(hub)
    registry = ProviderRegistry()
    registry.register("codex", adapter)
    store = SessionStore()
    tree = MessageTree(store)
    prompts: list = []
    gate = PermissionGate(registry, tree, presenter=prompts.append)
    runner = FakeRunner()
    dispatcher = StreamDispatcher(store, tree, hub, registry, gate, runner, EngineConfig())
    catalog = ModelCatalog()
    preflight = PreflightNegotiator(store, tree, hub, registry, catalog)
    session = store.create_session(SessionConfig(
        provider_id="codex",
        provider_label="Codex",
        status=SessionStatus.AUTHENTICATED,
    ))
    return SimpleNamespace(
        hub=hub,
        adapter=adapter,
        registry=registry,
        store=store,
        tree=tree,
        gate=gate,
        prompts=prompts,
        runner=runner,
        dispatcher=dispatcher,
        catalog=catalog,
        preflight=preflight,
        session_id=session.id,
        wait_until=wait_until,
    )
