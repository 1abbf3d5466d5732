import asyncio
import contextlib
import json

import pytest

from agentdesk.engine.errors import ProviderRequestError
from agentdesk.engine.providers.base import AcpPermissionAck
from agentdesk.engine.providers.bridge import BridgeProviderAdapter


class _FakeReader:
    def __init__(self, lines: list[dict]) -> None:
        self._lines = [(json.dumps(line) + "\n").encode("utf-8") for line in lines]

    async def readline(self) -> bytes:
        if not self._lines:
            return b""
        return self._lines.pop(0)


class _FakeWriter:
    def __init__(self) -> None:
        self.writes: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.writes.append(data)

    async def drain(self) -> None:
        return None

    def requests(self) -> list[dict]:
        return [json.loads(data) for data in self.writes]


class _EchoBridge:
    """In-memory bridge process that answers every request with a null result."""

    def __init__(self) -> None:
        self.pid = 4242
        self.returncode = None
        self.requests: list[dict] = []
        self._replies: asyncio.Queue[bytes] = asyncio.Queue()

    def write(self, data: bytes) -> None:
        request = json.loads(data)
        self.requests.append(request)
        reply = {"jsonrpc": "2.0", "id": request["id"], "result": None}
        self._replies.put_nowait((json.dumps(reply) + "\n").encode("utf-8"))

    async def drain(self) -> None:
        return None

    async def readline(self) -> bytes:
        return await self._replies.get()


def _adapter(lines: list[dict]):
    published: list[tuple[str, dict]] = []

    async def _publish(request_id: str, payload: dict) -> None:
        published.append((request_id, payload))

    adapter = BridgeProviderAdapter("codex", "agentdesk-bridge", publish=_publish)
    adapter._reader = _FakeReader(lines)
    adapter._writer = _FakeWriter()

    async def _ready() -> None:
        if adapter._reader_task is None or adapter._reader_task.done():
            adapter._start_reader(adapter._reader)

    adapter._ensure_process = _ready  # type: ignore[method-assign]
    return adapter, published


def _event(request_id: str, event: dict) -> dict:
    return {
        "jsonrpc": "2.0",
        "method": "agent/event",
        "params": {"requestId": request_id, "event": event},
    }


@pytest.mark.asyncio
async def test_start_generation_sends_request_and_forwards_events() -> None:
    adapter, published = _adapter([
        _event("req-1", {"content": "hi"}),
        {"jsonrpc": "2.0", "id": 1, "result": {"accepted": True}},
        _event("req-1", {"done": True}),
    ])
    messages = [{"role": "user", "content": "hello"}]

    await adapter.start_generation("s1", "req-1", messages, model="gpt-5.2")
    await adapter._reader_task

    (request,) = adapter._writer.requests()
    assert request["method"] == "generation/start"
    assert request["params"] == {
        "sessionId": "s1",
        "requestId": "req-1",
        "messages": messages,
        "model": "gpt-5.2",
    }
    assert published == [("req-1", {"content": "hi"}), ("req-1", {"done": True})]


@pytest.mark.asyncio
async def test_bridge_exit_fails_open_streams() -> None:
    adapter, published = _adapter([
        {"jsonrpc": "2.0", "id": 1, "result": None},
        _event("req-1", {"content": "partial"}),
    ])

    await adapter.start_generation("s1", "req-1", [])
    await adapter._reader_task

    assert published[-1] == ("req-1", {"error": "Agent bridge exited", "done": True})


@pytest.mark.asyncio
async def test_error_response_raises_provider_request_error() -> None:
    adapter, _ = _adapter([
        {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "no such session"}},
    ])

    with pytest.raises(ProviderRequestError) as excinfo:
        await adapter.stop_generation("s1")

    assert str(excinfo.value) == "generation/stop failed: no such session"
    assert excinfo.value.method == "generation/stop"


@pytest.mark.asyncio
async def test_closed_bridge_fails_pending_call() -> None:
    adapter, _ = _adapter([])

    with pytest.raises(ProviderRequestError, match="bridge closed connection"):
        await adapter.preflight("s1", model="o4-mini")

    request = adapter._writer.requests()[0]
    assert request["method"] == "session/preflight"
    assert request["params"] == {
        "sessionId": "s1",
        "requestId": "preflight-s1",
        "model": "o4-mini",
    }


@pytest.mark.asyncio
async def test_acknowledge_permission_sends_ack_params() -> None:
    adapter, _ = _adapter([{"jsonrpc": "2.0", "id": 1, "result": {}}])

    await adapter.acknowledge_permission("s1", AcpPermissionAck(call_id="tc", option_id="allow"))

    (request,) = adapter._writer.requests()
    assert request["method"] == "permission/respond"
    assert request["params"] == {
        "sessionId": "s1",
        "callId": "tc",
        "response": {"outcome": {"outcome": "selected", "optionId": "allow"}},
    }


@pytest.mark.asyncio
async def test_missing_bridge_binary_raises_on_first_call() -> None:
    adapter = BridgeProviderAdapter("claude", "agentdesk-no-such-bridge-binary")

    assert not adapter.is_available()
    with pytest.raises(ProviderRequestError, match="not found"):
        await adapter.start_generation("s1", "req-1", [])
    assert adapter.label == "Claude"


def _echo_adapter():
    published: list[tuple[str, dict]] = []
    bridges: list[_EchoBridge] = []

    async def _publish(request_id: str, payload: dict) -> None:
        published.append((request_id, payload))

    adapter = BridgeProviderAdapter("codex", "agentdesk-bridge", publish=_publish, timeout=1.0)

    async def _spawn() -> None:
        await asyncio.sleep(0)
        bridge = _EchoBridge()
        bridges.append(bridge)
        adapter._process = bridge
        adapter._reader = bridge
        adapter._writer = bridge
        adapter._start_reader(bridge)

    adapter._spawn = _spawn  # type: ignore[method-assign]
    return adapter, bridges, published


async def _close_bridge(adapter: BridgeProviderAdapter) -> None:
    adapter._reader_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await adapter._reader_task


@pytest.mark.asyncio
async def test_concurrent_first_calls_share_one_bridge() -> None:
    adapter, bridges, _ = _echo_adapter()

    results = await asyncio.gather(adapter.preflight("s1"), adapter.preflight("s2"))

    assert results == [None, None]
    assert len(bridges) == 1
    assert [r["params"]["sessionId"] for r in bridges[0].requests] == ["s1", "s2"]
    await _close_bridge(adapter)


@pytest.mark.asyncio
async def test_stop_forgets_open_streams_of_the_session() -> None:
    adapter, _, published = _echo_adapter()

    await adapter.start_generation("s1", "req-1", [])
    await adapter.start_generation("s2", "req-2", [])
    await adapter.stop_generation("s1")
    await _close_bridge(adapter)

    assert published == [("req-2", {"error": "Agent bridge exited", "done": True})]
