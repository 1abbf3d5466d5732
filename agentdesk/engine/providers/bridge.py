"""Provider adapter backed by an agent bridge subprocess.

The bridge is a long-lived helper process (one per provider) that speaks
JSON-RPC 2.0 over stdio. Requests:

- ``generation/start``  ``{sessionId, requestId, messages, model?}``
- ``generation/stop``   ``{sessionId}``
- ``session/preflight`` ``{sessionId, requestId, model?}``
- ``permission/respond`` ``{sessionId, callId, response}``

Stream payloads come back as ``agent/event`` notifications with params
``{requestId, event}`` and are forwarded to the event hub.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from collections.abc import Awaitable, Callable
from typing import Any

from agentdesk.adapters.events import preflight_request_id
from agentdesk.engine.errors import ProviderRequestError

from .base import PermissionAck, ProviderAdapter

logger = logging.getLogger(__name__)

EventPublisher = Callable[[str, dict[str, Any]], Awaitable[None]]

EVENT_NOTIFICATION = "agent/event"


class BridgeProviderAdapter(ProviderAdapter):
    """JSON-RPC client for one provider's bridge process.

    The process is started lazily on the first call and restarted if it
    exited. A background reader task routes responses to the pending
    call futures and notifications to *publish*.
    """

    def __init__(
        self,
        provider_id: str,
        command: str,
        args: list[str] | None = None,
        *,
        publish: EventPublisher | None = None,
        label: str | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._provider_id = provider_id
        self._command = self.resolve_command(command)
        self._args = list(args or [])
        self._publish = publish
        self._label = label
        self._env = dict(env or {})
        self._cwd = cwd
        self._timeout = timeout
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task | None = None
        self._start_lock = asyncio.Lock()
        self._rpc_id: int = 0
        self._pending: dict[int, asyncio.Future] = {}
        # Unfinished streams (request id -> session id), failed if the bridge dies.
        self._open_streams: dict[str, str] = {}

    @property
    def name(self) -> str:
        return self._provider_id

    @property
    def label(self) -> str:
        return self._label or super().label

    def set_publisher(self, publish: EventPublisher) -> None:
        self._publish = publish

    def is_available(self) -> bool:
        return shutil.which(self._command) is not None

    def _build_env(self) -> dict[str, str] | None:
        if not self._env:
            return None
        env = os.environ.copy()
        env.update(self._env)
        return env

    def _is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def _ensure_process(self) -> None:
        """Start the bridge subprocess if not running.

        Concurrent first calls share one spawn.
        """
        if self._is_running():
            return
        async with self._start_lock:
            if self._is_running():
                return
            self._process = None
            self._reader = None
            self._writer = None
            await self._spawn()

    async def _spawn(self) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._command, *self._args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=self._build_env(),
                cwd=self._cwd,
            )
        except FileNotFoundError as exc:
            raise ProviderRequestError(
                "start", f"'{self._command}' not found"
            ) from exc
        except OSError as exc:
            raise ProviderRequestError("start", str(exc)) from exc

        self._process = proc
        self._reader = proc.stdout
        self._writer = proc.stdin
        logger.info(
            "Bridge for %s started (pid=%d)", self._provider_id, proc.pid
        )
        self._start_reader(proc.stdout)

    def _start_reader(self, reader: asyncio.StreamReader) -> None:
        self._reader_task = asyncio.create_task(self._read_loop(reader))

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                await self._handle_line(line)
        finally:
            if self._reader is reader or self._reader is None:
                await self._on_bridge_closed()

    async def _handle_line(self, line: bytes) -> None:
        try:
            message = json.loads(line.decode("utf-8", errors="replace"))
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON line from %s bridge", self._provider_id)
            return
        if not isinstance(message, dict):
            return

        if message.get("method") == EVENT_NOTIFICATION:
            params = message.get("params") or {}
            request_id = params.get("requestId")
            event = params.get("event")
            if not request_id or not isinstance(event, dict):
                return
            if event.get("done") or event.get("error"):
                self._open_streams.pop(request_id, None)
            if self._publish is not None:
                await self._publish(request_id, event)
            return

        response_id = message.get("id")
        future = self._pending.pop(response_id, None) if response_id is not None else None
        if future is None or future.done():
            return
        if "error" in message:
            error = message["error"]
            reason = error.get("message") if isinstance(error, dict) else error
            future.set_exception(ProviderRequestError("bridge", str(reason)))
        else:
            future.set_result(message.get("result"))

    async def _on_bridge_closed(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(
                    ProviderRequestError("bridge", "bridge closed connection")
                )
        self._pending.clear()
        streams = list(self._open_streams)
        self._open_streams.clear()
        if streams:
            logger.warning(
                "Bridge for %s exited with %d open streams",
                self._provider_id, len(streams),
            )
        if self._publish is not None:
            for request_id in streams:
                await self._publish(
                    request_id,
                    {"error": "Agent bridge exited", "done": True},
                )

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        """Send one JSON-RPC request and wait for its response."""
        await self._ensure_process()
        if self._writer is None:
            raise ProviderRequestError(method, "bridge not running")

        self._rpc_id += 1
        rpc_id = self._rpc_id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[rpc_id] = future
        request = {
            "jsonrpc": "2.0",
            "id": rpc_id,
            "method": method,
            "params": params,
        }
        try:
            self._writer.write(json.dumps(request).encode("utf-8") + b"\n")
            await self._writer.drain()
            return await asyncio.wait_for(future, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderRequestError(method, "bridge response timeout") from exc
        except ProviderRequestError as exc:
            raise ProviderRequestError(method, exc.reason) from exc
        except (ConnectionError, OSError) as exc:
            raise ProviderRequestError(method, str(exc)) from exc
        finally:
            self._pending.pop(rpc_id, None)

    async def start_generation(
        self,
        session_id: str,
        request_id: str,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
    ) -> None:
        params: dict[str, Any] = {
            "sessionId": session_id,
            "requestId": request_id,
            "messages": messages,
        }
        if model:
            params["model"] = model
        self._open_streams[request_id] = session_id
        try:
            await self._call("generation/start", params)
        except ProviderRequestError:
            self._open_streams.pop(request_id, None)
            raise

    async def stop_generation(self, session_id: str) -> None:
        preflight_id = preflight_request_id(session_id)
        stopped = [
            request_id for request_id, owner in self._open_streams.items()
            if owner == session_id and request_id != preflight_id
        ]
        for request_id in stopped:
            del self._open_streams[request_id]
        await self._call("generation/stop", {"sessionId": session_id})

    async def preflight(self, session_id: str, *, model: str | None = None) -> None:
        request_id = preflight_request_id(session_id)
        params: dict[str, Any] = {"sessionId": session_id, "requestId": request_id}
        if model:
            params["model"] = model
        self._open_streams[request_id] = session_id
        try:
            await self._call("session/preflight", params)
        except ProviderRequestError:
            self._open_streams.pop(request_id, None)
            raise

    async def acknowledge_permission(self, session_id: str, ack: PermissionAck) -> None:
        params = {"sessionId": session_id}
        params.update(ack.to_params())
        await self._call("permission/respond", params)

    async def shutdown(self) -> None:
        """Terminate the bridge subprocess."""
        if self._process is None:
            return
        pid = self._process.pid
        try:
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                self._process.kill()
                await self._process.wait()
            logger.info("Bridge for %s stopped (pid=%d)", self._provider_id, pid)
        except ProcessLookupError:
            logger.debug("Bridge for %s already exited", self._provider_id)
        finally:
            self._process = None
            self._reader = None
            self._writer = None
