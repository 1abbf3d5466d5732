"""Async event hub bridging provider adapter callbacks to engine consumers.

Adapters push raw payload dicts keyed by request id. The hub parses them
into typed events and queues them on the channel subscribed for that
request, which the dispatcher or preflight negotiator drains.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from agentdesk.adapters.events import StreamEvent, payload_to_events

logger = logging.getLogger(__name__)


class EventChannel:
    """Async queue carrying the events of a single request."""

    def __init__(self, request_id: str, maxsize: int = 5000) -> None:
        self.request_id = request_id
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, event: StreamEvent) -> None:
        if self._closed:
            return
        try:
            # Backpressure instead of dropping
            await asyncio.wait_for(self._queue.put(event), timeout=30.0)
        except asyncio.TimeoutError:
            logger.error(
                "Channel %s blocked for 30s, dropping: %s (queue size: %d)",
                self.request_id,
                event.event_type,
                self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[StreamEvent]:
        """Yield events as they arrive. Stops on close()."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            if self._closed:
                break
            yield event

    def close(self) -> None:
        """Stop the consumer loop permanently; queued events are discarded."""
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()


class EventHub:
    """Routes adapter payloads to the channel of their request id."""

    def __init__(self, maxsize: int = 5000) -> None:
        self._maxsize = maxsize
        self._channels: dict[str, EventChannel] = {}

    def subscribe(self, request_id: str) -> EventChannel:
        """Open a channel for *request_id*, replacing any stale one."""
        previous = self._channels.get(request_id)
        if previous is not None:
            previous.close()
        channel = EventChannel(request_id, maxsize=self._maxsize)
        self._channels[request_id] = channel
        return channel

    def unsubscribe(self, request_id: str) -> None:
        channel = self._channels.pop(request_id, None)
        if channel is not None:
            channel.close()

    def is_subscribed(self, request_id: str) -> bool:
        return request_id in self._channels

    async def publish(self, request_id: str, payload: dict[str, Any]) -> None:
        """Parse *payload* and queue its events for *request_id*.

        Payloads for requests nobody listens to (stopped or finished
        requests) are dropped.
        """
        channel = self._channels.get(request_id)
        if channel is None or channel.closed:
            logger.debug("No subscriber for %s, dropping payload", request_id)
            return
        for event in payload_to_events(payload, request_id):
            await channel.put(event)

    def make_callback(self):
        """Return the async callback adapters use to deliver payloads."""
        return self.publish

    def close_all(self) -> None:
        for channel in self._channels.values():
            channel.close()
        self._channels.clear()
