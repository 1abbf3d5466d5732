import asyncio

import pytest

from agentdesk.engine.models import RequestState, SessionStatus


async def _start_open_request(engine) -> asyncio.Task:
    """Start a send whose provider never finishes on its own."""
    engine.adapter.scripts.append([{"status": "task_started"}, {"content": "Hel"}])
    task = asyncio.create_task(engine.dispatcher.send(engine.session_id, "hello"))
    await engine.wait_until(
        lambda: engine.store.get(engine.session_id).messages
        and engine.store.get(engine.session_id).messages[-1].content == "Hel"
    )
    return task


@pytest.mark.asyncio
async def test_stop_cancels_and_drops_late_deltas(engine) -> None:
    task = await _start_open_request(engine)
    request = engine.dispatcher.current(engine.session_id)
    assert engine.dispatcher.is_generating(engine.session_id)

    assert await engine.dispatcher.stop(engine.session_id)
    await engine.hub.publish(request.request_id, {"content": "lo"})
    finished = await asyncio.wait_for(task, timeout=2.0)

    session = engine.store.get(engine.session_id)
    assert finished is request
    assert request.state == RequestState.CANCELLED
    assert request.stop_requested
    assert session.status == SessionStatus.DISCONNECTED
    assert session.messages[-1].content == "Hel"
    assert engine.adapter.stopped == [engine.session_id]
    assert engine.dispatcher.current(engine.session_id) is None


@pytest.mark.asyncio
async def test_stop_without_request_is_noop(engine) -> None:
    assert not await engine.dispatcher.stop(engine.session_id)
    assert engine.adapter.stopped == []
    assert engine.store.get(engine.session_id).status == SessionStatus.AUTHENTICATED


@pytest.mark.asyncio
async def test_second_send_while_streaming_is_rejected(engine) -> None:
    task = await _start_open_request(engine)

    assert await engine.dispatcher.send(engine.session_id, "again") is None
    assert len(engine.adapter.started) == 1

    await engine.dispatcher.stop(engine.session_id)
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_send_after_stop_uses_fresh_request_id(engine) -> None:
    task = await _start_open_request(engine)
    first = engine.dispatcher.current(engine.session_id)
    await engine.dispatcher.stop(engine.session_id)
    await asyncio.wait_for(task, timeout=2.0)

    # Re-authenticated by preflight before the next send.
    engine.store.update_session(engine.session_id, {"status": SessionStatus.AUTHENTICATED})
    engine.adapter.scripts.append([{"content": "fresh"}, {"done": True}])
    second = await engine.dispatcher.send(engine.session_id, "retry")

    assert second.request_id != first.request_id
    assert second.state == RequestState.COMPLETED
    assert engine.store.get(engine.session_id).messages[-1].content == "fresh"


@pytest.mark.asyncio
async def test_events_for_superseded_request_are_ignored(engine) -> None:
    task = await _start_open_request(engine)
    first = engine.dispatcher.current(engine.session_id)
    await engine.dispatcher.stop(engine.session_id)
    await asyncio.wait_for(task, timeout=2.0)

    engine.adapter.scripts.append(None)
    second_task = asyncio.create_task(engine.dispatcher.send(engine.session_id, "next"))
    await engine.wait_until(lambda: len(engine.adapter.started) == 2)
    await engine.hub.publish(first.request_id, {"content": "stale", "done": True})
    second = engine.dispatcher.current(engine.session_id)
    await engine.hub.publish(second.request_id, {"content": "new", "done": True})
    await asyncio.wait_for(second_task, timeout=2.0)

    contents = [m.content for m in engine.store.get(engine.session_id).messages]
    assert "stale" not in "".join(contents)
    assert contents[-1] == "new"


@pytest.mark.asyncio
async def test_delete_session_stops_request_and_forgets_permissions(engine) -> None:
    task = await _start_open_request(engine)
    engine.gate.claim(engine.session_id, "p1")

    assert await engine.dispatcher.delete_session(engine.session_id)
    await asyncio.wait_for(task, timeout=2.0)

    assert engine.store.get(engine.session_id) is None
    assert engine.adapter.stopped == [engine.session_id]
    assert not engine.gate.is_handled(engine.session_id, "p1")
