import pytest

from agentdesk.adapters.command_runner import CommandResult
from agentdesk.engine.errors import ProviderRequestError
from agentdesk.engine.models import RequestState, SessionStatus
from agentdesk.shared.models.message import MessageKind, MessageRole


def _exec_event(call_id: str, kind: str, **data) -> dict:
    return {"tool": {"type": kind, "callId": call_id, "data": data}}


def _shape(messages) -> list[tuple[str, str, str]]:
    return [(m.role.value, m.kind.value, m.content) for m in messages]


@pytest.mark.asyncio
async def test_tool_event_splits_reply_around_tool_message(engine) -> None:
    engine.adapter.scripts.append([
        {"status": "task_started"},
        {"content": "Hi"},
        _exec_event("c1", "exec_command_begin", command=["ls", "-la"]),
        _exec_event("c1", "exec_command_end", exit_code=0),
        {"content": " there"},
        {"done": True},
    ])

    request = await engine.dispatcher.send(engine.session_id, "list files")

    session = engine.store.get(engine.session_id)
    user, first, tool, second = session.messages
    assert request.state == RequestState.COMPLETED
    assert _shape(session.messages) == [
        ("user", "text", "list files"),
        ("assistant", "text", "Hi"),
        ("tool", "tool", "> ls -la\nexit: 0"),
        ("assistant", "text", " there"),
    ]
    assert tool.anchor_id == first.id
    assert engine.dispatcher.current(engine.session_id) is None


@pytest.mark.asyncio
async def test_assistant_text_concatenates_to_full_stream(engine) -> None:
    deltas = ["The ", "answer ", "is ", "42."]
    engine.adapter.scripts.append([
        {"content": deltas[0]},
        _exec_event("a", "exec_command_begin", command="pwd"),
        {"content": deltas[1]},
        _exec_event("b", "mcp_tool_call_begin", toolName="search"),
        {"content": deltas[2]},
        _exec_event("a", "exec_command_output_delta", chunk="/tmp"),
        {"content": deltas[3]},
        {"done": True},
    ])

    await engine.dispatcher.send(engine.session_id, "question")

    messages = engine.store.get(engine.session_id).messages
    text = "".join(
        m.content for m in messages
        if m.role == MessageRole.ASSISTANT and m.kind == MessageKind.TEXT
    )
    tools = [m for m in messages if m.kind == MessageKind.TOOL]
    assert text == "".join(deltas)
    assert [t.content for t in tools] == ["> pwd\n/tmp", "MCP: search"]


@pytest.mark.asyncio
async def test_reasoning_goes_to_thought_after_user_message(engine) -> None:
    engine.adapter.scripts.append([
        {"reasoning": "Thinking"},
        {"reasoning": " harder"},
        {"content": "Answer"},
        {"done": True},
    ])

    await engine.dispatcher.send(engine.session_id, "why?")

    messages = engine.store.get(engine.session_id).messages
    assert [m.kind for m in messages] == [
        MessageKind.TEXT, MessageKind.THOUGHT, MessageKind.TEXT,
    ]
    assert messages[1].content == "Thinking harder"
    assert messages[2].content == "Answer"


@pytest.mark.asyncio
async def test_patch_events_set_summary(engine) -> None:
    engine.adapter.scripts.append([
        _exec_event("p", "patch_apply_begin"),
        _exec_event("p", "patch_apply_end", success=True, appliedChanges=["a.py"]),
        {"done": True},
    ])

    await engine.dispatcher.send(engine.session_id, "patch it")

    tool = engine.store.get(engine.session_id).messages[2]
    assert tool.summary == "Patch applied"
    assert tool.content == "Applying patch\nPatch applied\napplied: a.py"


@pytest.mark.asyncio
async def test_duplicate_permission_prompts_once_and_acks_once(engine) -> None:
    permission = {
        "permission": {
            "callId": "p1",
            "type": "exec_approval_request",
            "data": {"command": ["rm", "build"], "cwd": "/repo"},
        }
    }
    engine.adapter.scripts.append([permission, permission, {"done": True}])

    await engine.dispatcher.send(engine.session_id, "clean up")

    assert len(engine.prompts) == 1
    prompt = engine.prompts[0]
    tools = [
        m for m in engine.store.get(engine.session_id).messages
        if m.kind == MessageKind.TOOL
    ]
    assert len(tools) == 1
    assert tools[0].content == "Command: rm build\ncwd: /repo"

    assert await engine.gate.respond(prompt, True)
    assert not await engine.gate.respond(prompt, False)
    assert len(engine.adapter.acks) == 1
    assert engine.adapter.acks[0].to_params() == {
        "callId": "p1",
        "response": {"call_id": "p1", "type": "exec_approval_request", "approved": True},
    }


@pytest.mark.asyncio
async def test_action_directive_is_stripped_and_executed(engine) -> None:
    engine.runner.result = CommandResult(stdout="doc-1\n", stderr="warn\n", exit_code=0)
    engine.adapter.scripts.append([
        {"content": "Done.\nOC_ACTION: search foo"},
        {"done": True},
    ])

    request = await engine.dispatcher.send(engine.session_id, "find foo")

    messages = engine.store.get(engine.session_id).messages
    assert messages[1].content == "Done."
    assert engine.runner.calls == [["search", "foo"]]
    assert request.action_args == ["search", "foo"]
    tool = messages[2]
    assert tool.kind == MessageKind.TOOL
    assert tool.anchor_id == messages[1].id
    assert tool.content == "$ oc search foo\ndoc-1\nwarn\nexit: 0"


@pytest.mark.asyncio
async def test_action_runner_failure_stays_in_conversation(engine) -> None:
    engine.runner.fail_with = "'oc' not found"
    engine.adapter.scripts.append([
        {"content": "OK\nOC_ACTION: oc doc create notes"},
        {"done": True},
    ])

    await engine.dispatcher.send(engine.session_id, "make a doc")

    session = engine.store.get(engine.session_id)
    assert engine.runner.calls == [["doc", "create", "notes"]]
    assert session.messages[2].content.endswith("'oc' not found")
    assert session.status == SessionStatus.AUTHENTICATED


@pytest.mark.asyncio
async def test_stream_error_marks_session_and_appends_tool(engine) -> None:
    engine.adapter.scripts.append([{"content": "partial"}, {"error": "rate limited"}])

    request = await engine.dispatcher.send(engine.session_id, "go")

    session = engine.store.get(engine.session_id)
    assert request.state == RequestState.ERRORED
    assert request.error == "rate limited"
    assert session.status == SessionStatus.ERROR
    assert _shape(session.messages)[-2:] == [
        ("assistant", "text", "partial"),
        ("tool", "tool", "Error: rate limited"),
    ]
    assert not engine.hub.is_subscribed(request.request_id)


@pytest.mark.asyncio
async def test_start_generation_failure_finalizes_as_error(engine) -> None:
    engine.adapter.start_error = ProviderRequestError("generation/start", "bridge not running")

    request = await engine.dispatcher.send(engine.session_id, "go")

    session = engine.store.get(engine.session_id)
    assert request.state == RequestState.ERRORED
    assert session.status == SessionStatus.ERROR
    assert session.messages[-1].content == "Error: generation/start failed: bridge not running"
    assert engine.dispatcher.current(engine.session_id) is None


@pytest.mark.asyncio
async def test_provider_stopped_status_cancels_request(engine) -> None:
    engine.adapter.scripts.append([{"content": "half"}, {"status": "stopped"}])

    request = await engine.dispatcher.send(engine.session_id, "go")

    assert request.state == RequestState.CANCELLED
    assert engine.store.get(engine.session_id).status == SessionStatus.AUTHENTICATED


@pytest.mark.asyncio
async def test_status_events_update_session_and_unknown_ones_are_ignored(engine) -> None:
    engine.adapter.scripts.append([
        {"status": "session_active"},
        {"status": "warming_up"},
        {"done": True},
    ])

    await engine.dispatcher.send(engine.session_id, "go")

    assert engine.store.get(engine.session_id).status == SessionStatus.SESSION_ACTIVE


@pytest.mark.asyncio
async def test_send_builds_context_and_titles_session(engine) -> None:
    engine.adapter.scripts.append([{"content": "first"}, {"done": True}])
    engine.adapter.scripts.append([{"done": True}])

    await engine.dispatcher.send(engine.session_id, "Search notes\nmore detail")
    await engine.dispatcher.send(engine.session_id, "/opencontext-search release plan")

    session = engine.store.get(engine.session_id)
    assert session.name == "Search notes"
    first_call, second_call = engine.adapter.started
    assert first_call.request_id != second_call.request_id
    system = second_call.messages[0]
    assert system["role"] == "system"
    assert "Active coding agent: Codex" in system["content"]
    assert "OpenContext search flow" in system["content"]
    assert second_call.messages[1:] == [
        {"role": "user", "content": "Search notes\nmore detail"},
        {"role": "assistant", "content": "first"},
        {"role": "user", "content": "/opencontext-search release plan"},
    ]


@pytest.mark.asyncio
async def test_blank_text_and_unknown_session_are_rejected(engine) -> None:
    assert await engine.dispatcher.send(engine.session_id, "   ") is None
    assert await engine.dispatcher.send("session-missing", "hi") is None
    assert engine.adapter.started == []
