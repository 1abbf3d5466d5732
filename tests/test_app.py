import io
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from agentdesk.app import AgentDeskApp, _search_args_from_history, render_message
from agentdesk.engine.config import EngineConfig
from agentdesk.engine.models import SessionStatus
from agentdesk.engine.session_store import SessionConfig
from agentdesk.engine.yaml_config import AppConfig, DefaultsConfig, default_provider_configs
from agentdesk.shared.models.message import assistant_text, tool_message, user_text
from agentdesk.shared.models.session import Session


def _app(tmpdir: str) -> tuple[AgentDeskApp, io.StringIO]:
    out = io.StringIO()
    config = AppConfig(
        engine=EngineConfig(sessions_path=str(Path(tmpdir) / "sessions.json")),
        providers=default_provider_configs(),
        defaults=DefaultsConfig(),
    )
    return AgentDeskApp(config, console=Console(file=out, width=100)), out


def test_render_message_by_kind() -> None:
    tool = tool_message("exit: 0")
    tool.summary = "done"

    assert render_message(assistant_text("")) is None
    assert isinstance(render_message(assistant_text("**hi**")), Markdown)
    assert isinstance(render_message(tool), Panel)
    assert "> question" in str(render_message(user_text("question")))


@pytest.mark.asyncio
async def test_commands_manage_sessions() -> None:
    with TemporaryDirectory() as tmpdir:
        app, out = _app(tmpdir)
        session = app.store.create_session(SessionConfig(
            provider_id="codex", provider_label="Codex", status=SessionStatus.AUTHENTICATED,
        ))

        assert await app.handle_command("/rename Release notes")
        assert await app.handle_command("/intent search")
        assert await app.handle_command("/sessions")
        assert session.name == "Release notes"
        assert session.intent == "search"
        assert "Release notes" in out.getvalue()

        assert await app.handle_command("/new ghost")
        assert "Unknown provider 'ghost'" in out.getvalue()
        assert len(app.store.sessions) == 1

        assert await app.handle_command("/delete")
        assert app.store.sessions == []
        assert not await app.handle_command("/quit")
        await app.shutdown()


@pytest.mark.asyncio
async def test_send_requires_ready_session() -> None:
    with TemporaryDirectory() as tmpdir:
        app, out = _app(tmpdir)
        session = app.store.create_session(SessionConfig(
            provider_id="codex", status=SessionStatus.ERROR,
        ))

        await app.send(session, "hello")

        assert session.messages == []
        assert "Session is error" in out.getvalue()
        await app.shutdown()


def test_run_without_args_reuses_last_search() -> None:
    session = Session(id="s1", name="Codex 1", provider_id="codex")
    assert _search_args_from_history(session) == []

    session.messages = [user_text("/opencontext-search release plan"), assistant_text("ok")]
    assert _search_args_from_history(session) == ["search", "release plan"]

    session.messages.append(user_text("thanks"))
    assert _search_args_from_history(session) == []
