"""agentdesk: terminal front end for the agent streaming session engine."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console, Group
from rich.markdown import Markdown as RichMarkdown
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from agentdesk.adapters.command_runner import CommandRunner
from agentdesk.adapters.event_bus import EventHub
from agentdesk.engine.actions import split_command_args
from agentdesk.engine.config import EngineConfig
from agentdesk.engine.context import INTENT_PROMPTS, resolve_intent_from_text, strip_intent_command
from agentdesk.engine.dispatcher import StreamDispatcher
from agentdesk.engine.errors import ConfigError
from agentdesk.engine.message_tree import MessageTree
from agentdesk.engine.models import RequestState, SessionStatus
from agentdesk.engine.permission_gate import PermissionGate, PermissionPrompt
from agentdesk.engine.preflight import ModelCatalog, PreflightNegotiator, is_input_ready
from agentdesk.engine.providers.registry import build_provider_registry
from agentdesk.engine.session_store import SessionConfig, SessionStore
from agentdesk.engine.yaml_config import (
    AppConfig,
    DefaultsConfig,
    default_provider_configs,
    load_yaml_config,
)
from agentdesk.shared.models.message import Message, MessageKind, MessageRole
from agentdesk.shared.models.session import Session
from agentdesk.shared.services.persistence import ConversationPersistence, DebouncedSaver

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".agentdesk" / "config.yaml"
LOG_DIR = Path.home() / ".agentdesk" / "logs"

HELP_TEXT = (
    "/new [provider]  /sessions  /switch <n>  /connect  /model [name]  /rename <name>\n"
    "/intent <create|iterate|search>  /run [args]  /delete  /quit"
)

_STATUS_STYLES = {
    SessionStatus.CONNECTING: "yellow",
    SessionStatus.CONNECTED: "blue",
    SessionStatus.AUTHENTICATING: "yellow",
    SessionStatus.AUTHENTICATED: "green",
    SessionStatus.SESSION_ACTIVE: "green",
    SessionStatus.ERROR: "red",
    SessionStatus.DISCONNECTED: "bright_black",
}


def configure_logging(level_name: str, verbose: bool) -> Path:
    """Rotating file log, plus stderr when verbose."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / "agentdesk.log"

    root = logging.getLogger()
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if verbose:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
    return log_file


def load_app_config(path: str | None) -> AppConfig:
    """Explicit --config, else ~/.agentdesk/config.yaml, else built-ins."""
    if path:
        return load_yaml_config(path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_yaml_config(DEFAULT_CONFIG_PATH)
    return AppConfig(
        engine=EngineConfig.from_env(),
        providers=default_provider_configs(),
        defaults=DefaultsConfig(),
    )


def render_message(message: Message):
    """Rich renderable for one timeline message, or None to skip it."""
    if message.kind == MessageKind.THOUGHT:
        return Text(message.content, style="dim italic") if message.content else None
    if message.kind == MessageKind.TOOL:
        return Panel(
            Text(message.content or ""),
            title=message.summary or "tool",
            title_align="left",
            border_style="cyan",
        )
    if not message.content:
        return None
    if message.role == MessageRole.USER:
        return Text(f"> {message.content}", style="bold")
    return RichMarkdown(message.content)


def _search_args_from_history(session: Session) -> list[str]:
    """Rebuild a search command from the latest search request, if any."""
    for message in reversed(session.messages):
        if message.role != MessageRole.USER:
            continue
        if resolve_intent_from_text(message.content) != "search":
            return []
        query = strip_intent_command(message.content)
        return ["search", query] if query else []
    return []


class AgentDeskApp:
    """Wires the engine components together and runs the REPL."""

    def __init__(self, app_config: AppConfig, console: Console | None = None) -> None:
        self.config = app_config.engine
        self.console = console or Console()
        self.hub = EventHub(maxsize=self.config.event_queue_size)
        self.registry = build_provider_registry(
            app_config.providers, self.hub.make_callback()
        )
        self.catalog = ModelCatalog({
            name: cfg.models for name, cfg in app_config.providers.items()
        })
        self.store = SessionStore()
        self.tree = MessageTree(self.store)
        self.gate = PermissionGate(self.registry, self.tree, presenter=self._present_permission)
        self.runner = CommandRunner(self.config.action_program, cwd=self.config.action_cwd)
        self.dispatcher = StreamDispatcher(
            self.store, self.tree, self.hub, self.registry,
            self.gate, self.runner, self.config,
        )
        self.preflight = PreflightNegotiator(
            self.store, self.tree, self.hub, self.registry, self.catalog,
        )
        self.persistence = ConversationPersistence(self.config.sessions_path)
        self.saver = DebouncedSaver(
            self.persistence, self.store, delay=self.config.persist_debounce_seconds,
        )
        self._prompts: asyncio.Queue[PermissionPrompt] = asyncio.Queue()

    # ── Lifecycle ─────────────────────────────────────────────

    def restore(self) -> None:
        snapshot = self.persistence.load()
        if snapshot is not None:
            self.store.restore(snapshot)
        self.saver.attach()

    async def shutdown(self) -> None:
        for session in self.store.sessions:
            await self.dispatcher.stop(session.id)
        self.saver.flush()
        self.saver.detach()
        self.hub.close_all()
        await self.registry.shutdown_all()

    async def new_session(self, provider_id: str | None = None, model: str | None = None) -> Session | None:
        provider_id = provider_id or self.config.default_provider
        if self.registry.get(provider_id) is None:
            self.console.print(
                f"[red]Unknown provider '{provider_id}'.[/red] "
                f"Available: {', '.join(self.registry.list_names()) or 'none'}"
            )
            return None
        session = self.store.create_session(SessionConfig(
            provider_id=provider_id,
            model=model or self.config.default_model,
            provider_label=self.registry.label_for(provider_id),
            status=SessionStatus.CONNECTING,
            available_models=self.catalog.get(provider_id),
        ))
        await self._run_preflight(session.id)
        return session

    async def _run_preflight(self, session_id: str) -> None:
        with self.console.status("Connecting..."):
            await self.preflight.start(session_id)
        session = self.store.get(session_id)
        if session is not None:
            self._print_status(session)

    # ── Permission prompts ────────────────────────────────────

    def _present_permission(self, prompt: PermissionPrompt) -> None:
        self._prompts.put_nowait(prompt)

    async def _answer_prompts(self, status) -> None:
        while True:
            prompt = await self._prompts.get()
            status.stop()
            self.console.print(Panel(
                Text(prompt.message or "The agent requests permission."),
                title=prompt.title,
                border_style="yellow",
            ))
            approved = await asyncio.to_thread(
                Confirm.ask,
                f"{prompt.approve_label}? (no = {prompt.deny_label})",
                console=self.console,
            )
            await self.gate.respond(prompt, approved)
            status.start()

    # ── Sending ───────────────────────────────────────────────

    async def send(self, session: Session, text: str) -> None:
        if not is_input_ready(session):
            self.console.print(
                f"[yellow]Session is {session.status.value if session.status else 'not connected'}; "
                "use /connect to retry.[/yellow]"
            )
            return
        start = len(session.messages)
        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(
                signal.SIGINT,
                lambda: asyncio.ensure_future(self.dispatcher.stop(session.id)),
            )
        status = self.console.status("Generating... (Ctrl-C to stop)")
        answering = asyncio.create_task(self._answer_prompts(status))
        try:
            with status:
                request = await self.dispatcher.send(session.id, text)
        finally:
            answering.cancel()
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)
        if request is None:
            self.console.print("[yellow]A request is already running for this session.[/yellow]")
            return
        self._print_messages(session.messages[start + 1:])
        if request.state != RequestState.COMPLETED:
            self.console.print(f"[bright_black]({request.state.value})[/bright_black]")

    # ── Output ────────────────────────────────────────────────

    def _print_messages(self, messages: list[Message]) -> None:
        renderables = [r for r in (render_message(m) for m in messages) if r is not None]
        if renderables:
            self.console.print(Group(*renderables))

    def _print_status(self, session: Session) -> None:
        status = session.status
        style = _STATUS_STYLES.get(status, "white") if status else "white"
        label = status.value if status else "unknown"
        model = session.model or "default model"
        self.console.print(
            f"[bold]{escape(session.name)}[/bold] [{style}]{label}[/{style}] ({escape(model)})"
        )

    def _print_sessions(self) -> None:
        table = Table(show_header=True, header_style="bold")
        table.add_column("#")
        table.add_column("Name")
        table.add_column("Provider")
        table.add_column("Model")
        table.add_column("Status")
        for index, session in enumerate(self.store.sessions, start=1):
            marker = "*" if session.id == self.store.active_id else ""
            table.add_row(
                f"{index}{marker}",
                escape(session.name),
                session.provider_id,
                session.model,
                session.status.value if session.status else "",
            )
        self.console.print(table)

    # ── Commands ──────────────────────────────────────────────

    async def handle_command(self, line: str) -> bool:
        """Run a slash command. Returns False when the REPL should exit."""
        command, _, rest = line.partition(" ")
        rest = rest.strip()
        active = self.store.active_session

        if command in ("/quit", "/exit"):
            return False
        if command == "/help":
            self.console.print(escape(HELP_TEXT))
        elif command == "/new":
            await self.new_session(rest or None)
        elif command == "/sessions":
            self._print_sessions()
        elif command == "/switch":
            sessions = self.store.sessions
            target = None
            if rest.isdigit() and 0 < int(rest) <= len(sessions):
                target = sessions[int(rest) - 1]
            else:
                target = self.store.get(rest)
            if target is None:
                self.console.print("[red]No such session.[/red]")
            else:
                self.store.set_active(target.id)
                self._print_messages(target.messages)
                if not is_input_ready(target):
                    await self._run_preflight(target.id)
                else:
                    self._print_status(target)
        elif active is None:
            self.console.print("[yellow]No active session; use /new.[/yellow]")
        elif command == "/model":
            if not rest:
                options = self.catalog.options_for(active)
                for option in options:
                    marker = "*" if option.value == active.model else " "
                    self.console.print(f" {marker} {escape(option.value)}  [dim]{escape(option.label)}[/dim]")
            else:
                with self.console.status("Connecting..."):
                    await self.preflight.change_model(active.id, rest)
                self._print_status(active)
        elif command == "/connect":
            await self._run_preflight(active.id)
        elif command == "/rename":
            self.store.rename_session(active.id, rest)
        elif command == "/intent":
            if rest not in INTENT_PROMPTS:
                self.console.print("Usage: /intent <create|iterate|search>")
                return True
            self.store.toggle_intent(active.id, rest)
            current = self.store.get(active.id)
            self.console.print(f"intent: {current.intent or 'none'}")
        elif command == "/run":
            args = split_command_args(rest) if rest else _search_args_from_history(active)
            if not args:
                self.console.print("Usage: /run <args>")
                return True
            start = len(active.messages)
            await self.dispatcher.run_action(active.id, args)
            self._print_messages(active.messages[start:])
        elif command == "/delete":
            await self.dispatcher.delete_session(active.id)
            self.console.print(f"Deleted {escape(active.name)}.")
        else:
            self.console.print(escape(f"Unknown command {command}. {HELP_TEXT}"))
        return True

    async def run(self) -> None:
        self.restore()
        if not self.store.sessions:
            await self.new_session()
        elif self.store.active_session is not None:
            await self._run_preflight(self.store.active_session.id)
        self.console.print(f"[dim]{escape(HELP_TEXT)}[/dim]")

        while True:
            active = self.store.active_session
            prompt = escape(f"[{active.name}] " if active else "[no session] ")
            try:
                line = await asyncio.to_thread(self.console.input, prompt)
            except (EOFError, KeyboardInterrupt):
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/") and not line.lower().startswith("/opencontext-"):
                if not await self.handle_command(line):
                    break
                continue
            if active is None:
                self.console.print("[yellow]No active session; use /new.[/yellow]")
                continue
            await self.send(active, line)


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="agentdesk",
        description="agentdesk: chat with coding agents from the terminal",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file for engine, providers and defaults",
    )
    parser.add_argument(
        "--provider", metavar="ID",
        help="Provider for new sessions (overrides config defaults)",
    )
    parser.add_argument(
        "--sessions-file", metavar="PATH",
        help="Where conversations are stored",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging on stderr",
    )
    args = parser.parse_args()

    log_file = configure_logging(os.getenv("AGENTDESK_LOG_LEVEL", "INFO"), args.verbose)
    logger.info("Starting agentdesk cwd=%s config=%s log=%s",
                Path.cwd(), args.config or "<none>", log_file)

    try:
        app_config = load_app_config(args.config)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    if args.provider:
        app_config.engine.default_provider = args.provider
    if args.sessions_file:
        app_config.engine.sessions_path = args.sessions_file

    async def _main() -> None:
        app = AgentDeskApp(app_config)
        try:
            await app.run()
        finally:
            await app.shutdown()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(1)


if __name__ == "__main__":
    main()
