"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via AGENTDESK_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SESSIONS_PATH = str(Path.home() / ".agentdesk" / "sessions.json")


@dataclass
class EngineConfig:
    """Streaming session engine configuration."""

    # Provider used for new sessions when none is given.
    default_provider: str = "codex"
    default_model: str | None = None

    # Number of trailing user/assistant text messages sent as context.
    context_window: int = 12
    # Replaces the built-in system preamble when set.
    system_prompt: str | None = None

    # Trailing "<marker>: <args>" line in a finished reply runs a command.
    action_marker: str = "OC_ACTION"
    action_program: str = "oc"
    action_cwd: str | None = None

    # Per-request event channel capacity
    event_queue_size: int = 5000

    # Persistence
    sessions_path: str = DEFAULT_SESSIONS_PATH
    persist_debounce_seconds: float = 0.6

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from AGENTDESK_* environment variables."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("AGENTDESK_")
        }
        if env_vars:
            logger.info(
                "EngineConfig.from_env: AGENTDESK_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(env_vars.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no AGENTDESK_* env vars set, using defaults")

        config = cls(
            default_provider=os.getenv(
                "AGENTDESK_DEFAULT_PROVIDER", cls.default_provider
            ),
            default_model=os.getenv("AGENTDESK_DEFAULT_MODEL") or None,
            context_window=int(os.getenv(
                "AGENTDESK_CONTEXT_WINDOW", str(cls.context_window)
            )),
            system_prompt=os.getenv("AGENTDESK_SYSTEM_PROMPT") or None,
            action_marker=os.getenv(
                "AGENTDESK_ACTION_MARKER", cls.action_marker
            ),
            action_program=os.getenv(
                "AGENTDESK_ACTION_PROGRAM", cls.action_program
            ),
            action_cwd=os.getenv("AGENTDESK_ACTION_CWD") or None,
            event_queue_size=int(os.getenv(
                "AGENTDESK_QUEUE_SIZE", str(cls.event_queue_size)
            )),
            sessions_path=os.getenv(
                "AGENTDESK_SESSIONS_PATH", cls.sessions_path
            ),
            persist_debounce_seconds=float(os.getenv(
                "AGENTDESK_PERSIST_DEBOUNCE",
                str(cls.persist_debounce_seconds),
            )),
            log_level=os.getenv("AGENTDESK_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "EngineConfig.from_env: provider=%s window=%d action=%s log_level=%s",
            config.default_provider, config.context_window,
            config.action_program, config.log_level,
        )
        return config
