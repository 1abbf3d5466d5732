"""YAML configuration loader.

Example YAML:
    engine:
      context_window: 12
      action_program: oc
      sessions_path: ~/.agentdesk/sessions.json

    providers:
      codex:
        type: codex
        command: agentdesk-bridge
        args: ["--provider", "codex"]
        models: [gpt-5.2-codex, gpt-5.2]
      claude:
        type: claude
        label: Claude Code
        command: claude-acp-bridge
        env:
          ANTHROPIC_LOG: error

    defaults:
      provider: codex
      model: gpt-5.2-codex

Sections are optional; missing values fall back to ``EngineConfig``
defaults and the built-in provider table.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BRIDGE_COMMAND = "agentdesk-bridge"

_DEFAULT_LABELS = {
    "codex": "Codex",
    "claude": "Claude",
    "opencode": "OpenCode",
}


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    type: str  # "codex", "claude" or "opencode"
    command: str = DEFAULT_BRIDGE_COMMAND
    args: list[str] = field(default_factory=list)
    label: str | None = None
    models: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class DefaultsConfig:
    """Default settings from YAML."""
    provider: str | None = None
    model: str | None = None


@dataclass
class AppConfig:
    """Complete parsed YAML configuration."""
    engine: EngineConfig
    providers: dict[str, ProviderConfig]
    defaults: DefaultsConfig


def default_provider_configs() -> dict[str, ProviderConfig]:
    """Built-in providers, each reached through the bundled bridge."""
    return {
        name: ProviderConfig(
            type=name,
            args=["--provider", name],
            label=label,
        )
        for name, label in _DEFAULT_LABELS.items()
    }


def _parse_provider(name: str, raw: Any, path: Path) -> ProviderConfig:
    if not isinstance(raw, dict):
        raise ConfigError(str(path), f"provider '{name}' must be a mapping")
    provider_type = raw.get("type", name)
    args = raw.get("args") or []
    if not isinstance(args, list):
        raise ConfigError(str(path), f"provider '{name}': args must be a list")
    models = raw.get("models") or []
    if not isinstance(models, list):
        raise ConfigError(str(path), f"provider '{name}': models must be a list")
    env = raw.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigError(str(path), f"provider '{name}': env must be a mapping")
    return ProviderConfig(
        type=str(provider_type),
        command=str(raw.get("command") or DEFAULT_BRIDGE_COMMAND),
        args=[str(a) for a in args] or (
            ["--provider", name] if not raw.get("command") else []
        ),
        label=raw.get("label") or _DEFAULT_LABELS.get(str(provider_type)),
        models=[str(m) for m in models],
        env={str(k): os.path.expandvars(str(v)) for k, v in env.items()},
    )


def load_yaml_config(path: str | Path) -> AppConfig:
    """Load and parse a YAML config file.

    Raises ConfigError when the file is missing, is not valid YAML, or
    has sections of the wrong shape.
    """
    path = Path(path).expanduser()
    logger.info("load_yaml_config: loading %s", path)
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(str(path), "file not found") from exc
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    # ── Engine config ──────────────────────────────────────────
    engine_raw = raw.get("engine") or {}
    if not isinstance(engine_raw, dict):
        raise ConfigError(str(path), "engine must be a mapping")
    base = EngineConfig.from_env()
    try:
        engine = EngineConfig(
            default_provider=base.default_provider,
            default_model=base.default_model,
            context_window=int(engine_raw.get("context_window", base.context_window)),
            system_prompt=engine_raw.get("system_prompt", base.system_prompt),
            action_marker=engine_raw.get("action_marker", base.action_marker),
            action_program=engine_raw.get("action_program", base.action_program),
            action_cwd=engine_raw.get("action_cwd", base.action_cwd),
            event_queue_size=int(engine_raw.get("event_queue_size", base.event_queue_size)),
            sessions_path=str(Path(
                engine_raw.get("sessions_path", base.sessions_path)
            ).expanduser()),
            persist_debounce_seconds=float(engine_raw.get(
                "persist_debounce_seconds", base.persist_debounce_seconds
            )),
            log_level=engine_raw.get("log_level", base.log_level),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(str(path), f"engine: {exc}") from exc

    # ── Providers ──────────────────────────────────────────────
    providers_raw = raw.get("providers")
    if providers_raw is None:
        providers = default_provider_configs()
    elif isinstance(providers_raw, dict):
        providers = {
            name: _parse_provider(name, cfg, path)
            for name, cfg in providers_raw.items()
        }
    else:
        raise ConfigError(str(path), "providers must be a mapping")

    # ── Defaults ───────────────────────────────────────────────
    defaults_raw = raw.get("defaults") or {}
    if not isinstance(defaults_raw, dict):
        raise ConfigError(str(path), "defaults must be a mapping")
    defaults = DefaultsConfig(
        provider=defaults_raw.get("provider"),
        model=defaults_raw.get("model"),
    )
    if defaults.provider:
        if defaults.provider not in providers:
            raise ConfigError(
                str(path),
                f"defaults.provider '{defaults.provider}' is not a configured provider",
            )
        engine.default_provider = defaults.provider
    if defaults.model:
        engine.default_model = defaults.model

    logger.info(
        "load_yaml_config: %d providers (%s), default=%s",
        len(providers), ", ".join(providers), engine.default_provider,
    )
    return AppConfig(engine=engine, providers=providers, defaults=defaults)
