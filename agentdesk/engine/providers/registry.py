"""Provider registry: maps provider ids to ProviderAdapter instances."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agentdesk.engine.errors import ProviderNotFoundError

from .base import ProviderAdapter

if TYPE_CHECKING:
    from ..yaml_config import ProviderConfig
    from .bridge import EventPublisher

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of provider adapters, keyed by provider id."""

    def __init__(self) -> None:
        self._providers: dict[str, ProviderAdapter] = {}

    def register(self, name: str, provider: ProviderAdapter) -> None:
        self._providers[name] = provider
        logger.info(
            "Provider registered: %s (available=%s)",
            name,
            provider.is_available(),
        )

    def get(self, name: str) -> ProviderAdapter | None:
        return self._providers.get(name)

    def get_or_raise(self, name: str) -> ProviderAdapter:
        """Get a provider by id, raising ProviderNotFoundError if missing."""
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotFoundError(name, self.list_names())
        return provider

    def list_names(self) -> list[str]:
        return list(self._providers.keys())

    def label_for(self, name: str) -> str:
        provider = self._providers.get(name)
        return provider.label if provider is not None else name

    def validate(self) -> dict[str, bool]:
        """Log which providers can be launched and return the report."""
        report = {
            name: p.is_available()
            for name, p in self._providers.items()
        }
        available = [n for n, ok in report.items() if ok]
        unavailable = [n for n, ok in report.items() if not ok]
        if available:
            logger.info("Available providers: %s", ", ".join(available))
        if unavailable:
            logger.warning(
                "Unavailable providers (bridge not installed): %s",
                ", ".join(unavailable),
            )
        return report

    async def shutdown_all(self) -> None:
        """Shut down all registered providers."""
        for name, provider in self._providers.items():
            try:
                await provider.shutdown()
            except Exception as exc:
                logger.error(
                    "Error shutting down provider '%s': %s",
                    name, exc,
                )

    @property
    def count(self) -> int:
        return len(self._providers)


def build_provider_registry(
    provider_configs: dict[str, ProviderConfig],
    publish: EventPublisher,
) -> ProviderRegistry:
    """Build a ProviderRegistry from YAML-sourced provider configs.

    Every provider type is reached through a bridge process. Unknown types
    are skipped; acknowledgement shapes follow each permission event.
    """
    from .bridge import BridgeProviderAdapter

    registry = ProviderRegistry()
    for name, cfg in provider_configs.items():
        if cfg.type not in ("codex", "claude", "opencode"):
            logger.warning(
                "Unknown provider type '%s' for '%s', skipping",
                cfg.type, name,
            )
            continue
        registry.register(name, BridgeProviderAdapter(
            name,
            cfg.command,
            cfg.args,
            publish=publish,
            label=cfg.label,
            env=cfg.env,
        ))

    registry.validate()
    return registry
