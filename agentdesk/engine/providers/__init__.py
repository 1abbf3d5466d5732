"""Provider adapters for external coding-agent runtimes."""
from .base import AcpPermissionAck, CodexPermissionAck, PermissionAck, ProviderAdapter
from .bridge import BridgeProviderAdapter
from .registry import ProviderRegistry, build_provider_registry

__all__ = [
    "AcpPermissionAck",
    "BridgeProviderAdapter",
    "CodexPermissionAck",
    "PermissionAck",
    "ProviderAdapter",
    "ProviderRegistry",
    "build_provider_registry",
]
