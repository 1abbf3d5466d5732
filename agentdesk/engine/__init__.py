"""Agent streaming session engine: sessions, streaming, permissions, preflight."""
from .models import (
    READY_STATUSES,
    ModelOption,
    RequestState,
    SessionStatus,
)
from .config import EngineConfig
from .errors import (
    AgentDeskError,
    CommandExecutionError,
    ConfigError,
    ProviderNotFoundError,
    ProviderRequestError,
)

__all__ = [
    # Models
    "READY_STATUSES",
    "ModelOption",
    "RequestState",
    "SessionStatus",
    # Config
    "EngineConfig",
    "load_yaml_config",
    # Components (lazy import)
    "SessionStore",
    "MessageTree",
    "StreamDispatcher",
    "PermissionGate",
    "PreflightNegotiator",
    "ModelCatalog",
    # Errors
    "AgentDeskError",
    "CommandExecutionError",
    "ConfigError",
    "ProviderNotFoundError",
    "ProviderRequestError",
]


def __getattr__(name: str):
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "SessionStore":
        from .session_store import SessionStore
        return SessionStore
    if name == "MessageTree":
        from .message_tree import MessageTree
        return MessageTree
    if name == "StreamDispatcher":
        from .dispatcher import StreamDispatcher
        return StreamDispatcher
    if name == "PermissionGate":
        from .permission_gate import PermissionGate
        return PermissionGate
    if name == "PreflightNegotiator":
        from .preflight import PreflightNegotiator
        return PreflightNegotiator
    if name == "ModelCatalog":
        from .preflight import ModelCatalog
        return ModelCatalog
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
