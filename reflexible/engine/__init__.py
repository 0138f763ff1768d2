"""Reflexible session orchestrator: dispatch and follow remote sessions."""
from .models import (
    Artifact,
    ComputeTier,
    DisposePolicy,
    ExecutionContext,
    MaterializeResult,
    Outcome,
    Session,
    SessionState,
    TodoItem,
    TodoStatus,
)
from .config import ClientConfig
from .errors import (
    AuthExpiredError,
    DecodeError,
    DispatchError,
    ProtocolError,
    ReflexibleError,
    RemoteError,
    SessionBusyError,
    SessionFailedError,
    TransportError,
    UserCancelledError,
)
from .sink import CallbackSink, RecordingSink, SessionSink

__all__ = [
    # Orchestrator (lazy import to keep aiohttp off the models path)
    "SessionOrchestrator",
    "SessionReport",
    # Models
    "Artifact",
    "ComputeTier",
    "DisposePolicy",
    "ExecutionContext",
    "MaterializeResult",
    "Outcome",
    "Session",
    "SessionState",
    "TodoItem",
    "TodoStatus",
    # Config
    "ClientConfig",
    "load_yaml_config",
    "TelemetryCollector",
    # Sinks
    "SessionSink",
    "CallbackSink",
    "RecordingSink",
    # Errors
    "AuthExpiredError",
    "DecodeError",
    "DispatchError",
    "ProtocolError",
    "ReflexibleError",
    "RemoteError",
    "SessionBusyError",
    "SessionFailedError",
    "TransportError",
    "UserCancelledError",
]


def __getattr__(name: str):
    if name == "SessionOrchestrator":
        from .orchestrator import SessionOrchestrator
        return SessionOrchestrator
    if name == "SessionReport":
        from .orchestrator import SessionReport
        return SessionReport
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "TelemetryCollector":
        from .telemetry import TelemetryCollector
        return TelemetryCollector
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
