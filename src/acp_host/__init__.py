from .meta import (
    PROTOCOL_VERSION,
    AGENT_METHODS,
    CLIENT_METHODS,
)
from .schema import (
    TextContentBlock,
    InitializeRequest,
    InitializeResponse,
    Implementation,
    ClientCapabilities,
    NewSessionRequest,
    NewSessionResponse,
    LoadSessionRequest,
    LoadSessionResponse,
    AuthenticateRequest,
    PromptRequest,
    PromptResponse,
    CancelNotification,
    SetSessionModeRequest,
    SetSessionModelRequest,
    SessionNotification,
    PermissionOption,
    RequestPermissionRequest,
    RequestPermissionResponse,
    AllowedOutcome,
    DeniedOutcome,
)
from .exceptions import (
    AcpConnectionError,
    ProcessExitedError,
    ProcessNotRunningError,
    ProcessStartError,
    RequestError,
    StartupError,
    UnknownPermissionRequestError,
)
from .events import (
    Connected,
    Disconnected,
    EventEmitter,
    NotificationReceived,
    PermissionRequested,
    ProtocolLog,
    SessionUpdateReceived,
    StatusChanged,
    StderrLine,
    Stopped,
)
from .core import Connection
from .session import SessionEngine, SessionState, apply_update, replay
from .permissions import PermissionNegotiator, PermissionRequest
from .config import HostSettings, LaunchConfig, load_settings, save_settings
from .supervisor import ProcessSupervisor
from .client import AcpClient
from .agent import Agent, AgentSideConnection
from .stdio import stdio_streams

__all__ = [
    # constants
    "PROTOCOL_VERSION",
    "AGENT_METHODS",
    "CLIENT_METHODS",
    # types
    "TextContentBlock",
    "InitializeRequest",
    "InitializeResponse",
    "Implementation",
    "ClientCapabilities",
    "NewSessionRequest",
    "NewSessionResponse",
    "LoadSessionRequest",
    "LoadSessionResponse",
    "AuthenticateRequest",
    "PromptRequest",
    "PromptResponse",
    "CancelNotification",
    "SetSessionModeRequest",
    "SetSessionModelRequest",
    "SessionNotification",
    "PermissionOption",
    "RequestPermissionRequest",
    "RequestPermissionResponse",
    "AllowedOutcome",
    "DeniedOutcome",
    # errors
    "AcpConnectionError",
    "ProcessExitedError",
    "ProcessNotRunningError",
    "ProcessStartError",
    "RequestError",
    "StartupError",
    "UnknownPermissionRequestError",
    # events
    "Connected",
    "Disconnected",
    "EventEmitter",
    "NotificationReceived",
    "PermissionRequested",
    "ProtocolLog",
    "SessionUpdateReceived",
    "StatusChanged",
    "StderrLine",
    "Stopped",
    # host engine
    "Connection",
    "SessionEngine",
    "SessionState",
    "apply_update",
    "replay",
    "PermissionNegotiator",
    "PermissionRequest",
    "HostSettings",
    "LaunchConfig",
    "load_settings",
    "save_settings",
    "ProcessSupervisor",
    "AcpClient",
    # agent side
    "Agent",
    "AgentSideConnection",
    "stdio_streams",
]
