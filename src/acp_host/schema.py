"""Pydantic models for the ACP messages exchanged by the host engine.

Field names follow the wire (camelCase). Models allow extra fields so that
payloads from newer agents survive a validate/dump round trip.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Model(BaseModel):
    model_config = ConfigDict(extra="allow")


# --- Content -------------------------------------------------------------------

class TextContentBlock(_Model):
    type: Literal["text"] = "text"
    text: str


class ResourceContentBlock(_Model):
    type: Literal["resource_link"] = "resource_link"
    uri: str
    name: Optional[str] = None
    mimeType: Optional[str] = None
    title: Optional[str] = None


class ImageContentBlock(_Model):
    type: Literal["image"] = "image"
    data: str
    mimeType: str
    uri: Optional[str] = None


class AudioContentBlock(_Model):
    type: Literal["audio"] = "audio"
    data: str
    mimeType: str


class EmbeddedResourceContentBlock(_Model):
    type: Literal["resource"] = "resource"
    resource: Any


ContentBlock = Annotated[
    Union[
        TextContentBlock,
        ResourceContentBlock,
        ImageContentBlock,
        AudioContentBlock,
        EmbeddedResourceContentBlock,
    ],
    Field(discriminator="type"),
]


# --- initialize / authenticate --------------------------------------------------

class FileSystemCapability(_Model):
    readTextFile: bool = False
    writeTextFile: bool = False


class ClientCapabilities(_Model):
    fs: FileSystemCapability = Field(default_factory=FileSystemCapability)
    terminal: bool = False


class Implementation(_Model):
    name: str
    title: Optional[str] = None
    version: str


class AuthMethod(_Model):
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None


class InitializeRequest(_Model):
    protocolVersion: int
    clientCapabilities: ClientCapabilities = Field(default_factory=ClientCapabilities)
    clientInfo: Optional[Implementation] = None


class InitializeResponse(_Model):
    protocolVersion: int
    agentInfo: Optional[Implementation] = None
    agentCapabilities: Optional[Dict[str, Any]] = None
    authMethods: Optional[List[AuthMethod]] = None


class AuthenticateRequest(_Model):
    methodId: str


# --- sessions --------------------------------------------------------------------

class SessionMode(_Model):
    id: str
    name: str
    description: Optional[str] = None


class SessionModeState(_Model):
    availableModes: List[SessionMode] = Field(default_factory=list)
    currentModeId: Optional[str] = None


class ModelInfo(_Model):
    modelId: str
    name: str
    description: Optional[str] = None


class SessionModelState(_Model):
    availableModels: List[ModelInfo] = Field(default_factory=list)
    currentModelId: Optional[str] = None


class NewSessionRequest(_Model):
    cwd: str
    mcpServers: List[Any] = Field(default_factory=list)


class NewSessionResponse(_Model):
    sessionId: str
    modes: Optional[SessionModeState] = None
    models: Optional[SessionModelState] = None


class LoadSessionRequest(_Model):
    sessionId: str
    cwd: str
    mcpServers: List[Any] = Field(default_factory=list)


class LoadSessionResponse(_Model):
    sessionId: Optional[str] = None
    modes: Optional[SessionModeState] = None
    models: Optional[SessionModelState] = None


# end_turn | max_tokens | max_turn_requests | refusal | cancelled
StopReason = str


class PromptRequest(_Model):
    sessionId: str
    prompt: List[ContentBlock]


class PromptResponse(_Model):
    stopReason: StopReason


class CancelNotification(_Model):
    sessionId: str


class SetSessionModeRequest(_Model):
    sessionId: str
    modeId: str


class SetSessionModelRequest(_Model):
    sessionId: str
    modelId: str


# --- session/update ----------------------------------------------------------------

ToolCallStatus = Literal["pending", "in_progress", "completed", "failed"]
TOOL_CALL_STATUSES = frozenset({"pending", "in_progress", "completed", "failed"})


# Agents in the wild send loosely typed updates. Bad fields are dropped one by
# one instead of failing the whole update.

def _string_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _as_text(value: Any) -> str:
    return str(value) if value else ""


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item if isinstance(item, dict) else {} for item in value]


class UserMessageChunk(_Model):
    sessionUpdate: Literal["user_message_chunk"]
    content: ContentBlock


class AgentMessageChunk(_Model):
    sessionUpdate: Literal["agent_message_chunk"]
    content: ContentBlock


class AgentThoughtChunk(_Model):
    sessionUpdate: Literal["thought_chunk", "agent_thought_chunk"]
    content: ContentBlock


class _ToolCallFields(_Model):
    toolCallId: str = ""
    title: Optional[str] = None
    kind: Optional[str] = None
    status: Optional[ToolCallStatus] = None
    content: Any = None
    locations: Any = None

    @field_validator("toolCallId", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("title", "kind", mode="before")
    @classmethod
    def _coerce_label(cls, value: Any) -> Optional[str]:
        return _string_or_none(value)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) and value in TOOL_CALL_STATUSES else None


class ToolCallStart(_ToolCallFields):
    sessionUpdate: Literal["tool_call"]


class ToolCallProgress(_ToolCallFields):
    sessionUpdate: Literal["tool_call_update"]


class PlanEntry(_Model):
    content: str = ""
    priority: Optional[str] = None
    status: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("priority", "status", mode="before")
    @classmethod
    def _coerce_label(cls, value: Any) -> Optional[str]:
        return _string_or_none(value)


class AgentPlanUpdate(_Model):
    sessionUpdate: Literal["plan"]
    entries: List[PlanEntry] = Field(default_factory=list)

    @field_validator("entries", mode="before")
    @classmethod
    def _coerce_entries(cls, value: Any) -> List[Dict[str, Any]]:
        return _dict_list(value)


class AvailableCommand(_Model):
    name: str = ""
    description: Optional[str] = None
    input: Optional[Dict[str, Any]] = None

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, value: Any) -> Optional[str]:
        return _string_or_none(value)

    @field_validator("input", mode="before")
    @classmethod
    def _coerce_input(cls, value: Any) -> Optional[Dict[str, Any]]:
        return value if isinstance(value, dict) else None


class AvailableCommandsUpdate(_Model):
    sessionUpdate: Literal["available_commands_update"]
    availableCommands: List[AvailableCommand] = Field(default_factory=list)

    @field_validator("availableCommands", mode="before")
    @classmethod
    def _coerce_commands(cls, value: Any) -> List[Dict[str, Any]]:
        return _dict_list(value)


class CurrentModeUpdate(_Model):
    sessionUpdate: Literal["current_mode_update"]
    currentModeId: str = ""

    @field_validator("currentModeId", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return _as_text(value)


class CurrentModelUpdate(_Model):
    sessionUpdate: Literal["current_model_update"]
    currentModelId: str = ""

    @field_validator("currentModelId", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return _as_text(value)


SessionUpdate = Annotated[
    Union[
        UserMessageChunk,
        AgentMessageChunk,
        AgentThoughtChunk,
        ToolCallStart,
        ToolCallProgress,
        AgentPlanUpdate,
        AvailableCommandsUpdate,
        CurrentModeUpdate,
        CurrentModelUpdate,
    ],
    Field(discriminator="sessionUpdate"),
]

SESSION_UPDATE_KINDS = frozenset(
    {
        "user_message_chunk",
        "agent_message_chunk",
        "thought_chunk",
        "agent_thought_chunk",
        "tool_call",
        "tool_call_update",
        "plan",
        "available_commands_update",
        "current_mode_update",
        "current_model_update",
    }
)


class SessionNotification(_Model):
    sessionId: str
    update: SessionUpdate


# --- session/request_permission --------------------------------------------------------

PermissionOptionKind = str


class PermissionOption(_Model):
    optionId: str
    name: str = ""
    kind: PermissionOptionKind = ""


class ToolCallRef(_Model):
    toolCallId: Optional[str] = None
    title: Optional[str] = None
    kind: Optional[str] = None


class RequestPermissionRequest(_Model):
    sessionId: str
    toolCall: Optional[ToolCallRef] = None
    options: List[PermissionOption] = Field(default_factory=list)


class AllowedOutcome(_Model):
    outcome: Literal["selected"] = "selected"
    optionId: str


class DeniedOutcome(_Model):
    outcome: Literal["cancelled"] = "cancelled"


RequestPermissionOutcome = Annotated[
    Union[AllowedOutcome, DeniedOutcome],
    Field(discriminator="outcome"),
]


class RequestPermissionResponse(_Model):
    outcome: RequestPermissionOutcome
