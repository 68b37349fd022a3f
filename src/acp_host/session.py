from __future__ import annotations

import logging
from contextlib import suppress
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .core import Connection
from .events import Event, SessionUpdateReceived, Stopped
from .schema import (
    SESSION_UPDATE_KINDS,
    AgentMessageChunk,
    AgentPlanUpdate,
    AgentThoughtChunk,
    AvailableCommand,
    AvailableCommandsUpdate,
    CurrentModelUpdate,
    CurrentModeUpdate,
    LoadSessionResponse,
    ModelInfo,
    NewSessionResponse,
    PlanEntry,
    SessionMode,
    SessionUpdate,
    TextContentBlock,
    ToolCallProgress,
    ToolCallStart,
    ToolCallStatus,
    UserMessageChunk,
)

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant", "thought"]

TERMINAL_TOOL_STATUSES = frozenset({"completed", "failed"})

_update_adapter: TypeAdapter[SessionUpdate] = TypeAdapter(SessionUpdate)


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    text: str


class ToolCallEntry(BaseModel):
    """Merged view of one tool call."""

    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    title: Optional[str] = None
    kind: Optional[str] = None
    status: Optional[ToolCallStatus] = None
    content: Any = None
    locations: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TOOL_STATUSES


class SessionState(BaseModel):
    """Immutable snapshot of everything derived from a session's update stream."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    cwd: Optional[str] = None
    messages: Tuple[Message, ...] = ()
    tool_calls: Dict[str, ToolCallEntry] = Field(default_factory=dict)
    plan: Tuple[PlanEntry, ...] = ()
    available_commands: Tuple[AvailableCommand, ...] = ()
    current_mode_id: Optional[str] = None
    available_modes: Tuple[SessionMode, ...] = ()
    current_model_id: Optional[str] = None
    available_models: Tuple[ModelInfo, ...] = ()

    @classmethod
    def from_response(
        cls,
        session_id: str,
        cwd: Optional[str] = None,
        response: Union[NewSessionResponse, LoadSessionResponse, None] = None,
    ) -> "SessionState":
        """Empty session seeded with the mode/model option sets of a new/load reply."""
        modes = response.modes if response is not None else None
        models = response.models if response is not None else None
        return cls(
            session_id=session_id,
            cwd=cwd,
            current_mode_id=modes.currentModeId if modes else None,
            available_modes=tuple(modes.availableModes) if modes else (),
            current_model_id=models.currentModelId if models else None,
            available_models=tuple(models.availableModels) if models else (),
        )


# --- Reducer ------------------------------------------------------------------------

def parse_session_update(raw: Any) -> Optional[SessionUpdate]:
    """Validate a raw ``update`` payload; unknown or malformed kinds yield ``None``."""
    if not isinstance(raw, dict):
        return None
    kind = raw.get("sessionUpdate")
    if kind not in SESSION_UPDATE_KINDS:
        logger.debug("Ignoring unknown session update kind: %s", kind)
        return None
    try:
        return _update_adapter.validate_python(raw)
    except ValidationError as exc:
        logger.debug("Ignoring malformed %s update: %s", kind, exc)
        return None


def append_message(messages: Tuple[Message, ...], role: Role, text: str) -> Tuple[Message, ...]:
    if not text:
        return messages
    if messages and messages[-1].role == role:
        last = messages[-1]
        return messages[:-1] + (Message(role=role, text=last.text + text),)
    return messages + (Message(role=role, text=text),)


def _chunk_role(update: Any) -> Optional[Role]:
    if isinstance(update, AgentMessageChunk):
        return "assistant"
    if isinstance(update, UserMessageChunk):
        return "user"
    if isinstance(update, AgentThoughtChunk):
        return "thought"
    return None


def apply_update(state: SessionState, update: SessionUpdate) -> SessionState:
    """Return the state that results from applying one session update."""
    role = _chunk_role(update)
    if role is not None:
        content = update.content
        if not isinstance(content, TextContentBlock) or not content.text:
            return state
        return state.model_copy(update={"messages": append_message(state.messages, role, content.text)})

    if isinstance(update, ToolCallStart):
        if not update.toolCallId:
            return state
        # First sighting: absent fields reset to None rather than inheriting.
        entry = ToolCallEntry(
            tool_call_id=update.toolCallId,
            title=update.title,
            kind=update.kind,
            status=update.status,
            content=update.content,
            locations=update.locations,
        )
        return state.model_copy(update={"tool_calls": {**state.tool_calls, update.toolCallId: entry}})

    if isinstance(update, ToolCallProgress):
        if not update.toolCallId:
            return state
        prior = state.tool_calls.get(update.toolCallId) or ToolCallEntry(tool_call_id=update.toolCallId)
        changes = {
            name: value
            for name, value in (
                ("title", update.title),
                ("kind", update.kind),
                ("status", update.status),
                ("content", update.content),
                ("locations", update.locations),
            )
            if value is not None
        }
        entry = prior.model_copy(update=changes)
        return state.model_copy(update={"tool_calls": {**state.tool_calls, update.toolCallId: entry}})

    if isinstance(update, AgentPlanUpdate):
        return state.model_copy(update={"plan": tuple(update.entries)})

    if isinstance(update, AvailableCommandsUpdate):
        return state.model_copy(update={"available_commands": tuple(update.availableCommands)})

    if isinstance(update, CurrentModeUpdate):
        return state.model_copy(update={"current_mode_id": update.currentModeId})

    if isinstance(update, CurrentModelUpdate):
        return state.model_copy(update={"current_model_id": update.currentModelId})

    return state


def replay(state: SessionState, updates: Iterable[Any]) -> SessionState:
    """Fold raw ``update`` payloads (e.g. a recorded stream) into ``state``."""
    for raw in updates:
        update = parse_session_update(raw)
        if update is not None:
            state = apply_update(state, update)
    return state


# --- Engine -------------------------------------------------------------------------

SessionListener = Callable[[SessionState, SessionUpdate], None]


class SessionEngine:
    """Keeps one :class:`SessionState` per session, fed by a connection's events.

    Sessions are normally opened from a ``session/new``/``session/load`` reply;
    updates for a session that has not been opened yet (``session/load``
    replays history before it answers) create it on the fly. All views are
    dropped on :meth:`reset` and when the connection is stopped.
    """

    def __init__(self, connection: Optional[Connection] = None) -> None:
        self._sessions: Dict[str, SessionState] = {}
        self._subscribers: List[SessionListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        if connection is not None:
            self._unsubscribe = connection.events.subscribe(self._on_event)

    @property
    def sessions(self) -> Dict[str, SessionState]:
        return dict(self._sessions)

    def get(self, session_id: str) -> Optional[SessionState]:
        return self._sessions.get(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def open(
        self,
        session_id: str,
        cwd: Optional[str] = None,
        response: Union[NewSessionResponse, LoadSessionResponse, None] = None,
    ) -> SessionState:
        """Create (or re-seed) a session from a new/load reply.

        Anything already accumulated for the session is kept; only the mode and
        model option sets are taken from the reply.
        """
        seeded = SessionState.from_response(session_id, cwd, response)
        existing = self._sessions.get(session_id)
        if existing is not None:
            changes: Dict[str, Any] = {"cwd": cwd or existing.cwd}
            if response is not None and response.modes is not None:
                changes["current_mode_id"] = seeded.current_mode_id
                changes["available_modes"] = seeded.available_modes
            if response is not None and response.models is not None:
                changes["current_model_id"] = seeded.current_model_id
                changes["available_models"] = seeded.available_models
            seeded = existing.model_copy(update=changes)
        self._sessions[session_id] = seeded
        return seeded

    def apply(self, params: Any) -> Optional[SessionState]:
        """Apply the params of one ``session/update`` notification."""
        if not isinstance(params, dict) or not isinstance(params.get("sessionId"), str):
            logger.debug("Ignoring session/update without a session id: %s", params)
            return None
        update = parse_session_update(params.get("update"))
        if update is None:
            return None
        session_id = params["sessionId"]
        state = self._sessions.get(session_id) or SessionState(session_id=session_id)
        state = apply_update(state, update)
        self._sessions[session_id] = state
        for callback in list(self._subscribers):
            try:
                callback(state, update)
            except Exception:
                logger.exception("Session subscriber failed")
        return state

    def replay(self, session_id: str, updates: Iterable[Any], cwd: Optional[str] = None) -> SessionState:
        """Rebuild a session view from scratch out of recorded ``update`` payloads."""
        state = replay(SessionState(session_id=session_id, cwd=cwd), updates)
        self._sessions[session_id] = state
        return state

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def reset(self) -> None:
        self._sessions.clear()

    def subscribe(self, callback: SessionListener) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._subscribers.remove(callback)

        return unsubscribe

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_event(self, event: Event) -> None:
        if isinstance(event, SessionUpdateReceived):
            self.apply(event.params)
        elif isinstance(event, Stopped):
            self.reset()
