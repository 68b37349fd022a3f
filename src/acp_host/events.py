from __future__ import annotations

import inspect
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar, List, Literal, Optional, Union

logger = logging.getLogger(__name__)

__all__ = [
    "Connected",
    "Disconnected",
    "Event",
    "EventEmitter",
    "Listener",
    "NotificationReceived",
    "PermissionRequested",
    "ProtocolLog",
    "SessionUpdateReceived",
    "StatusChanged",
    "StderrLine",
    "Stopped",
]

Status = Literal["starting", "connected", "disconnected", "error"]


@dataclass(frozen=True, slots=True)
class Connected:
    type: ClassVar[str] = "connected"
    command: str
    cwd: str
    args: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Disconnected:
    type: ClassVar[str] = "disconnected"
    reason: str


@dataclass(frozen=True, slots=True)
class Stopped:
    type: ClassVar[str] = "stopped"


@dataclass(frozen=True, slots=True)
class StderrLine:
    type: ClassVar[str] = "stderr"
    text: str


@dataclass(frozen=True, slots=True)
class ProtocolLog:
    type: ClassVar[str] = "protocol_log"
    text: str


@dataclass(frozen=True, slots=True)
class NotificationReceived:
    type: ClassVar[str] = "notification"
    payload: dict


@dataclass(frozen=True, slots=True)
class SessionUpdateReceived:
    type: ClassVar[str] = "session_update"
    params: Any


@dataclass(frozen=True, slots=True)
class PermissionRequested:
    type: ClassVar[str] = "permission_request"
    request_id: str
    params: Any


@dataclass(frozen=True, slots=True)
class StatusChanged:
    type: ClassVar[str] = "acp_status_update"
    status: Status
    reason: Optional[str] = None
    attempt: Optional[int] = None


Event = Union[
    Connected,
    Disconnected,
    Stopped,
    StderrLine,
    ProtocolLog,
    NotificationReceived,
    SessionUpdateReceived,
    PermissionRequested,
    StatusChanged,
]

Listener = Callable[[Event], Union[Awaitable[None], None]]


class EventEmitter:
    """Publish/subscribe channel owned by a single connection.

    Listeners are called in subscription order. A listener returning an
    awaitable is awaited before the next one runs, so listeners must not block
    on user interaction. Listener failures are logged and never reach the
    emitter.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event listener failed for %s event", event.type)
