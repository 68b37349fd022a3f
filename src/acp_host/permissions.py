from __future__ import annotations

import inspect
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from .core import Connection
from .events import Disconnected, Event, PermissionRequested, Stopped
from .schema import (
    AllowedOutcome,
    DeniedOutcome,
    PermissionOption,
    RequestPermissionOutcome,
    RequestPermissionRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_TOOL_KIND = "other"

_outcome_adapter: TypeAdapter[RequestPermissionOutcome] = TypeAdapter(RequestPermissionOutcome)


class PermissionRequest(BaseModel):
    """A permission request waiting for (or given) an answer."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    session_id: str
    tool_call_id: Optional[str] = None
    tool_kind: Optional[str] = None
    title: Optional[str] = None
    options: Tuple[PermissionOption, ...] = ()

    @property
    def remember_key(self) -> str:
        return self.tool_kind or DEFAULT_TOOL_KIND

    def option(self, option_id: str) -> Optional[PermissionOption]:
        for option in self.options:
            if option.optionId == option_id:
                return option
        return None

    @classmethod
    def from_event(cls, event: PermissionRequested) -> "PermissionRequest":
        params = RequestPermissionRequest.model_validate(event.params)
        tool_call = params.toolCall
        return cls(
            request_id=event.request_id,
            session_id=params.sessionId,
            tool_call_id=tool_call.toolCallId if tool_call else None,
            tool_kind=tool_call.kind if tool_call else None,
            title=tool_call.title if tool_call else None,
            options=tuple(params.options),
        )


PermissionListener = Callable[[PermissionRequest], Union[Awaitable[None], None]]
Outcome = Union[AllowedOutcome, DeniedOutcome, Dict[str, Any]]


def first_allow_option(options: Tuple[PermissionOption, ...]) -> Optional[PermissionOption]:
    for option in options:
        if option.kind.startswith("allow"):
            return option
    return None


class PermissionNegotiator:
    """Answers ``session/request_permission`` calls for one conversation view.

    Each request is resolved exactly once, in this order of preference:

    1. auto-allow: the first option whose kind starts with ``allow``;
    2. a choice remembered for the request's tool kind, if the agent still
       offers that option;
    3. the user: the request is handed to subscribers and stays pending until
       :meth:`respond` is called.
    """

    def __init__(self, connection: Connection, *, auto_allow: bool = False) -> None:
        self._connection = connection
        self.auto_allow = auto_allow
        self._remembered: Dict[str, str] = {}
        self._awaiting: Dict[str, PermissionRequest] = {}
        self._listeners: List[PermissionListener] = []
        self._unsubscribe: Optional[Callable[[], None]] = connection.events.subscribe(self._on_event)

    @property
    def awaiting(self) -> List[PermissionRequest]:
        return list(self._awaiting.values())

    @property
    def remembered(self) -> Dict[str, str]:
        return dict(self._remembered)

    def subscribe(self, listener: PermissionListener) -> Callable[[], None]:
        """Register the collaborator that asks the user; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def choose_automatically(self, request: PermissionRequest) -> Optional[PermissionOption]:
        if self.auto_allow:
            option = first_allow_option(request.options)
            if option is not None:
                return option
        remembered = self._remembered.get(request.remember_key)
        if remembered is not None:
            return request.option(remembered)
        return None

    async def respond(self, request_id: str, outcome: Outcome, *, remember: bool = False) -> None:
        """Send the user's decision; ``remember`` reuses a selection for the same tool kind."""
        if isinstance(outcome, dict):
            outcome = _outcome_adapter.validate_python(outcome)
        key = str(request_id)
        request = self._awaiting.get(key)
        await self._connection.respond_permission(key, outcome)
        self._awaiting.pop(key, None)
        if remember and request is not None and isinstance(outcome, AllowedOutcome):
            self._remembered[request.remember_key] = outcome.optionId

    async def select(self, request_id: str, option_id: str, *, remember: bool = False) -> None:
        await self.respond(request_id, AllowedOutcome(optionId=option_id), remember=remember)

    async def cancel(self, request_id: str) -> None:
        await self.respond(request_id, DeniedOutcome())

    def reset(self) -> None:
        """Forget remembered choices and pending requests (new conversation view)."""
        self._remembered.clear()
        self._awaiting.clear()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_event(self, event: Event) -> None:
        if isinstance(event, PermissionRequested):
            await self._handle_request(event)
        elif isinstance(event, (Disconnected, Stopped)):
            self._awaiting.clear()

    async def _handle_request(self, event: PermissionRequested) -> None:
        try:
            request = PermissionRequest.from_event(event)
        except ValidationError:
            logger.warning("Cancelling malformed permission request %s", event.request_id, exc_info=True)
            await self._connection.respond_permission(event.request_id, DeniedOutcome())
            return

        option = self.choose_automatically(request)
        if option is not None:
            logger.info(
                "Auto-resolving permission request %s (%s) with %s",
                request.request_id,
                request.remember_key,
                option.optionId,
            )
            await self._connection.respond_permission(request.request_id, AllowedOutcome(optionId=option.optionId))
            return

        self._awaiting[request.request_id] = request
        for listener in list(self._listeners):
            try:
                result = listener(request)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Permission listener failed")
